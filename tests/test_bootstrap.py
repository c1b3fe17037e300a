"""Tests for admin identity bootstrap."""

import pytest

from conftest import ED25519_KEY, RSA_KEY

from host_provisioner.bootstrap import IdentityBootstrap
from host_provisioner.components.ssh import AUTH_MARKER
from host_provisioner.exceptions import (
    AlreadyExistsConflict,
    BootstrapError,
    UserInputError,
    ValidationError,
)
from host_provisioner.types import ExistingUserPolicy
from host_provisioner.utils.file import ConfigWriter, begin_line


@pytest.fixture
def bootstrap(ctx) -> IdentityBootstrap:
    return IdentityBootstrap(ctx)


def test_new_admin_gets_one_private_key(bootstrap, host, test_config):
    identity = bootstrap.create_admin("ops", [ED25519_KEY], ExistingUserPolicy.ABORT)

    ssh_dir = host.users["ops"] / ".ssh"
    auth_keys = ssh_dir / "authorized_keys"
    assert identity.created
    assert identity.sudo
    assert auth_keys.read_text() == ED25519_KEY + "\n"
    assert auth_keys.stat().st_mode & 0o777 == 0o600
    assert ssh_dir.stat().st_mode & 0o777 == 0o700
    assert "ops" in host.groups["sudo"]
    assert host.ran(rf"^chown -R ops:ops {ssh_dir}")


def test_ssh_restarted_after_lockdown_is_written(bootstrap, host, test_config):
    bootstrap.create_admin("ops", [ED25519_KEY], "abort")

    content = test_config.paths.sshd_target.read_text()
    assert begin_line(AUTH_MARKER) in content
    assert "PasswordAuthentication no" in content
    assert host.index_of(r"^sshd -t$") < host.index_of(r"^systemctl restart ssh$")


def test_existing_user_with_abort_changes_nothing(bootstrap, host, test_config):
    auth_keys = host.users["deploy"] / ".ssh" / "authorized_keys"
    before_keys = auth_keys.read_bytes()
    before_sshd = test_config.paths.sshd_config.read_bytes()

    with pytest.raises(AlreadyExistsConflict) as exc:
        bootstrap.create_admin("deploy", [ED25519_KEY], ExistingUserPolicy.ABORT)

    assert exc.value.username == "deploy"
    assert auth_keys.read_bytes() == before_keys
    assert test_config.paths.sshd_config.read_bytes() == before_sshd
    assert not test_config.paths.sshd_target.exists()
    assert not host.ran(r"^(useradd|usermod|chpasswd)")


def test_existing_user_with_reuse_appends_keys_once(bootstrap, host):
    auth_keys = host.users["deploy"] / ".ssh" / "authorized_keys"

    first = bootstrap.create_admin("deploy", [RSA_KEY, ED25519_KEY], ExistingUserPolicy.REUSE)
    second = bootstrap.create_admin("deploy", [ED25519_KEY], ExistingUserPolicy.REUSE)

    assert not first.created
    assert auth_keys.read_text().splitlines() == [RSA_KEY, ED25519_KEY]
    assert second.authorized_keys == [RSA_KEY, ED25519_KEY]
    assert not host.ran(r"^useradd")


def test_root_password_set_when_given(bootstrap, host):
    identity = bootstrap.create_admin(
        "ops", [ED25519_KEY], ExistingUserPolicy.ABORT, root_password="s3cret"
    )
    assert identity.root_password_set
    assert host.root_password == "s3cret"


def test_root_password_untouched_by_default(bootstrap, host):
    bootstrap.create_admin("ops", [ED25519_KEY], ExistingUserPolicy.ABORT)
    assert not host.ran(r"^chpasswd")


def test_failed_step_is_named(bootstrap, host):
    host.fail(r"^usermod -aG sudo", rc=6, stderr="usermod: group 'sudo' does not exist")

    with pytest.raises(BootstrapError) as exc:
        bootstrap.create_admin("ops", [ED25519_KEY], ExistingUserPolicy.ABORT)

    assert exc.value.step == "grant sudo"
    assert "grant sudo" in str(exc.value)


def test_rejected_sshd_config_is_rolled_back(bootstrap, host, test_config):
    host.fail(r"^sshd -t$", rc=255, stderr="Bad configuration option")

    with pytest.raises(BootstrapError) as exc:
        bootstrap.create_admin("ops", [ED25519_KEY], ExistingUserPolicy.ABORT)

    assert exc.value.step == "harden ssh"
    assert not test_config.paths.sshd_target.exists()
    assert not host.ran(r"^systemctl restart ssh")


def test_restart_skipped_without_sshd(bootstrap, host, test_config):
    host.packages.discard("openssh-server")

    bootstrap.create_admin("ops", [ED25519_KEY], ExistingUserPolicy.ABORT)

    assert begin_line(AUTH_MARKER) in test_config.paths.sshd_target.read_text()
    assert not host.ran(r"^systemctl restart ssh")


@pytest.mark.parametrize(
    "username, keys",
    [
        ("root", [ED25519_KEY]),
        ("Bad User", [ED25519_KEY]),
        ("ops", []),
        ("ops", ["ssh-ed25519 ???"]),
    ],
)
def test_invalid_input_rejected_before_any_change(bootstrap, host, username, keys):
    with pytest.raises(ValidationError):
        bootstrap.create_admin(username, keys, ExistingUserPolicy.ABORT)
    assert host.commands == []


def test_unknown_policy_rejected(bootstrap, host):
    with pytest.raises(UserInputError):
        bootstrap.create_admin("ops", [ED25519_KEY], "overwrite")
    assert host.commands == []


def test_dry_run_leaves_home_untouched(ctx, host):
    ctx.writer = ConfigWriter(ctx.config.backup.directory, dry_run=True)

    identity = IdentityBootstrap(ctx).create_admin("ops", [ED25519_KEY], ExistingUserPolicy.ABORT)

    assert identity.authorized_keys == [ED25519_KEY]
    assert not (host.users["ops"] / ".ssh").exists()
    assert not ctx.config.paths.sshd_target.exists()
