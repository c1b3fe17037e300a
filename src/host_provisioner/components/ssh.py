"""OpenSSH server hardening."""

from host_provisioner.components.base import (
    Assertion,
    ComponentDefinition,
    Step,
    StepContext,
    apt_install,
    edit,
    package_installed,
    require,
    service,
    service_active,
)
from host_provisioner.config import PathsConfig, ProvisionerConfig
from host_provisioner.exceptions import ExternalCommandError
from host_provisioner.types import ComponentId, ComponentState, EditMode
from host_provisioner.utils.file import ConfigEdit
from host_provisioner.utils.validation import Validator

AUTH_MARKER = "host-provisioner ssh authentication"
SETTINGS_MARKER = "host-provisioner ssh settings"


def auth_lockdown_edit(paths: PathsConfig) -> ConfigEdit:
    """Key-only login, no root. Shared with admin bootstrap; append-once."""
    content = "\n".join(
        [
            "PasswordAuthentication no",
            "KbdInteractiveAuthentication no",
            "PermitEmptyPasswords no",
            "PermitRootLogin no",
            "PubkeyAuthentication yes",
        ]
    )
    return ConfigEdit(
        path=paths.sshd_target,
        content=content,
        mode=EditMode.APPEND_ONCE,
        marker=AUTH_MARKER,
        file_mode=0o644,
    )


def settings_edit(config: ProvisionerConfig) -> ConfigEdit:
    ssh = config.ssh
    content = "\n".join(
        [
            f"Port {ssh.port}",
            f"MaxAuthTries {ssh.max_auth_tries}",
            f"MaxSessions {ssh.max_sessions}",
            f"ClientAliveInterval {ssh.client_alive_interval}",
            f"ClientAliveCountMax {ssh.client_alive_count_max}",
            f"LoginGraceTime {ssh.login_grace_time}",
            f"X11Forwarding {'yes' if ssh.x11_forwarding else 'no'}",
        ]
    )
    return ConfigEdit(
        path=config.paths.sshd_target,
        content=content,
        mode=EditMode.REPLACE_BLOCK,
        marker=SETTINGS_MARKER,
        file_mode=0o644,
    )


def validate_sshd(ctx: StepContext) -> None:
    """Check the daemon accepts the config; undo this session's edit if not.

    Raises:
        ExternalCommandError: If ``sshd -t`` rejects the configuration
    """
    try:
        ctx.runner.check("sshd -t")
    except ExternalCommandError:
        ctx.writer.restore(ctx.config.paths.sshd_target)
        raise


def admin_key_present(ctx: StepContext) -> bool:
    """True when a configured admin or admin group member can log in with a key."""
    ssh = ctx.config.ssh
    if not ssh.require_admin_key:
        return True
    candidates = list(ssh.admin_users)
    for member in ctx.system.group_members(ssh.admin_group):
        if member not in candidates:
            candidates.append(member)
    for username in candidates:
        home = ctx.system.user_home(username)
        if home and Validator.has_authorized_key(home / ".ssh" / "authorized_keys"):
            return True
    return False


def restart_ssh(ctx: StepContext) -> None:
    ctx.runner.check("systemctl daemon-reload")
    service("restart", ctx.config.ssh.service_name)(ctx)


def reload_if_installed(ctx: StepContext) -> None:
    if package_installed(ctx, "openssh-server"):
        validate_sshd(ctx)
        restart_ssh(ctx)


def remove_settings(ctx: StepContext) -> None:
    ctx.writer.remove_block(ctx.config.paths.sshd_target, SETTINGS_MARKER)


def probe(ctx: StepContext) -> ComponentState:
    if not package_installed(ctx, "openssh-server"):
        return ComponentState.NOT_INSTALLED
    if not ctx.writer.has_block(ctx.config.paths.sshd_target, SETTINGS_MARKER):
        return ComponentState.NOT_INSTALLED
    if service_active(ctx, ctx.config.ssh.service_name):
        return ComponentState.ACTIVE
    return ComponentState.INACTIVE


def effective_option(ctx: StepContext, option: str) -> str:
    """Value sshd will actually use, from ``sshd -T``."""
    result = ctx.runner.check("sshd -T")
    for line in result.stdout.splitlines():
        key, _, value = line.partition(" ")
        if key.lower() == option.lower():
            return value.strip().lower()
    return ""


def settings_applied(ctx: StepContext) -> bool:
    return ctx.writer.has_block(ctx.config.paths.sshd_target, SETTINGS_MARKER)


def option_is(option: str, expected: str):
    def check(ctx: StepContext) -> bool:
        return effective_option(ctx, option) == expected

    return check


def port_matches(ctx: StepContext) -> bool:
    return effective_option(ctx, "Port") == str(ctx.config.ssh.port)


def ssh_service(ctx: StepContext) -> str:
    return ctx.config.ssh.service_name


DEFINITION = ComponentDefinition(
    id=ComponentId.SSH,
    label="SSH hardening",
    install_steps=(
        Step("Install OpenSSH server", apt_install("openssh-server")),
        Step(
            "Check an admin key is provisioned",
            require(
                admin_key_present,
                "No admin user has an authorized SSH key; refusing to disable password login",
            ),
        ),
        Step(
            "Apply authentication lockdown",
            edit(lambda ctx: auth_lockdown_edit(ctx.config.paths)),
        ),
        Step("Apply daemon settings", edit(lambda ctx: settings_edit(ctx.config))),
        Step("Validate sshd configuration", validate_sshd),
        Step("Enable SSH service", service("enable", ssh_service)),
        Step("Restart SSH service", restart_ssh),
    ),
    uninstall_steps=(
        Step("Remove daemon settings", remove_settings),
        Step("Reload SSH service", reload_if_installed),
    ),
    probe=probe,
    assertions=(
        Assertion("service-active", lambda ctx: service_active(ctx, ssh_service(ctx))),
        Assertion("settings-applied", settings_applied),
        Assertion("password-auth-disabled", option_is("PasswordAuthentication", "no")),
        Assertion("root-login-disabled", option_is("PermitRootLogin", "no")),
        Assertion("pubkey-auth-enabled", option_is("PubkeyAuthentication", "yes")),
        Assertion("port", port_matches),
    ),
)
