"""Administrative account bootstrap with key-only SSH access."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union

import structlog

from host_provisioner.components.base import StepContext, package_installed
from host_provisioner.components.ssh import auth_lockdown_edit, restart_ssh, validate_sshd
from host_provisioner.exceptions import (
    AlreadyExistsConflict,
    BootstrapError,
    ProvisionerError,
    UserInputError,
)
from host_provisioner.types import ExistingUserPolicy
from host_provisioner.utils.command import ALREADY_INSTALLED
from host_provisioner.utils.validation import Validator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class AdminIdentity:
    """Record of the bootstrapped account; the OS holds the durable state."""

    username: str
    home: Path
    authorized_keys: List[str] = field(default_factory=list)
    sudo: bool = False
    root_password_set: bool = False
    created: bool = False


class IdentityBootstrap:
    """Create the admin account, install its keys and lock down sshd."""

    def __init__(self, ctx: StepContext) -> None:
        self.ctx = ctx

    def create_admin(
        self,
        username: str,
        public_keys: List[str],
        policy: Union[ExistingUserPolicy, str],
        root_password: Optional[str] = None,
    ) -> AdminIdentity:
        """Bootstrap an administrative identity.

        Args:
            username: Account to create or reuse
            public_keys: OpenSSH public key lines, each installed once
            policy: What to do if the account exists; there is no default
            root_password: Optional console password for root

        Returns:
            The resulting AdminIdentity

        Raises:
            ValidationError: If the username or a key is malformed
            UserInputError: If the policy is not recognised
            AlreadyExistsConflict: If the user exists and policy is abort
            BootstrapError: If a step fails; names the step
        """
        username = Validator.validate_username(username)
        keys = Validator.validate_public_keys(public_keys)
        try:
            policy = ExistingUserPolicy(policy)
        except ValueError as e:
            raise UserInputError(f"Unknown existing-user policy: {policy}") from e

        log = logger.bind(user=username)
        exists = self.ctx.system.user_exists(username)
        if exists and policy == ExistingUserPolicy.ABORT:
            log.warning("admin_exists_abort")
            raise AlreadyExistsConflict(username)

        runner = self.ctx.runner
        group = self.ctx.config.ssh.admin_group
        if not exists:
            self._step(
                "create account", lambda: runner.check(f"useradd -m -s /bin/bash {username}")
            )
        else:
            log.info("admin_exists_reuse")

        self._step(
            "grant sudo",
            lambda: runner.check(f"usermod -aG {group} {username}", benign=ALREADY_INSTALLED),
        )

        home = self.ctx.system.user_home(username) or self.ctx.config.paths.home_root / username
        installed = self._step(
            "install authorized keys", lambda: self.install_keys(username, home, keys)
        )

        if root_password:
            self._step(
                "set root password",
                lambda: runner.check("chpasswd", input_text=f"root:{root_password}\n"),
            )

        self._step("harden ssh", self._harden_ssh)

        log.info("admin_bootstrapped", keys=len(installed), created=not exists)
        return AdminIdentity(
            username=username,
            home=home,
            authorized_keys=installed,
            sudo=True,
            root_password_set=bool(root_password),
            created=not exists,
        )

    def install_keys(self, username: str, home: Path, keys: List[str]) -> List[str]:
        """Append each key to authorized_keys unless already present.

        Returns:
            All keys now in the file
        """
        ssh_dir = home / ".ssh"
        auth_keys = ssh_dir / "authorized_keys"
        self.ctx.writer.ensure_dir(ssh_dir, 0o700)

        existing = [
            " ".join(line.split())
            for line in self.ctx.writer.read_text(auth_keys).splitlines()
            if line.strip()
        ]
        lines = list(existing)
        for key in keys:
            if key not in lines:
                lines.append(key)

        self.ctx.writer.replace_file(auth_keys, "\n".join(lines) + "\n", file_mode=0o600)
        self.ctx.runner.check(f"chown -R {username}:{username} {ssh_dir}")
        return [line for line in lines if not line.startswith("#")]

    def _harden_ssh(self) -> None:
        """Write, validate, then restart; never restart on a partial edit."""
        self.ctx.writer.apply(auth_lockdown_edit(self.ctx.config.paths))
        if not package_installed(self.ctx, "openssh-server"):
            logger.warning("sshd_not_installed", action="restart skipped")
            return
        validate_sshd(self.ctx)
        restart_ssh(self.ctx)

    @staticmethod
    def _step(name: str, fn: Callable[[], T]) -> T:
        logger.info("bootstrap_step", step=name)
        try:
            return fn()
        except ProvisionerError as e:
            logger.error("bootstrap_step_failed", step=name, error=str(e))
            raise BootstrapError(name, e) from e
