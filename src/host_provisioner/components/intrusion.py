"""fail2ban with a local override jail."""

from host_provisioner.components.base import (
    Assertion,
    ComponentDefinition,
    Step,
    StepContext,
    apt_install,
    apt_purge,
    edit,
    package_service_state,
    remove_paths,
    service,
    service_active,
)
from host_provisioner.config import ProvisionerConfig
from host_provisioner.types import ComponentId, EditMode
from host_provisioner.utils.file import ConfigEdit

HEADER = "# Managed by host-provisioner. Local overrides; jail.conf stays as packaged."


def jail_local(config: ProvisionerConfig) -> str:
    f2b = config.intrusion
    return f"""{HEADER}
[DEFAULT]
bantime = {f2b.bantime}
findtime = {f2b.findtime}
maxretry = {f2b.maxretry}
ignoreip = {f2b.ignoreip}

[sshd]
enabled = true
port = {config.ssh.port}
maxretry = {f2b.sshd_maxretry}
"""


def jail_edit(ctx: StepContext) -> ConfigEdit:
    """jail.local, never jail.conf, so package upgrades keep our values."""
    return ConfigEdit(
        path=ctx.config.paths.fail2ban_local,
        content=jail_local(ctx.config),
        mode=EditMode.FULL_OVERWRITE,
        file_mode=0o644,
    )


def override_in_place(ctx: StepContext) -> bool:
    path = ctx.config.paths.fail2ban_local
    return path.exists() and path.read_text() == jail_local(ctx.config)


def sshd_jail_running(ctx: StepContext) -> bool:
    return ctx.runner.execute("fail2ban-client status sshd", quiet=True).succeeded


DEFINITION = ComponentDefinition(
    id=ComponentId.INTRUSION_PREVENTION,
    label="Intrusion prevention (fail2ban)",
    install_steps=(
        Step("Install fail2ban", apt_install("fail2ban")),
        Step("Write local jail override", edit(jail_edit)),
        Step("Restart fail2ban", service("restart", "fail2ban")),
        Step("Enable fail2ban", service("enable", "fail2ban")),
    ),
    uninstall_steps=(
        Step("Stop fail2ban", service("stop", "fail2ban")),
        Step("Disable fail2ban", service("disable", "fail2ban")),
        Step("Remove fail2ban", apt_purge(lambda ctx: ["fail2ban"])),
        Step(
            "Delete local jail override",
            remove_paths(lambda ctx: [ctx.config.paths.fail2ban_local]),
        ),
    ),
    probe=package_service_state("fail2ban", "fail2ban"),
    assertions=(
        Assertion("service-active", lambda ctx: service_active(ctx, "fail2ban")),
        Assertion("local-override", override_in_place),
        Assertion("sshd-jail", sshd_jail_running),
    ),
)
