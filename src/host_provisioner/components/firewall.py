"""UFW firewall with a default-deny inbound policy."""

import re

from host_provisioner.components.base import (
    Assertion,
    ComponentDefinition,
    Step,
    StepContext,
    apt_install,
    apt_purge,
    package_installed,
    run,
    service,
)
from host_provisioner.exceptions import ValidationError
from host_provisioner.types import ComponentId, ComponentState
from host_provisioner.utils.command import ALREADY_ABSENT, ALREADY_INSTALLED
from host_provisioner.utils.validation import Validator

SSH_COMMENT = "host-provisioner ssh"


def ssh_rule(ctx: StepContext) -> str:
    verb = "limit" if ctx.config.firewall.rate_limit_ssh else "allow"
    return f"{verb} {ctx.config.ssh.port}/tcp"


def allow_ssh(ctx: StepContext) -> None:
    """Commit the SSH exception before any deny policy can apply."""
    ctx.runner.check(f"ufw {ssh_rule(ctx)} comment '{SSH_COMMENT}'", benign=ALREADY_INSTALLED)


def allow_extra_ports(ctx: StepContext) -> None:
    ports = ctx.config.firewall.extra_allowed_ports
    entries = [Validator.validate_port_entry(port) for port in ports]
    for entry in entries:
        ctx.runner.check(f"ufw allow {entry}", benign=ALREADY_INSTALLED)


def ssh_rule_committed(ctx: StepContext) -> bool:
    """Whether the SSH rule is in the saved ruleset (active or not)."""
    result = ctx.runner.execute("ufw show added", quiet=True)
    if not result.succeeded:
        return False
    port = re.escape(f"{ctx.config.ssh.port}/tcp")
    return re.search(rf"^ufw (allow|limit) {port}\b", result.stdout, re.MULTILINE) is not None


def verify_ssh_rule(ctx: StepContext) -> None:
    """Refuse to enable the firewall without the SSH exception.

    Raises:
        ValidationError: If the rule is not in the committed ruleset
    """
    if not ssh_rule_committed(ctx):
        raise ValidationError(
            f"SSH allow rule for port {ctx.config.ssh.port} not committed; "
            "refusing to enable the firewall"
        )


def verbose_status(ctx: StepContext) -> str:
    result = ctx.runner.execute("ufw status verbose", quiet=True)
    return result.stdout if result.succeeded else ""


def is_enabled(ctx: StepContext) -> bool:
    return "Status: active" in verbose_status(ctx)


def default_deny(ctx: StepContext) -> bool:
    pattern = r"^Default:.*\b(deny|reject) \(incoming\)"
    return re.search(pattern, verbose_status(ctx), re.MULTILINE) is not None


def ssh_allowed(ctx: StepContext) -> bool:
    port = re.escape(f"{ctx.config.ssh.port}/tcp")
    pattern = rf"^{port}\s+(ALLOW|LIMIT)( IN)?\s+Anywhere"
    return re.search(pattern, verbose_status(ctx), re.MULTILINE) is not None


def probe(ctx: StepContext) -> ComponentState:
    if not package_installed(ctx, "ufw"):
        return ComponentState.NOT_INSTALLED
    return ComponentState.ACTIVE if is_enabled(ctx) else ComponentState.INACTIVE


DEFINITION = ComponentDefinition(
    id=ComponentId.FIREWALL,
    label="Firewall (ufw)",
    install_steps=(
        Step("Install ufw", apt_install("ufw")),
        Step("Allow SSH", allow_ssh),
        Step("Default deny incoming", run("ufw default deny incoming")),
        Step("Default allow outgoing", run("ufw default allow outgoing")),
        Step("Allow extra ports", allow_extra_ports),
        Step("Verify SSH rule is committed", verify_ssh_rule),
        Step("Enable firewall", run("ufw --force enable")),
        Step("Enable ufw service", service("enable", "ufw")),
    ),
    uninstall_steps=(
        Step("Disable firewall", run("ufw --force disable", benign=ALREADY_ABSENT)),
        Step("Disable ufw service", service("disable", "ufw")),
        Step("Remove ufw", apt_purge(lambda ctx: ["ufw"])),
    ),
    probe=probe,
    assertions=(
        Assertion("enabled", is_enabled),
        Assertion("default-deny", default_deny),
        Assertion("ssh-allow", ssh_allowed),
    ),
)
