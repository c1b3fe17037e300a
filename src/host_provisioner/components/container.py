"""Docker Engine from the vendor apt repository."""

from typing import List

from host_provisioner.components.base import (
    Assertion,
    ComponentDefinition,
    Step,
    StepContext,
    apt_autoremove,
    apt_install,
    apt_install_from,
    apt_purge,
    edit,
    package_service_state,
    remove_paths,
    run,
    service,
    service_active,
)
from host_provisioner.types import ComponentId, EditMode
from host_provisioner.utils.command import ALREADY_INSTALLED
from host_provisioner.utils.file import ConfigEdit


def fetch_key(ctx: StepContext) -> None:
    keyring = ctx.config.paths.docker_keyring
    url = ctx.config.container.repository_url
    ctx.runner.check(f"install -m 0755 -d {keyring.parent}")
    ctx.runner.check(f"curl -fsSL {url}/gpg -o {keyring}")
    ctx.runner.check(f"chmod a+r {keyring}")


def source_edit(ctx: StepContext) -> ConfigEdit:
    line = (
        f"deb [arch={ctx.system.architecture()} "
        f"signed-by={ctx.config.paths.docker_keyring}] "
        f"{ctx.config.container.repository_url} {ctx.system.codename} stable\n"
    )
    return ConfigEdit(
        path=ctx.config.paths.docker_apt_source,
        content=line,
        mode=EditMode.FULL_OVERWRITE,
        file_mode=0o644,
    )


def add_group_members(ctx: StepContext) -> None:
    """Let the configured users run docker without sudo (after re-login)."""
    for user in ctx.config.container.add_users:
        ctx.runner.check(f"usermod -aG docker {user}", benign=ALREADY_INSTALLED)


def leftover_paths(ctx: StepContext) -> List[object]:
    paths = ctx.config.paths
    return [paths.docker_apt_source, paths.docker_keyring, *ctx.config.container.state_dirs]


def daemon_responds(ctx: StepContext) -> bool:
    return ctx.runner.execute("docker info", quiet=True).succeeded


def runs_container(ctx: StepContext) -> bool:
    image = ctx.config.container.verify_image
    return ctx.runner.execute(f"docker run --rm {image}").succeeded


DEFINITION = ComponentDefinition(
    id=ComponentId.CONTAINER_RUNTIME,
    label="Container runtime (Docker)",
    install_steps=(
        Step("Install repository prerequisites", apt_install("ca-certificates", "curl", "gnupg")),
        Step("Fetch Docker signing key", fetch_key),
        Step("Add Docker apt repository", edit(source_edit)),
        Step("Refresh package index", run("apt-get update")),
        Step(
            "Install Docker packages",
            apt_install_from(lambda ctx: ctx.config.container.packages),
        ),
        Step("Enable Docker service", service("enable", "docker")),
        Step("Start Docker service", service("start", "docker")),
        Step("Add users to docker group", add_group_members),
    ),
    uninstall_steps=(
        Step("Stop Docker", service("stop", "docker docker.socket containerd")),
        Step("Disable Docker", service("disable", "docker docker.socket containerd")),
        Step("Remove Docker packages", apt_purge(lambda ctx: ctx.config.container.packages)),
        Step("Remove orphaned dependencies", apt_autoremove),
        Step("Delete repository and state", remove_paths(leftover_paths)),
    ),
    probe=package_service_state("docker-ce", "docker"),
    assertions=(
        Assertion("service-active", lambda ctx: service_active(ctx, "docker")),
        Assertion("daemon-responds", daemon_responds),
        Assertion("runs-container", runs_container),
    ),
)
