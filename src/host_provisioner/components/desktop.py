"""XFCE desktop reachable over X2Go and VNC."""

from pathlib import Path
from typing import List

from host_provisioner.components.base import (
    Assertion,
    ComponentDefinition,
    Step,
    StepContext,
    apt_autoremove,
    apt_install_from,
    apt_purge,
    edit,
    package_service_state,
    remove_paths,
    service,
    service_active,
)
from host_provisioner.exceptions import ValidationError
from host_provisioner.types import ComponentId, EditMode
from host_provisioner.utils.file import ConfigEdit


def desktop_user(ctx: StepContext) -> str:
    user = ctx.config.desktop.user
    if not user:
        raise ValidationError("No remote desktop user configured (DESKTOP_USER)")
    return user


def desktop_service(ctx: StepContext) -> str:
    return ctx.config.desktop.service_name


def vnc_dir(ctx: StepContext) -> Path:
    """~/.vnc of the desktop user.

    Raises:
        ValidationError: If the user has no account on this host
    """
    user = desktop_user(ctx)
    home = ctx.system.user_home(user)
    if home is None:
        raise ValidationError(f"Remote desktop user {user} does not exist")
    return home / ".vnc"


def session_config(ctx: StepContext) -> ConfigEdit:
    content = "\n".join(
        [
            "session=xfce",
            f"geometry={ctx.config.desktop.geometry}",
            "localhost",
            "",
        ]
    )
    return ConfigEdit(
        path=vnc_dir(ctx) / "config",
        content=content,
        mode=EditMode.FULL_OVERWRITE,
        file_mode=0o600,
    )


def startup_script(ctx: StepContext) -> ConfigEdit:
    content = "\n".join(
        [
            "#!/bin/sh",
            "unset SESSION_MANAGER",
            "unset DBUS_SESSION_BUS_ADDRESS",
            f"exec {ctx.config.desktop.session_command}",
            "",
        ]
    )
    return ConfigEdit(
        path=vnc_dir(ctx) / "xstartup",
        content=content,
        mode=EditMode.FULL_OVERWRITE,
        file_mode=0o700,
    )


def set_ownership(ctx: StepContext) -> None:
    user = desktop_user(ctx)
    path = vnc_dir(ctx)
    ctx.writer.ensure_dir(path, 0o700)
    ctx.runner.check(f"chown -R {user}:{user} {path}")


def session_files(ctx: StepContext) -> List[object]:
    try:
        path = vnc_dir(ctx)
    except ValidationError:
        return []
    return [path / "config", path / "xstartup"]


def remove_session_dir(ctx: StepContext) -> None:
    """Drop ~/.vnc once the session files are gone; keep anything else in it."""
    try:
        path = vnc_dir(ctx)
    except ValidationError:
        return
    ctx.writer.remove_empty_dir(path)


def private_file(name: str, mode: int):
    def check(ctx: StepContext) -> bool:
        path = vnc_dir(ctx) / name
        return path.exists() and path.stat().st_mode & 0o777 == mode

    return check


DEFINITION = ComponentDefinition(
    id=ComponentId.REMOTE_DESKTOP,
    label="Remote desktop (XFCE + X2Go)",
    install_steps=(
        Step("Install desktop packages", apt_install_from(lambda ctx: ctx.config.desktop.packages)),
        Step("Write VNC session config", edit(session_config)),
        Step("Write VNC session startup script", edit(startup_script)),
        Step("Set session file ownership", set_ownership),
        Step("Enable X2Go service", service("enable", desktop_service)),
        Step("Restart X2Go service", service("restart", desktop_service)),
    ),
    uninstall_steps=(
        Step("Stop X2Go service", service("stop", desktop_service)),
        Step("Disable X2Go service", service("disable", desktop_service)),
        Step("Remove desktop packages", apt_purge(lambda ctx: ctx.config.desktop.packages)),
        Step("Remove orphaned dependencies", apt_autoremove),
        Step("Delete session files", remove_paths(session_files)),
        Step("Remove empty session directory", remove_session_dir),
    ),
    probe=package_service_state("x2goserver", desktop_service),
    assertions=(
        Assertion("service-active", lambda ctx: service_active(ctx, desktop_service(ctx))),
        Assertion("session-config-private", private_file("config", 0o600)),
        Assertion("startup-script-private", private_file("xstartup", 0o700)),
    ),
)
