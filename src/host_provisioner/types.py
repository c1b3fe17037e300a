"""Type definitions for Host Provisioner."""

from enum import Enum
from typing import NamedTuple


class ComponentId(str, Enum):
    """Installable components, in dependency order."""

    SSH = "ssh"
    FIREWALL = "firewall"
    INTRUSION_PREVENTION = "intrusion-prevention"
    CONTAINER_RUNTIME = "container-runtime"
    REMOTE_DESKTOP = "remote-desktop"


class ComponentState(str, Enum):
    """Live state of a component."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    NOT_INSTALLED = "not-installed"


class Outcome(str, Enum):
    """Classification of an external command's result."""

    SUCCESS = "success"
    EXPECTED_FAILURE = "expected-failure"
    UNEXPECTED_FAILURE = "unexpected-failure"


class EditMode(str, Enum):
    """How a ConfigEdit is applied."""

    APPEND_ONCE = "append-once"
    REPLACE_BLOCK = "replace-block"
    FULL_OVERWRITE = "full-overwrite"


class ExistingUserPolicy(str, Enum):
    """What to do when the admin user already exists."""

    REUSE = "reuse"
    ABORT = "abort"


class CommandResult(NamedTuple):
    """Result of command execution."""

    outcome: Outcome
    stdout: str
    stderr: str
    return_code: int = 0

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @property
    def failed(self) -> bool:
        """True only for unexpected failures; benign failures count as done."""
        return self.outcome == Outcome.UNEXPECTED_FAILURE

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


class BackupRecord(NamedTuple):
    """Backup information for restore."""

    original_path: str
    backup_path: str
    timestamp: str
