"""Custom exceptions for Host Provisioner."""

from pathlib import Path
from typing import Optional, Union

from host_provisioner.types import CommandResult


class ProvisionerError(Exception):
    """Base exception for all provisioner errors."""

    pass


class ConfigurationError(ProvisionerError):
    """Raised when configuration is invalid."""

    pass


class ValidationError(ProvisionerError):
    """Raised when validation fails."""

    pass


class PrivilegeError(ProvisionerError):
    """Raised when the process lacks administrative privilege."""

    pass


class UserInputError(ProvisionerError):
    """Raised on empty or invalid menu/prompt input."""

    pass


class FilesystemError(ProvisionerError):
    """Raised when a configuration write or backup fails."""

    def __init__(self, path: Union[str, Path], cause: Union[str, BaseException]) -> None:
        self.path = Path(path)
        self.cause = cause
        super().__init__(f"{self.path}: {cause}")


class ExternalCommandError(ProvisionerError):
    """Raised when an external command fails unexpectedly."""

    def __init__(self, command: str, result: Optional[CommandResult] = None) -> None:
        self.command = command
        self.result = result
        detail = ""
        if result is not None:
            detail = (result.stderr or result.stdout).strip()
            message = f"Command failed ({result.return_code}): {command}"
        else:
            message = f"Command failed: {command}"
        if detail:
            message = f"{message}\nError: {detail}"
        super().__init__(message)


class AlreadyExistsConflict(ProvisionerError):
    """Raised when an admin user already exists and policy is abort."""

    def __init__(self, username: str) -> None:
        self.username = username
        super().__init__(f"User {username} already exists")


class BootstrapError(ProvisionerError):
    """Raised when a bootstrap step fails; names the step."""

    def __init__(self, step: str, cause: BaseException) -> None:
        self.step = step
        self.cause = cause
        super().__init__(f"Bootstrap step '{step}' failed: {cause}")
