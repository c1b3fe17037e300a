"""Host Provisioner - single-host server setup and hardening."""

__version__ = "1.0.0"
__author__ = "DevOps Team"
__license__ = "MIT"

from host_provisioner.exceptions import (
    AlreadyExistsConflict,
    BootstrapError,
    ConfigurationError,
    ExternalCommandError,
    FilesystemError,
    PrivilegeError,
    ProvisionerError,
    UserInputError,
    ValidationError,
)
from host_provisioner.orchestrator import Orchestrator
from host_provisioner.system_info import SystemInfo

__all__ = [
    "Orchestrator",
    "SystemInfo",
    "ProvisionerError",
    "AlreadyExistsConflict",
    "BootstrapError",
    "ConfigurationError",
    "ExternalCommandError",
    "FilesystemError",
    "PrivilegeError",
    "UserInputError",
    "ValidationError",
]
