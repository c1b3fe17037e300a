"""Utility modules for Host Provisioner."""

from host_provisioner.utils.command import CommandRunner
from host_provisioner.utils.file import ConfigEdit, ConfigWriter
from host_provisioner.utils.validation import Validator

__all__ = ["CommandRunner", "ConfigEdit", "ConfigWriter", "Validator"]
