"""System information detection for Host Provisioner."""

import os
import shutil
import sys
from pathlib import Path
from typing import Dict, List, Optional

from host_provisioner.exceptions import PrivilegeError
from host_provisioner.utils.command import CommandRunner


class SystemInfo:
    """Detect host facts; never mutates the system."""

    OS_RELEASE = Path("/etc/os-release")
    MEMINFO = Path("/proc/meminfo")

    def __init__(self, runner: CommandRunner, os_release: Optional[Path] = None) -> None:
        """Initialize system information detection.

        Args:
            runner: Command runner used for read-only probes
            os_release: Alternative os-release file
        """
        self.runner = runner
        self.os_release = os_release or self.OS_RELEASE
        self._release = self._read_os_release()
        self.distro = self._release.get("ID", "unknown").lower()
        self.codename = self._release.get("VERSION_CODENAME", "unknown")
        self.version = self._release.get("VERSION_ID", "unknown")

    @staticmethod
    def is_root() -> bool:
        return os.geteuid() == 0

    @classmethod
    def require_root(cls) -> None:
        """Fail fast when not running with administrative privilege.

        Raises:
            PrivilegeError: If the effective user is not root
        """
        if not sys.platform.startswith("linux"):
            raise PrivilegeError("This tool only supports Linux systems")
        if not cls.is_root():
            raise PrivilegeError(
                "This tool must be run as root or with sudo privileges. Aborting."
            )

    def _read_os_release(self) -> Dict[str, str]:
        """Parse KEY=value pairs from os-release."""
        values: Dict[str, str] = {}
        try:
            with open(self.os_release) as f:
                for line in f:
                    if "=" in line:
                        key, value = line.strip().split("=", 1)
                        values[key] = value.strip('"')
        except OSError:
            pass
        return values

    def architecture(self) -> str:
        """Debian architecture name, e.g. amd64."""
        result = self.runner.execute("dpkg --print-architecture", quiet=True)
        if result.succeeded and result.stdout.strip():
            return result.stdout.strip()
        return "amd64"

    def primary_address(self) -> str:
        """Get server's primary IP address."""
        methods = [
            "ip route get 1.1.1.1 2>/dev/null | grep -oP 'src \\K\\S+'",
            "hostname -I 2>/dev/null | awk '{print $1}'",
        ]

        for method in methods:
            result = self.runner.execute(method, quiet=True)
            if result.succeeded and result.stdout.strip():
                return result.stdout.strip()

        return "unknown"

    def user_exists(self, username: str) -> bool:
        return self.runner.execute(f"id -u {username}", quiet=True).succeeded

    def user_home(self, username: str) -> Optional[Path]:
        """Home directory from the passwd database, None if no such user."""
        result = self.runner.execute(f"getent passwd {username}", quiet=True)
        if not result.succeeded:
            return None
        fields = result.stdout.strip().split(":")
        if len(fields) < 6 or not fields[5]:
            return None
        return Path(fields[5])

    def group_members(self, group: str) -> List[str]:
        """Supplementary members of a group; empty if the group is unknown."""
        result = self.runner.execute(f"getent group {group}", quiet=True)
        if not result.succeeded:
            return []
        fields = result.stdout.strip().split(":")
        if len(fields) < 4:
            return []
        return [name for name in fields[3].split(",") if name]

    @staticmethod
    def disk_usage(path: Path = Path("/")) -> Dict[str, int]:
        """Total/used/free bytes for the filesystem holding path."""
        usage = shutil.disk_usage(path)
        return {"total": usage.total, "used": usage.used, "free": usage.free}

    def memory(self) -> Dict[str, int]:
        """Total and available memory in bytes from /proc/meminfo."""
        values: Dict[str, int] = {}
        try:
            with open(self.MEMINFO) as f:
                for line in f:
                    key, _, rest = line.partition(":")
                    if key in ("MemTotal", "MemAvailable"):
                        values[key] = int(rest.split()[0]) * 1024
        except (OSError, ValueError, IndexError):
            pass
        return {
            "total": values.get("MemTotal", 0),
            "available": values.get("MemAvailable", 0),
        }

    def check_requirements(self) -> List[str]:
        """Check if system meets minimum requirements."""
        issues: List[str] = []

        if not self.runner.command_available("apt-get"):
            issues.append("apt-get not found; only Debian/Ubuntu hosts are supported")

        if not self.runner.command_available("systemctl"):
            issues.append("systemctl not found; systemd is required")

        return issues
