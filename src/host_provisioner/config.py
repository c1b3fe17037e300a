"""Configuration management for Host Provisioner."""

import os
from pathlib import Path
from typing import Annotated, Any, Dict, List, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from host_provisioner.exceptions import ConfigurationError, ValidationError
from host_provisioner.utils.validation import Validator


def _split_list(v: object) -> List[str]:
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    if isinstance(v, (list, tuple)):
        return [str(item).strip() for item in v if str(item).strip()]
    return []


def _default_sudo_users() -> List[str]:
    user = os.environ.get("SUDO_USER")
    return [user] if user and user != "root" else []


class SSHConfig(BaseSettings):
    """SSH daemon settings."""

    port: int = Field(default=22, ge=1, le=65535, description="SSH port number")
    admin_users: Annotated[List[str], NoDecode] = Field(
        default_factory=_default_sudo_users, description="Users expected to hold SSH keys"
    )
    admin_group: str = Field(default="sudo", description="Group granted sudo by admin bootstrap")
    max_auth_tries: int = Field(default=3, ge=1, le=10)
    max_sessions: int = Field(default=10, ge=1, le=100)
    client_alive_interval: int = Field(default=300, ge=0)
    client_alive_count_max: int = Field(default=2, ge=0)
    login_grace_time: int = Field(default=60, ge=10)
    x11_forwarding: bool = Field(default=False)
    require_admin_key: bool = Field(default=True)
    service_name: str = Field(default="ssh")

    model_config = SettingsConfigDict(
        env_prefix="SSH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("admin_users", mode="before")
    @classmethod
    def parse_admin_users(cls, v: object) -> List[str]:
        """Parse admin users from comma-separated string or list."""
        return _split_list(v)


class FirewallConfig(BaseSettings):
    """Firewall (ufw) settings."""

    rate_limit_ssh: bool = Field(default=False)
    extra_allowed_ports: Annotated[List[str], NoDecode] = Field(default_factory=list)

    model_config = SettingsConfigDict(
        env_prefix="FIREWALL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("extra_allowed_ports", mode="before")
    @classmethod
    def parse_ports(cls, v: object) -> List[str]:
        """Accept '80/tcp,443' style strings."""
        return _split_list(v)


class IntrusionPreventionConfig(BaseSettings):
    """fail2ban local override settings."""

    bantime: str = Field(default="1h")
    findtime: str = Field(default="10m")
    maxretry: int = Field(default=5, ge=1)
    sshd_maxretry: int = Field(default=3, ge=1)
    ignoreip: str = Field(default="127.0.0.1/8 ::1")

    model_config = SettingsConfigDict(
        env_prefix="FAIL2BAN_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class ContainerConfig(BaseSettings):
    """Docker engine settings."""

    packages: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [
            "docker-ce",
            "docker-ce-cli",
            "containerd.io",
            "docker-buildx-plugin",
            "docker-compose-plugin",
        ]
    )
    repository_url: str = Field(default="https://download.docker.com/linux/ubuntu")
    add_users: Annotated[List[str], NoDecode] = Field(default_factory=_default_sudo_users)
    verify_image: str = Field(default="hello-world")
    state_dirs: List[Path] = Field(
        default_factory=lambda: [
            Path("/var/lib/docker"),
            Path("/var/lib/containerd"),
            Path("/etc/docker"),
        ]
    )

    model_config = SettingsConfigDict(
        env_prefix="DOCKER_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("packages", "add_users", mode="before")
    @classmethod
    def parse_lists(cls, v: object) -> List[str]:
        return _split_list(v)


class RemoteDesktopConfig(BaseSettings):
    """XFCE / X2Go / VNC settings."""

    packages: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: [
            "xfce4",
            "xfce4-goodies",
            "x2goserver",
            "x2goserver-xsession",
            "tigervnc-standalone-server",
        ]
    )
    user: Optional[str] = Field(default_factory=lambda: os.environ.get("SUDO_USER"))
    geometry: str = Field(default="1920x1080")
    session_command: str = Field(default="startxfce4")
    service_name: str = Field(default="x2goserver")

    model_config = SettingsConfigDict(
        env_prefix="DESKTOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("packages", mode="before")
    @classmethod
    def parse_packages(cls, v: object) -> List[str]:
        return _split_list(v)


class SystemConfig(BaseSettings):
    """Whole-host settings."""

    upgrade_before_install_all: bool = Field(default=True)

    model_config = SettingsConfigDict(
        env_prefix="SYSTEM_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


class PathsConfig(BaseSettings):
    """Filesystem locations touched by the provisioner."""

    sshd_config: Path = Field(default=Path("/etc/ssh/sshd_config"))
    sshd_config_dir: Path = Field(default=Path("/etc/ssh/sshd_config.d"))
    sshd_drop_in_name: str = Field(default="00-host-provisioner.conf")
    fail2ban_local: Path = Field(default=Path("/etc/fail2ban/jail.local"))
    docker_keyring: Path = Field(default=Path("/etc/apt/keyrings/docker.asc"))
    docker_apt_source: Path = Field(default=Path("/etc/apt/sources.list.d/docker.list"))
    home_root: Path = Field(default=Path("/home"))

    model_config = SettingsConfigDict(
        env_prefix="PATHS_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @property
    def sshd_target(self) -> Path:
        """Drop-in file when the include directory exists, else the main file."""
        if self.sshd_config_dir.is_dir():
            return self.sshd_config_dir / self.sshd_drop_in_name
        return self.sshd_config


class BackupConfig(BaseSettings):
    """Backup configuration."""

    directory: Path = Field(default=Path("/root/provisioner_backups"))

    model_config = SettingsConfigDict(
        env_prefix="BACKUP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def __init__(self, **data: Any) -> None:
        """Initialize backup configuration."""
        explicit = "directory" in data or "BACKUP_DIRECTORY" in os.environ
        super().__init__(**data)
        # Use user home if not root
        if os.geteuid() != 0 and not explicit:
            self.directory = Path.home() / "provisioner_backups"


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    level: str = Field(default="INFO")
    file: Optional[Path] = Field(default=None)

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level


class ProvisionerConfig(BaseSettings):
    """Main configuration container."""

    ssh: SSHConfig = Field(default_factory=SSHConfig)
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    intrusion: IntrusionPreventionConfig = Field(default_factory=IntrusionPreventionConfig)
    container: ContainerConfig = Field(default_factory=ContainerConfig)
    desktop: RemoteDesktopConfig = Field(default_factory=RemoteDesktopConfig)
    system: SystemConfig = Field(default_factory=SystemConfig)
    paths: PathsConfig = Field(default_factory=PathsConfig)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @classmethod
    def from_env(cls) -> "ProvisionerConfig":
        """Create configuration from environment variables."""
        return cls.from_mapping({})

    @classmethod
    def from_mapping(cls, data: Dict[str, Any]) -> "ProvisionerConfig":
        """Create configuration from a nested mapping; env fills the gaps."""
        sections = {
            "ssh": SSHConfig,
            "firewall": FirewallConfig,
            "intrusion": IntrusionPreventionConfig,
            "container": ContainerConfig,
            "desktop": RemoteDesktopConfig,
            "system": SystemConfig,
            "paths": PathsConfig,
            "backup": BackupConfig,
            "logging": LoggingConfig,
        }
        unknown = set(data) - set(sections)
        if unknown:
            raise ConfigurationError(f"Unknown config sections: {', '.join(sorted(unknown))}")

        built: Dict[str, BaseSettings] = {}
        for name, settings_cls in sections.items():
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigurationError(f"Config section '{name}' must be a mapping")
            try:
                built[name] = settings_cls(**section)
            except ValueError as e:
                raise ConfigurationError(f"Invalid '{name}' settings: {e}") from e
        return cls(**built)

    @classmethod
    def from_yaml(cls, path: Path) -> "ProvisionerConfig":
        """Load configuration from a YAML file.

        Raises:
            ConfigurationError: If the file cannot be read or parsed
        """
        try:
            with open(path) as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read config {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Config {path} must contain a mapping")
        return cls.from_mapping(data)

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of issues."""
        issues: List[str] = []

        if self.ssh.require_admin_key and not self.ssh.admin_users:
            issues.append(
                "No admin users configured; SSH lockdown needs a key held by a "
                f"member of '{self.ssh.admin_group}'"
            )

        try:
            Validator.validate_port(self.ssh.port)
        except ValidationError as e:
            issues.append(str(e))

        for port in self.firewall.extra_allowed_ports:
            try:
                Validator.validate_port_entry(port)
            except ValidationError:
                issues.append(f"Invalid firewall port: {port}")

        if not self.desktop.user:
            issues.append("No remote desktop user configured")

        return issues
