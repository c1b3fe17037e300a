"""Pytest configuration and fixtures."""

import re
import shlex
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import pytest

from host_provisioner.components.base import StepContext
from host_provisioner.config import (
    BackupConfig,
    ContainerConfig,
    PathsConfig,
    ProvisionerConfig,
    RemoteDesktopConfig,
    SSHConfig,
)
from host_provisioner.system_info import SystemInfo
from host_provisioner.types import CommandResult
from host_provisioner.utils.command import CommandRunner
from host_provisioner.utils.file import ConfigWriter

ED25519_KEY = (
    "ssh-ed25519 AAAAC3NzaC1lZDI1NTE5AAAAIGw3Q0rLqkz1p8z5mT5sJ0m0pX8b0r2J1x0yq1n2b3c4 ops@laptop"
)
RSA_KEY = "ssh-rsa AAAAB3NzaC1yc2EAAAADAQABAAABAQC7 deploy@ci"

# Units each package ships; installing a package starts them.
PACKAGE_UNITS: Dict[str, Tuple[str, ...]] = {
    "openssh-server": ("ssh",),
    "ufw": ("ufw",),
    "fail2ban": ("fail2ban",),
    "docker-ce": ("docker", "docker.socket"),
    "containerd.io": ("containerd",),
    "x2goserver": ("x2goserver",),
}

SSHD_DEFAULTS = {
    "port": "22",
    "passwordauthentication": "yes",
    "permitrootlogin": "prohibit-password",
    "pubkeyauthentication": "yes",
}


class FakeHost(CommandRunner):
    """In-memory stand-in for apt, systemd, ufw, fail2ban and account tools."""

    def __init__(self, root: Path, paths: PathsConfig, state_dirs: Iterable[Path] = ()) -> None:
        super().__init__()
        self.root = root
        self.paths = paths
        self.state_dirs = list(state_dirs)
        self.commands: List[str] = []
        self.packages: Set[str] = set()
        self.enabled: Set[str] = set()
        self.active: Set[str] = set()
        self.users: Dict[str, Path] = {}
        self.groups: Dict[str, Set[str]] = {}
        self.ufw_rules: List[str] = []
        self.ufw_defaults = {"incoming": "allow", "outgoing": "allow"}
        self.ufw_active = False
        self.rules_at_enable: Optional[List[str]] = None
        self.root_password: Optional[str] = None
        self.failures: List[Tuple[str, int, str]] = []

    # Test helpers ---------------------------------------------------------------

    def fail(self, pattern: str, rc: int = 100, stderr: str = "E: simulated failure") -> None:
        self.failures.append((pattern, rc, stderr))

    def add_user(self, name: str, keys: Iterable[str] = ()) -> Path:
        home = self.paths.home_root / name
        home.mkdir(parents=True, exist_ok=True)
        self.users[name] = home
        keys = list(keys)
        if keys:
            ssh_dir = home / ".ssh"
            ssh_dir.mkdir(mode=0o700, exist_ok=True)
            (ssh_dir / "authorized_keys").write_text("\n".join(keys) + "\n")
        return home

    def install_package(self, name: str) -> None:
        self.packages.add(name)
        for unit in PACKAGE_UNITS.get(name, ()):
            self.enabled.add(unit)
            self.active.add(unit)

    def ran(self, pattern: str) -> bool:
        return any(re.search(pattern, cmd) for cmd in self.commands)

    def index_of(self, pattern: str) -> int:
        for index, cmd in enumerate(self.commands):
            if re.search(pattern, cmd):
                return index
        raise AssertionError(f"no command matching {pattern!r} in {self.commands}")

    # CommandRunner ---------------------------------------------------------------

    def execute(
        self,
        cmd: str,
        benign: Iterable[str] = (),
        input_text: Optional[str] = None,
        timeout: Optional[int] = None,
        quiet: bool = False,
    ) -> CommandResult:
        self.commands.append(cmd)
        for pattern, rc, stderr in self.failures:
            if re.search(pattern, cmd):
                return self.classify(rc, "", stderr, benign)
        rc, out, err = self._dispatch(cmd, input_text)
        return self.classify(rc, out, err, benign)

    def _dispatch(self, cmd: str, input_text: Optional[str]) -> Tuple[int, str, str]:
        if cmd.startswith("ip route") or cmd.startswith("hostname -I"):
            return 0, "10.0.0.5\n", ""

        argv = shlex.split(cmd)
        tool = argv[0]
        handler = getattr(self, "_" + tool.replace("-", "_"), None)
        if handler is None:
            return 0, "", ""
        return handler(argv[1:], input_text)

    def _unit_known(self, unit: str) -> bool:
        return any(unit in PACKAGE_UNITS.get(p, ()) for p in self.packages)

    def _apt_get(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        words = [a for a in args if not a.startswith("-") and "::" not in a]
        if not words:
            return 0, "", ""
        action, names = words[0], words[1:]
        if action == "install":
            out = []
            for name in names:
                if name in self.packages:
                    out.append(f"{name} is already the newest version.")
                else:
                    self.install_package(name)
                    if name == "docker-ce":
                        for path in self.state_dirs:
                            path.mkdir(parents=True, exist_ok=True)
            return 0, "\n".join(out), ""
        if action == "purge":
            for name in names:
                if name not in self.packages:
                    return 0, f"Package '{name}' is not installed, so not removed\n", ""
                self.packages.discard(name)
                for unit in PACKAGE_UNITS.get(name, ()):
                    self.enabled.discard(unit)
                    self.active.discard(unit)
                if name == "ufw":
                    self.ufw_rules.clear()
                    self.ufw_active = False
                    self.ufw_defaults = {"incoming": "allow", "outgoing": "allow"}
            return 0, "", ""
        return 0, "", ""

    def _dpkg_query(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        name = args[-1]
        if name in self.packages:
            return 0, "install ok installed", ""
        return 1, "", f"dpkg-query: no packages found matching {name}\n"

    def _dpkg(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        return 0, "amd64\n", ""

    def _systemctl(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        action = args[0]
        if action == "daemon-reload":
            return 0, "", ""
        if action == "is-active":
            unit = args[-1]
            return (0, "", "") if unit in self.active else (3, "", "")

        for unit in args[1:]:
            if not self._unit_known(unit):
                if action == "disable":
                    return 1, "", f"Unit file {unit}.service does not exist.\n"
                return 5, "", f"Failed to {action} {unit}.service: Unit not loaded.\n"
            if action == "enable":
                self.enabled.add(unit)
            elif action == "disable":
                self.enabled.discard(unit)
            elif action in ("start", "restart"):
                self.active.add(unit)
            elif action == "stop":
                self.active.discard(unit)
        return 0, "", ""

    def _ufw(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        if "ufw" not in self.packages:
            return 127, "", "/bin/sh: 1: ufw: not found\n"
        if args[:1] == ["default"]:
            self.ufw_defaults[args[2]] = args[1]
            return 0, f"Default {args[2]} policy changed to '{args[1]}'\n", ""
        if args[:1] in (["allow"], ["limit"]):
            rule = f"{args[0]} {args[1]}"
            if rule in self.ufw_rules:
                return 0, "Skipping adding existing rule\n", ""
            self.ufw_rules.append(rule)
            return 0, "Rules updated\n", ""
        if args == ["show", "added"]:
            body = "\n".join(f"ufw {rule}" for rule in self.ufw_rules) or "(None)"
            return 0, f"Added user rules (see 'ufw status' for running firewall):\n{body}\n", ""
        if args == ["--force", "enable"]:
            self.ufw_active = True
            self.rules_at_enable = list(self.ufw_rules)
            return 0, "Firewall is active and enabled on system startup\n", ""
        if args == ["--force", "disable"]:
            self.ufw_active = False
            return 0, "Firewall stopped and disabled on system startup\n", ""
        if args[:1] == ["status"]:
            if not self.ufw_active:
                return 0, "Status: inactive\n", ""
            lines = [
                "Status: active",
                "Logging: on (low)",
                f"Default: {self.ufw_defaults['incoming']} (incoming), "
                f"{self.ufw_defaults['outgoing']} (outgoing), disabled (routed)",
                "New profiles: skip",
                "",
                "To                         Action      From",
                "--                         ------      ----",
            ]
            for rule in self.ufw_rules:
                verb, port = rule.split(" ", 1)
                lines.append(f"{port:<27}{verb.upper() + ' IN':<12}Anywhere")
            return 0, "\n".join(lines) + "\n", ""
        return 0, "", ""

    def _effective_sshd(self) -> Dict[str, str]:
        values: Dict[str, str] = {}
        drop_ins = self.paths.sshd_config_dir
        sources = sorted(drop_ins.glob("*.conf")) if drop_ins.is_dir() else []
        for source in sources + [self.paths.sshd_config]:
            if not source.exists():
                continue
            for line in source.read_text().splitlines():
                line = line.strip()
                if not line or line.startswith("#"):
                    continue
                key, _, value = line.partition(" ")
                values.setdefault(key.lower(), value.strip().lower())
        return {**SSHD_DEFAULTS, **values}

    def _sshd(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        if args == ["-T"]:
            body = "\n".join(f"{k} {v}" for k, v in sorted(self._effective_sshd().items()))
            return 0, body + "\n", ""
        return 0, "", ""

    def _fail2ban_client(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        jail = self.paths.fail2ban_local
        if "fail2ban" in self.active and jail.exists() and "[sshd]" in jail.read_text():
            return 0, "Status for the jail: sshd\n", ""
        return 255, "", "Failed to access socket path\n"

    def _docker(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        if "docker" not in self.active:
            return 1, "", "Cannot connect to the Docker daemon\n"
        return 0, "Hello from Docker!\n", ""

    def _install(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        Path(args[-1]).mkdir(parents=True, exist_ok=True)
        return 0, "", ""

    def _curl(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        target = Path(args[args.index("-o") + 1])
        target.write_text("-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
        return 0, "", ""

    def _id(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        name = args[-1]
        if name in self.users:
            return 0, "1001\n", ""
        return 1, "", f"id: '{name}': no such user\n"

    def _getent(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        database, name = args[0], args[-1]
        if database == "group":
            if name not in self.groups:
                return 2, "", ""
            return 0, f"{name}:x:27:{','.join(sorted(self.groups[name]))}\n", ""
        if name not in self.users:
            return 2, "", ""
        return 0, f"{name}:x:1001:1001::{self.users[name]}:/bin/bash\n", ""

    def _useradd(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        name = args[-1]
        if name in self.users:
            return 9, "", f"useradd: user '{name}' already exists\n"
        self.add_user(name)
        return 0, "", ""

    def _usermod(self, args: List[str], _input: Optional[str]) -> Tuple[int, str, str]:
        group, name = args[-2], args[-1]
        if name not in self.users:
            return 6, "", f"usermod: user '{name}' does not exist\n"
        self.groups.setdefault(group, set()).add(name)
        return 0, "", ""

    def _chpasswd(self, args: List[str], input_text: Optional[str]) -> Tuple[int, str, str]:
        user, _, password = (input_text or "").strip().partition(":")
        if user == "root":
            self.root_password = password
        return 0, "", ""


@pytest.fixture
def paths(tmp_path: Path) -> PathsConfig:
    """Every provisioner path redirected under tmp_path."""
    etc = tmp_path / "etc"
    sshd_dir = etc / "ssh" / "sshd_config.d"
    sshd_dir.mkdir(parents=True)
    sshd_config = etc / "ssh" / "sshd_config"
    sshd_config.write_text("Include /etc/ssh/sshd_config.d/*.conf\nUsePAM yes\n")
    (tmp_path / "home").mkdir()
    return PathsConfig(
        sshd_config=sshd_config,
        sshd_config_dir=sshd_dir,
        fail2ban_local=etc / "fail2ban" / "jail.local",
        docker_keyring=etc / "apt" / "keyrings" / "docker.asc",
        docker_apt_source=etc / "apt" / "sources.list.d" / "docker.list",
        home_root=tmp_path / "home",
    )


@pytest.fixture
def test_config(tmp_path: Path, paths: PathsConfig) -> ProvisionerConfig:
    """Create test configuration."""
    config = ProvisionerConfig.from_env()
    config.ssh = SSHConfig(port=22, admin_users=["deploy"])
    config.paths = paths
    config.backup = BackupConfig(directory=tmp_path / "backups")
    config.container = ContainerConfig(
        add_users=["deploy"],
        state_dirs=[
            tmp_path / "var" / "lib" / "docker",
            tmp_path / "var" / "lib" / "containerd",
            tmp_path / "etc" / "docker",
        ],
    )
    config.desktop = RemoteDesktopConfig(user="deploy")
    return config


@pytest.fixture
def host(tmp_path: Path, test_config: ProvisionerConfig) -> FakeHost:
    """Fresh Ubuntu server: sshd running, one admin with a key."""
    fake = FakeHost(tmp_path, test_config.paths, test_config.container.state_dirs)
    fake.install_package("openssh-server")
    fake.add_user("deploy", [RSA_KEY])
    return fake


@pytest.fixture
def os_release(tmp_path: Path) -> Path:
    path = tmp_path / "os-release"
    path.write_text('ID=ubuntu\nVERSION_ID="24.04"\nVERSION_CODENAME=noble\n')
    return path


@pytest.fixture
def ctx(host: FakeHost, test_config: ProvisionerConfig, os_release: Path) -> StepContext:
    return StepContext(
        config=test_config,
        runner=host,
        writer=ConfigWriter(test_config.backup.directory),
        system=SystemInfo(host, os_release=os_release),
    )


@pytest.fixture
def temp_backup_dir(tmp_path: Path) -> Path:
    """Create temporary backup directory."""
    backup_dir = tmp_path / "backups"
    backup_dir.mkdir()
    return backup_dir
