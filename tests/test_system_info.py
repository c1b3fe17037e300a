"""Tests for system info module."""

from pathlib import Path

import pytest

from host_provisioner.exceptions import PrivilegeError
from host_provisioner.system_info import SystemInfo
from host_provisioner.utils.command import CommandRunner


def test_os_release_parsing(host, os_release):
    """Test system info detection."""
    system = SystemInfo(host, os_release=os_release)

    assert system.distro == "ubuntu"
    assert system.version == "24.04"
    assert system.codename == "noble"


def test_missing_os_release(host, tmp_path):
    system = SystemInfo(host, os_release=tmp_path / "absent")
    assert system.distro == "unknown"
    assert system.codename == "unknown"


def test_architecture_and_address(host, os_release):
    system = SystemInfo(host, os_release=os_release)
    assert system.architecture() == "amd64"
    assert system.primary_address() == "10.0.0.5"


def test_user_lookup(host, os_release, test_config):
    system = SystemInfo(host, os_release=os_release)

    assert system.user_exists("deploy")
    assert system.user_home("deploy") == test_config.paths.home_root / "deploy"
    assert not system.user_exists("ghost")
    assert system.user_home("ghost") is None


def test_group_members(host, os_release):
    host.groups["sudo"] = {"ops", "deploy"}
    system = SystemInfo(host, os_release=os_release)

    assert system.group_members("sudo") == ["deploy", "ops"]
    assert system.group_members("wheel") == []


def test_dry_run_lookups_see_the_live_host(os_release):
    system = SystemInfo(CommandRunner(dry_run=True), os_release=os_release)
    assert not system.user_exists("no-such-user-xyz")
    assert system.user_home("no-such-user-xyz") is None


def test_require_root_rejects_unprivileged(monkeypatch):
    monkeypatch.setattr("sys.platform", "linux")
    monkeypatch.setattr("os.geteuid", lambda: 1000)
    with pytest.raises(PrivilegeError, match="root"):
        SystemInfo.require_root()


def test_require_root_accepts_root(monkeypatch):
    monkeypatch.setattr("sys.platform", "linux")
    monkeypatch.setattr("os.geteuid", lambda: 0)
    SystemInfo.require_root()


def test_disk_usage(tmp_path: Path):
    usage = SystemInfo.disk_usage(tmp_path)
    assert usage["total"] >= usage["free"] > 0
