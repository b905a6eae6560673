#tests\test_system.py

"""Test host collaborators (ACLs, firewall, processes) with patched system calls."""

import subprocess
from unittest.mock import MagicMock

import psutil
import pytest

from deployment_engine.core.errors import ControllerError
from deployment_engine.core.models import DEPLOYMENT_DIR_RIGHTS, Rights
from deployment_engine.infrastructure.system import firewall as firewall_module
from deployment_engine.infrastructure.system import permissions as permissions_module
from deployment_engine.infrastructure.system import processes as processes_module
from deployment_engine.infrastructure.system.firewall import UfwFirewall
from deployment_engine.infrastructure.system.permissions import (
    PosixAclPermissionManager,
    acl_permissions,
)
from deployment_engine.infrastructure.system.processes import PsutilProcessManager


@pytest.fixture
def commands(monkeypatch):
    """Records subprocess invocations; every command succeeds."""
    calls = []

    def run(command, **kwargs):
        calls.append(command)
        return subprocess.CompletedProcess(command, 0, "", "")

    monkeypatch.setattr(permissions_module.subprocess, "run", run)
    monkeypatch.setattr(firewall_module.subprocess, "run", run)
    return calls


class TestAclPermissions:

    def test_rights_translation(self):
        assert acl_permissions(Rights.READ) == "r-X"
        assert acl_permissions(DEPLOYMENT_DIR_RIGHTS) == "rwX"
        assert acl_permissions(Rights(0)) == "---"

    def test_grant_sets_access_and_default_entries(self, commands):
        PosixAclPermissionManager().grant("/srv/app", "appuser", DEPLOYMENT_DIR_RIGHTS)

        assert commands == [
            ["setfacl", "-R", "-m", "u:appuser:rwX", "/srv/app"],
            ["setfacl", "-R", "-d", "-m", "u:appuser:rwX", "/srv/app"],
        ]

    def test_revoke_all(self, commands):
        PosixAclPermissionManager().revoke_all("/srv/app", "appuser")

        assert commands == [
            ["setfacl", "-R", "-x", "u:appuser", "/srv/app"],
            ["setfacl", "-R", "-d", "-x", "u:appuser", "/srv/app"],
        ]

    def test_failure_raises(self, monkeypatch):
        monkeypatch.setattr(
            permissions_module.subprocess, "run",
            lambda command, **kwargs: subprocess.CompletedProcess(command, 1, "", "no such user"),
        )

        with pytest.raises(ControllerError, match="no such user"):
            PosixAclPermissionManager().grant("/srv/app", "ghost", Rights.READ)


class TestUfwFirewall:

    def test_open_and_close(self, commands):
        ufw = UfwFirewall()
        ufw.open_port(8080, "App1")
        ufw.close_port(8080)

        assert commands == [
            ["ufw", "allow", "8080/tcp", "comment", "App1"],
            ["ufw", "delete", "allow", "8080/tcp"],
        ]


class TestPsutilProcessManager:

    def test_terminate_kills_and_waits(self, monkeypatch):
        process = MagicMock()
        monkeypatch.setattr(processes_module.psutil, "Process", lambda pid: process)

        assert PsutilProcessManager(wait_timeout=5).terminate(4242)
        process.kill.assert_called_once_with()
        process.wait.assert_called_once_with(timeout=5)

    def test_missing_process(self, monkeypatch):
        def gone(pid):
            raise psutil.NoSuchProcess(pid)

        monkeypatch.setattr(processes_module.psutil, "Process", gone)

        assert PsutilProcessManager().terminate(4242) is False

    def test_process_exits_during_kill(self, monkeypatch):
        process = MagicMock()
        process.kill.side_effect = psutil.NoSuchProcess(4242)
        monkeypatch.setattr(processes_module.psutil, "Process", lambda pid: process)

        assert PsutilProcessManager().terminate(4242) is False


class TestMissingBinaries:

    def test_missing_ufw(self, tmp_path):
        with pytest.raises(ControllerError, match="unavailable"):
            UfwFirewall(ufw=str(tmp_path / "no-ufw")).open_port(8080, "App1")

    def test_missing_setfacl(self, tmp_path):
        with pytest.raises(ControllerError, match="unavailable"):
            PosixAclPermissionManager(setfacl=str(tmp_path / "no-setfacl")).revoke_all(str(tmp_path), "u")
