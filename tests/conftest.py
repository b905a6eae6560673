#tests\conftest.py

"""Pytest configuration and fixtures."""

import threading

import pytest

from deployment_engine.autowiring.autowire import Autowirer
from deployment_engine.controller.config import WaitPolicy
from deployment_engine.controller.controller import DeploymentController
from deployment_engine.core.models import ApplicationDescriptor
from deployment_engine.infrastructure.memory.backend import InMemoryHostingBackend
from deployment_engine.infrastructure.memory.collaborators import (
    InMemoryFirewall,
    InMemoryPermissionManager,
    InMemoryProcessManager,
)


WEB_CONFIG = """<?xml version="1.0" encoding="utf-8"?>
<configuration>
  <appSettings>
    <add key="Greeting" value="hello" />
  </appSettings>
  <connectionStrings>
    <add name="Main" connectionString="{mssql#orders}" />
  </connectionStrings>
</configuration>
"""


@pytest.fixture
def backend():
    """In-memory hosting backend; transitions complete after one read."""
    return InMemoryHostingBackend()


@pytest.fixture
def permissions():
    return InMemoryPermissionManager()


@pytest.fixture
def firewall():
    return InMemoryFirewall()


@pytest.fixture
def processes(backend):
    return InMemoryProcessManager(backend)


@pytest.fixture
def policy():
    """Short budgets so timeouts are reached in a handful of polls."""
    return WaitPolicy(
        poll_interval_ms=10,
        settle_timeout_ms=50,
        start_timeout_ms=100,
        stop_timeout_ms=50,
        delete_poll_interval_ms=10,
        delete_poll_iterations=5,
    )


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def lock():
    return threading.Lock()


@pytest.fixture
def make_controller(backend, permissions, firewall, processes, policy, sleeps, lock):
    """Factory for controllers sharing one backend and lock."""
    def factory():
        return DeploymentController(
            backend,
            permissions,
            firewall,
            processes,
            lock=lock,
            policy=policy,
            autowirer=Autowirer(permissions),
            sleep=sleeps.append,
        )
    return factory


@pytest.fixture
def controller(make_controller):
    return make_controller()


@pytest.fixture
def app_dir(tmp_path):
    """Application directory with a configuration document."""
    path = tmp_path / "apps" / "App1"
    path.mkdir(parents=True)
    (path / "web.config").write_text(WEB_CONFIG, encoding="utf-8")
    return path


@pytest.fixture
def log_dir(tmp_path):
    return tmp_path / "logs"


@pytest.fixture
def descriptor(app_dir):
    return ApplicationDescriptor(
        name="App1",
        port=8080,
        path=str(app_dir),
        user="app1user",
        password="secret",
    )


@pytest.fixture
def configured(controller, descriptor, log_dir):
    """Controller configured for App1 on port 8080."""
    controller.configure(
        descriptor,
        log_file_path=str(log_dir / "app.log"),
        error_log_file_path=str(log_dir / "error.log"),
    )
    return controller
