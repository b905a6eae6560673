#tests\test_autowire.py

"""Test application auto-wiring on disk."""

import os

import pytest

from deployment_engine.autowiring.autowire import LOG_PROVIDER_FILE, Autowirer
from deployment_engine.autowiring.config_document import app_setting_entries, parse_document
from deployment_engine.autowiring.health_monitoring import (
    PROVIDER_NAME,
    HealthMonitoringRewire,
    SiteConfig,
)
from deployment_engine.autowiring.resources.log_file_provider import LogFileEventProvider
from deployment_engine.core.models import (
    ERROR_LOG_FILE_KEY,
    LOG_DIR_RIGHTS,
    LOG_FILE_KEY,
    ApplicationDescriptor,
    ApplicationVariable,
    ServiceBinding,
)


@pytest.fixture
def autowirer(permissions):
    return Autowirer(permissions)


@pytest.fixture
def orders_db():
    return ServiceBinding(
        label="mssql", name="orders", host="db", port=1433,
        instance_name="Orders", user="sa", password="pw",
    )


def _autowire(autowirer, app, log_dir, variables=(), services=()):
    return autowirer.autowire(
        app,
        list(variables),
        list(services),
        str(log_dir / "app.log"),
        str(log_dir / "errors" / "error.log"),
    )


class TestAutowire:
    """Test the autowire flow."""

    def test_missing_config_is_noop(self, autowirer, tmp_path, log_dir, permissions):
        app = ApplicationDescriptor(name="Bare", port=81, path=str(tmp_path), user="u")

        assert _autowire(autowirer, app, log_dir) is False
        assert not (tmp_path / "bin").exists()
        assert not log_dir.exists()
        assert permissions.entries == {}

    def test_services_and_variables_written(self, autowirer, descriptor, app_dir, log_dir, orders_db):
        assert _autowire(
            autowirer, descriptor, log_dir,
            variables=[ApplicationVariable("Greeting", "hi")],
            services=[orders_db],
        )

        text = (app_dir / "web.config").read_text(encoding="utf-8")
        entries = dict(app_setting_entries(text))

        assert "{mssql#orders}" not in text
        assert "Data Source=db,1433;Initial Catalog=Orders;" in text
        assert entries["Greeting"] == "hi"
        assert entries[LOG_FILE_KEY] == str(log_dir / "app.log")
        assert entries[ERROR_LOG_FILE_KEY] == str(log_dir / "errors" / "error.log")

    def test_per_call_templates(self, autowirer, descriptor, app_dir, log_dir, orders_db):
        autowirer.autowire(
            descriptor, [], [orders_db], str(log_dir / "a.log"), str(log_dir / "e.log"),
            templates={"mssql": "sql://{host}/{name}"},
        )

        assert "sql://db/Orders" in (app_dir / "web.config").read_text(encoding="utf-8")

    def test_log_provider_copied_to_bin(self, autowirer, descriptor, app_dir, log_dir):
        _autowire(autowirer, descriptor, log_dir)

        copied = app_dir / "bin" / LOG_PROVIDER_FILE.name
        assert copied.is_file()
        assert copied.read_bytes() == LOG_PROVIDER_FILE.read_bytes()

    def test_local_config_rewired(self, autowirer, descriptor, app_dir, log_dir):
        _autowire(autowirer, descriptor, log_dir)

        root = parse_document((app_dir / "uhuru.local.config").read_text(encoding="utf-8"))
        health = root.find("system.web/healthMonitoring")

        assert health.get("enabled") == "true"
        assert health.find("providers/add").get("name") == PROVIDER_NAME
        assert len(health.findall("rules/add")) == 2

    def test_rerun_does_not_duplicate(self, autowirer, descriptor, app_dir, log_dir):
        _autowire(autowirer, descriptor, log_dir)
        first = (app_dir / "web.config").read_text(encoding="utf-8")
        _autowire(autowirer, descriptor, log_dir)

        assert (app_dir / "web.config").read_text(encoding="utf-8") == first
        root = parse_document((app_dir / "uhuru.local.config").read_text(encoding="utf-8"))
        assert len(root.findall("system.web/healthMonitoring/providers/add")) == 1

    def test_log_directories_granted(self, autowirer, descriptor, log_dir, permissions):
        _autowire(autowirer, descriptor, log_dir)

        assert os.path.isdir(log_dir / "errors")
        assert permissions.rights_of(str(log_dir), "app1user") == LOG_DIR_RIGHTS
        assert permissions.rights_of(str(log_dir / "errors"), "app1user") == LOG_DIR_RIGHTS

    def test_no_user_skips_grants(self, autowirer, app_dir, log_dir, permissions):
        app = ApplicationDescriptor(name="App1", port=8080, path=str(app_dir))
        _autowire(autowirer, app, log_dir)

        assert permissions.entries == {}


class TestSiteConfig:
    """Test the app-local configuration layer."""

    def test_nothing_written_until_commit(self, tmp_path):
        site_config = SiteConfig(str(tmp_path), "local.config")
        HealthMonitoringRewire().register(site_config)
        site_config.rewire(backup=False)

        assert not site_config.path.exists()
        site_config.commit_changes()
        assert site_config.path.exists()

    def test_backup_written(self, tmp_path):
        (tmp_path / "local.config").write_text("<configuration />", encoding="utf-8")

        site_config = SiteConfig(str(tmp_path), "local.config")
        site_config.rewire(backup=True)

        assert (tmp_path / "local.config.bak").read_text(encoding="utf-8") == "<configuration />"

    def test_missing_without_create_skips(self, tmp_path):
        site_config = SiteConfig(str(tmp_path), "local.config", create_if_missing=False)
        HealthMonitoringRewire().register(site_config)
        site_config.rewire(backup=False)
        site_config.commit_changes()

        assert site_config.root is None
        assert not site_config.path.exists()


class TestLogFileEventProvider:
    """Test the provider copied into applications."""

    def test_events_routed_by_severity(self, tmp_path):
        settings = {
            LOG_FILE_KEY: str(tmp_path / "app.log"),
            ERROR_LOG_FILE_KEY: str(tmp_path / "error.log"),
        }
        provider = LogFileEventProvider(settings)

        provider.process_event("Application Start", "started")
        provider.process_event("Unhandled Exception", "boom", is_error=True)

        assert "started" in (tmp_path / "app.log").read_text(encoding="utf-8")
        assert "boom" in (tmp_path / "error.log").read_text(encoding="utf-8")
