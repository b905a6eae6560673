# deployment_engine/autowiring/autowire.py
"""Autowires service connections, variables and logging into an application."""

import logging
import os
import shutil
from pathlib import Path
from typing import Mapping, Optional, Sequence

from deployment_engine.autowiring.config_document import (
    apply_application_variables,
    resolve_connections,
    substitute_service_markers,
)
from deployment_engine.autowiring.health_monitoring import HealthMonitoringRewire, SiteConfig
from deployment_engine.autowiring.templates import merge_templates
from deployment_engine.core.collaborators import PermissionManager
from deployment_engine.core.models import (
    LOG_DIR_RIGHTS,
    ApplicationDescriptor,
    ApplicationVariable,
    ServiceBinding,
)

logger = logging.getLogger(__name__)

LOG_PROVIDER_FILE = Path(__file__).parent / "resources" / "log_file_provider.py"


class Autowirer:
    """
    Rewrites an application's configuration at deploy time.

    Flow:
    1. Substitute service markers with resolved connection strings
    2. Upsert application variables and reserved log keys
    3. Save the configuration document
    4. Copy the log file provider into the bin directory
    5. Rewire health monitoring in the app-local configuration
    6. Grant the execution identity access to the log directories
    """

    def __init__(
        self,
        permissions: PermissionManager,
        *,
        config_file_name: str = "web.config",
        local_config_file_name: str = "uhuru.local.config",
        bin_dir_name: str = "bin",
        templates: Optional[Mapping[str, str]] = None,
        log_provider_file: Path = LOG_PROVIDER_FILE,
    ):
        self._permissions = permissions
        self.config_file_name = config_file_name
        self.local_config_file_name = local_config_file_name
        self.bin_dir_name = bin_dir_name
        self.templates = merge_templates(templates)
        self.log_provider_file = Path(log_provider_file)

    def autowire(
        self,
        app: ApplicationDescriptor,
        variables: Sequence[ApplicationVariable],
        services: Optional[Sequence[ServiceBinding]],
        log_file_path: str,
        error_log_file_path: str,
        *,
        templates: Optional[Mapping[str, str]] = None,
        log: logging.Logger = logger,
    ) -> bool:
        """
        Autowire the application at ``app.path``.

        Returns:
            False if the application has no configuration document
        """
        log.info("Starting application auto-wiring.")

        config_file = Path(app.path) / self.config_file_name
        if not config_file.is_file():
            log.info(f"No {self.config_file_name} found, skipping auto-wiring.")
            return False

        contents = config_file.read_text(encoding="utf-8")

        if services:
            table = merge_templates(self.templates, templates)
            contents = substitute_service_markers(contents, resolve_connections(services, table))

        contents = apply_application_variables(
            contents, variables, log_file_path, error_log_file_path
        )
        config_file.write_text(contents, encoding="utf-8")
        log.info("Saved configuration file.")

        log.info("Setting up logging.")
        self._deploy_log_provider(config_file.parent)
        log.info("Copied logging binaries to bin directory.")

        site_config = SiteConfig(str(config_file.parent), self.local_config_file_name)
        HealthMonitoringRewire().register(site_config)
        site_config.rewire(backup=False)
        site_config.commit_changes()
        log.info("Updated logging configuration settings.")

        self._grant_log_access(app, log_file_path, error_log_file_path, log)
        return True

    def _deploy_log_provider(self, app_dir: Path) -> Path:
        bin_dir = app_dir / self.bin_dir_name
        bin_dir.mkdir(parents=True, exist_ok=True)

        destination = bin_dir / self.log_provider_file.name
        shutil.copyfile(self.log_provider_file, destination)
        return destination

    def _grant_log_access(
        self,
        app: ApplicationDescriptor,
        log_file_path: str,
        error_log_file_path: str,
        log: logging.Logger,
    ) -> None:
        if not app.user:
            log.warning("No execution identity, skipping log directory permissions.")
            return

        for directory in (os.path.dirname(error_log_file_path), os.path.dirname(log_file_path)):
            if not directory:
                continue
            os.makedirs(directory, exist_ok=True)
            self._permissions.grant(directory, app.user, LOG_DIR_RIGHTS)
