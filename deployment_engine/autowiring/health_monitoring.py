# deployment_engine/autowiring/health_monitoring.py
"""
App-local configuration layer and the health-monitoring rewire.

The local layer is a settings file next to the application's main
configuration document. Rewires registered on a ``SiteConfig`` edit it
in memory; nothing is written until ``commit_changes``.
"""

import logging
import shutil
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from deployment_engine.autowiring.config_document import parse_document, serialize_document

logger = logging.getLogger(__name__)

PROVIDER_NAME = "UhuruLogFileProvider"
PROVIDER_TYPE = "log_file_provider.LogFileEventProvider"


class ConfigRewire(ABC):
    """A modification applied to an app-local configuration document."""

    @abstractmethod
    def apply(self, root: ET.Element) -> None:
        raise NotImplementedError

    def register(self, site_config: "SiteConfig") -> None:
        site_config.add_rewire(self)


class SiteConfig:
    """App-local settings file of an application."""

    def __init__(self, app_dir: str, file_name: str, create_if_missing: bool = True):
        self.path = Path(app_dir) / file_name
        self._rewires: List[ConfigRewire] = []
        self._root: Optional[ET.Element] = None

        if self.path.exists():
            self._root = parse_document(self.path.read_text(encoding="utf-8"))
        elif create_if_missing:
            self._root = ET.Element("configuration")

    @property
    def root(self) -> Optional[ET.Element]:
        return self._root

    def add_rewire(self, rewire: ConfigRewire) -> None:
        self._rewires.append(rewire)

    def rewire(self, backup: bool) -> None:
        """Apply every registered rewire to the in-memory document."""
        if self._root is None:
            logger.warning(f"No local configuration at {self.path}, skipping rewire")
            return

        if backup and self.path.exists():
            shutil.copyfile(self.path, self.path.with_name(self.path.name + ".bak"))

        for rewire in self._rewires:
            rewire.apply(self._root)

    def commit_changes(self) -> None:
        if self._root is None:
            return
        self.path.write_text(serialize_document(self._root), encoding="utf-8")
        logger.info(f"Committed local configuration {self.path}")


def _child(parent: ET.Element, tag: str) -> ET.Element:
    node = parent.find(tag)
    if node is None:
        node = ET.SubElement(parent, tag)
    return node


def _upsert_named(parent: ET.Element, attributes: dict) -> None:
    for child in parent.findall("add"):
        if child.get("name") == attributes["name"]:
            parent.remove(child)
    ET.SubElement(parent, "add", attributes)


class HealthMonitoringRewire(ConfigRewire):
    """Routes application health and error events to the log file provider."""

    def __init__(self, provider_name: str = PROVIDER_NAME, provider_type: str = PROVIDER_TYPE):
        self.provider_name = provider_name
        self.provider_type = provider_type

    def apply(self, root: ET.Element) -> None:
        health = _child(_child(root, "system.web"), "healthMonitoring")
        health.set("enabled", "true")

        _upsert_named(_child(health, "providers"), {
            "name": self.provider_name,
            "type": self.provider_type,
        })

        rules = _child(health, "rules")
        _upsert_named(rules, {
            "name": "All Errors To Log File",
            "eventName": "All Errors",
            "provider": self.provider_name,
        })
        _upsert_named(rules, {
            "name": "Lifetime Events To Log File",
            "eventName": "Application Lifetime Events",
            "provider": self.provider_name,
        })
