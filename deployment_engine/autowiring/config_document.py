# deployment_engine/autowiring/config_document.py
"""
Pure transforms over the application's configuration document.

Every function takes document text and returns new document text; the
caller decides where it is read from and persisted to.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from deployment_engine.core.errors import DeploymentValidationError
from deployment_engine.core.models import (
    ERROR_LOG_FILE_KEY,
    LOG_FILE_KEY,
    ApplicationVariable,
    ServiceBinding,
)

logger = logging.getLogger(__name__)

XML_DECLARATION = '<?xml version="1.0" encoding="utf-8"?>'
_PROLOG = re.compile(r"\s*(?:(?:<\?.*?\?>|<!--.*?-->)\s*)*", re.DOTALL)


# ============================================
# SERVICE MARKERS
# ============================================

def render_template(template: str, service: ServiceBinding) -> str:
    """Substitute connection placeholders verbatim."""
    return (
        template
        .replace("{host}", service.host)
        .replace("{port}", str(service.port))
        .replace("{name}", service.instance_name)
        .replace("{user}", service.user)
        .replace("{password}", service.password)
    )


def resolve_connections(
    services: Iterable[ServiceBinding],
    templates: Mapping[str, str],
) -> Dict[str, str]:
    """
    Map each service marker (``{label#name}``) to its connection string.

    Services whose label has no template are skipped. The mapping keeps
    the order in which markers were discovered.
    """
    connections: Dict[str, str] = {}

    for service in services:
        template = templates.get(service.label)
        if template is None:
            logger.debug(f"No autowire template for service label {service.label}")
            continue
        connections[service.marker] = render_template(template, service)

    return connections


def substitute_service_markers(text: str, connections: Mapping[str, str]) -> str:
    """Replace every marker substring in the raw document text."""
    for marker, connection in connections.items():
        logger.info(f"Configuring service {marker}")
        text = text.replace(marker, connection)
    return text


# ============================================
# APPLICATION SETTINGS
# ============================================

def document_prolog(text: str) -> str:
    """Declaration, comments and processing instructions ahead of the root element."""
    return _PROLOG.match(text.lstrip("\ufeff")).group(0).strip()


def parse_document(text: str) -> ET.Element:
    """
    Parse the document, keeping comments and processing instructions
    inside the root element. Anything outside it is not part of the tree;
    use ``document_prolog`` to carry the leading part across a rewrite.
    """
    parser = ET.XMLParser(target=ET.TreeBuilder(insert_comments=True, insert_pis=True))
    return ET.fromstring(text.lstrip("\ufeff"), parser=parser)


def serialize_document(root: ET.Element, prolog: Optional[str] = None) -> str:
    """Render ``root`` after ``prolog``; the default prolog is the UTF-8 declaration."""
    if prolog is None:
        prolog = XML_DECLARATION
    ET.indent(root, space="  ")
    body = ET.tostring(root, encoding="unicode")
    if prolog:
        return f"{prolog}\n{body}\n"
    return f"{body}\n"


def _app_settings(root: ET.Element) -> ET.Element:
    if root.tag != "configuration":
        raise DeploymentValidationError(
            f"Configuration document root must be <configuration>, got <{root.tag}>"
        )

    node = root.find("appSettings")
    if node is None:
        node = ET.Element("appSettings")
        root.insert(0, node)
    return node


def _upsert(app_settings: ET.Element, key: str, value: str) -> None:
    entry = ET.Element("add", {"key": key, "value": value})

    matches = [
        child for child in app_settings
        if child.tag == "add" and child.get("key") and child.get("key") == key
    ]

    if not matches:
        app_settings.append(entry)
        return

    index = list(app_settings).index(matches[0])
    app_settings[index] = entry
    for duplicate in matches[1:]:
        app_settings.remove(duplicate)


def apply_application_variables(
    text: str,
    variables: Iterable[ApplicationVariable],
    log_file_path: str,
    error_log_file_path: str,
) -> str:
    """
    Upsert variables and the reserved log keys into ``configuration/appSettings``.

    Existing entries are replaced in place, new ones appended. The reserved
    keys get the controller's paths unless the caller supplied them. The
    section is created as the first child of the root when absent.
    The leading declaration, comments and processing instructions are kept;
    anything after the root element is dropped.
    """
    logger.info("Setting up application variables.")

    root = parse_document(text)
    app_settings = _app_settings(root)

    supplied = set()
    for variable in variables:
        supplied.add(variable.name)
        _upsert(app_settings, variable.name, variable.value)

    for key, path in ((LOG_FILE_KEY, log_file_path), (ERROR_LOG_FILE_KEY, error_log_file_path)):
        if key not in supplied:
            _upsert(app_settings, key, path)

    logger.info("Done setting up application variables.")

    return serialize_document(root, prolog=document_prolog(text))


def app_setting_entries(text: str) -> List[Tuple[str, Optional[str]]]:
    """``(key, value)`` pairs of ``configuration/appSettings``, in document order."""
    node = parse_document(text).find("appSettings")
    if node is None:
        return []
    return [(child.get("key"), child.get("value")) for child in node if child.tag == "add"]
