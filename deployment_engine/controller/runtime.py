# deployment_engine/controller/runtime.py
"""Detects the managed runtime an application targets."""

import logging
from pathlib import Path
from typing import Optional

from deployment_engine.core.models import RuntimeVariant

logger = logging.getLogger(__name__)

# Metadata version strings embedded in managed assemblies
_RUNTIME_MARKERS = {
    b"v4.0.30319": RuntimeVariant.V4,
    b"v2.0.50727": RuntimeVariant.V2,
}

_HEADER_BYTES = 64 * 1024


def assembly_runtime(assembly: Path) -> Optional[RuntimeVariant]:
    """Runtime an assembly was built against, or None if unknown."""
    try:
        with open(assembly, "rb") as f:
            header = f.read(_HEADER_BYTES)
    except OSError as e:
        logger.warning(f"Cannot read assembly {assembly}: {e}")
        return None

    for marker, variant in _RUNTIME_MARKERS.items():
        if marker in header:
            return variant
    return None


def detect_runtime_variant(app_path: str) -> RuntimeVariant:
    """
    Runtime variant for the application at ``app_path``.

    The newest runtime wins: any v4 assembly selects v4. Only an
    application made entirely of v2 assemblies runs on v2.
    Applications without assemblies default to v4.
    """
    logger.info("Determining application framework version.")

    found = set()
    for assembly in Path(app_path).rglob("*.dll"):
        variant = assembly_runtime(assembly)
        if variant is RuntimeVariant.V4:
            found = {RuntimeVariant.V4}
            break
        if variant is not None:
            found.add(variant)

    version = RuntimeVariant.V2 if found == {RuntimeVariant.V2} else RuntimeVariant.V4

    logger.info(f"Detected runtime {version.value}")
    return version
