# deployment_engine/infrastructure/system/permissions.py
"""POSIX ACL permission manager (``setfacl``)."""

import logging
import subprocess
from typing import List

from deployment_engine.core.collaborators import PermissionManager
from deployment_engine.core.errors import ControllerError
from deployment_engine.core.models import Rights

logger = logging.getLogger(__name__)


def acl_permissions(rights: Rights) -> str:
    """Translate rights to an ACL permission string (``rwX``)."""
    read = "r" if rights & Rights.READ else "-"
    write = "w" if rights & (Rights.WRITE | Rights.MODIFY | Rights.DELETE | Rights.CREATE_FILES) else "-"
    # Directories must stay traversable for any granted right
    execute = "X" if rights else "-"
    return f"{read}{write}{execute}"


class PosixAclPermissionManager(PermissionManager):
    def __init__(self, setfacl: str = "setfacl"):
        self.setfacl = setfacl

    def grant(self, path: str, principal: str, rights: Rights) -> None:
        entry = f"u:{principal}:{acl_permissions(rights)}"
        logger.info(f"Granting {entry} on {path}")

        # Access entries on existing objects, default entries for new ones
        self._run(["-R", "-m", entry, path])
        self._run(["-R", "-d", "-m", entry, path])

    def revoke_all(self, path: str, principal: str) -> None:
        logger.info(f"Revoking all entries for {principal} on {path}")
        self._run(["-R", "-x", f"u:{principal}", path])
        self._run(["-R", "-d", "-x", f"u:{principal}", path])

    def _run(self, args: List[str]) -> None:
        command = [self.setfacl, *args]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise ControllerError(f"Required command is unavailable: {command[0]}") from e

        if result.returncode != 0:
            raise ControllerError(
                f"{' '.join(command)} failed [{result.returncode}]: {result.stderr.strip()}"
            )
