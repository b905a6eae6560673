# deployment_engine/infrastructure/system/firewall.py
"""Host firewall control through ``ufw``."""

import logging
import subprocess

from deployment_engine.core.collaborators import Firewall
from deployment_engine.core.errors import ControllerError

logger = logging.getLogger(__name__)


class UfwFirewall(Firewall):
    def __init__(self, ufw: str = "ufw"):
        self.ufw = ufw

    def open_port(self, port: int, label: str) -> None:
        logger.info(f"Opening port {port} for {label}")
        self._run(["allow", f"{port}/tcp", "comment", label])

    def close_port(self, port: int) -> None:
        logger.info(f"Closing port {port}")
        self._run(["delete", "allow", f"{port}/tcp"])

    def _run(self, args) -> None:
        command = [self.ufw, *args]
        try:
            result = subprocess.run(command, capture_output=True, text=True, check=False)
        except FileNotFoundError as e:
            raise ControllerError(f"Required command is unavailable: {command[0]}") from e

        if result.returncode != 0:
            raise ControllerError(
                f"{' '.join(command)} failed [{result.returncode}]: {result.stderr.strip()}"
            )
