# deployment_engine/infrastructure/system/processes.py
"""Process termination through psutil."""

import logging
from typing import Optional

import psutil

from deployment_engine.core.collaborators import ProcessManager

logger = logging.getLogger(__name__)


class PsutilProcessManager(ProcessManager):
    def __init__(self, wait_timeout: Optional[float] = None):
        self.wait_timeout = wait_timeout

    def terminate(self, process_id: int) -> bool:
        try:
            process = psutil.Process(process_id)
        except psutil.NoSuchProcess:
            return False

        try:
            process.kill()
            process.wait(timeout=self.wait_timeout)
        except psutil.NoSuchProcess:
            return False

        logger.info(f"Killed process {process_id}")
        return True
