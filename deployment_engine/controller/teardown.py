# deployment_engine/controller/teardown.py
"""Forced teardown of worker processes."""

import logging
import time
from typing import Callable

from deployment_engine.core.backend import BackendSession
from deployment_engine.core.collaborators import ProcessManager
from deployment_engine.core.errors import BackendCommunicationError

logger = logging.getLogger(__name__)


def kill_pool_processes(
    session: BackendSession,
    processes: ProcessManager,
    pool_name: str,
) -> int:
    """
    Forcefully kill every worker process of a process pool.

    Each process is terminated and waited for. Processes that are
    already gone are skipped.

    Returns:
        Number of processes killed
    """
    killed = 0

    for process in session.worker_processes():
        if process.pool_name != pool_name:
            continue

        logger.warning(f"[{pool_name}] Killing worker process {process.process_id}")
        if processes.terminate(process.process_id):
            killed += 1
        else:
            logger.info(f"[{pool_name}] Worker process {process.process_id} already exited")

    return killed


def stop_with_retry(
    stop: Callable[[], None],
    name: str,
    *,
    interval_ms: int = 100,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Issue a stop command, retrying for as long as the backend
    reports transient communication failures.

    Returns:
        Number of failed attempts before the command went through
    """
    failures = 0

    while True:
        try:
            stop()
            return failures
        except BackendCommunicationError as e:
            failures += 1
            logger.warning(f"[{name}] Stop failed (attempt {failures}), retrying: {e}")
            sleep(interval_ms / 1000.0)
