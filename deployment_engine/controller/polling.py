# deployment_engine/controller/polling.py
"""State-wait engine: blocks until a unit reaches a state or the budget runs out."""

import logging
import time
from threading import Event
from typing import Callable, Optional

from deployment_engine.core.errors import BackendCommunicationError
from deployment_engine.core.models import ObjectState, WaitResult

logger = logging.getLogger(__name__)


def wait_for_state(
    read_state: Callable[[], ObjectState],
    target: ObjectState,
    timeout_ms: int,
    *,
    interval_ms: int = 25,
    sleep: Callable[[float], None] = time.sleep,
    cancel: Optional[Event] = None,
) -> WaitResult:
    """
    Poll ``read_state`` every ``interval_ms`` until it returns ``target``.

    Backend communication errors count as a missed tick. The state is
    read once more after the budget is exhausted.

    Args:
        read_state: Callable returning the current state
        target: State to wait for
        timeout_ms: Total wait budget
        interval_ms: Delay between polls
        sleep: Sleep function (seconds)
        cancel: Optional event that aborts the wait

    Returns:
        WaitResult (falsy on timeout)
    """
    elapsed = 0
    last: Optional[ObjectState] = None

    while elapsed < timeout_ms:
        if cancel is not None and cancel.is_set():
            logger.info(f"Wait for {target.value} cancelled after {elapsed}ms")
            return WaitResult(reached=False, target=target, state=last, elapsed_ms=elapsed)

        try:
            last = read_state()
            if last == target:
                return WaitResult(reached=True, target=target, state=last, elapsed_ms=elapsed)
        except BackendCommunicationError as e:
            logger.warning(f"Missed state poll while waiting for {target.value}: {e}")

        sleep(interval_ms / 1000.0)
        elapsed += interval_ms

    try:
        last = read_state()
    except BackendCommunicationError as e:
        logger.warning(f"Final state poll failed: {e}")

    reached = last == target
    if not reached:
        logger.debug(f"State {target.value} not reached within {timeout_ms}ms (last: {last})")

    return WaitResult(reached=reached, target=target, state=last, elapsed_ms=elapsed)
