# deployment_engine/infrastructure/memory/backend.py
"""In-memory hosting backend used for development and tests."""

import itertools
import logging
from threading import Lock
from typing import Dict, List, Optional, Set

from deployment_engine.core.backend import (
    BackendSession,
    HostingBackend,
    HostingUnit,
    ProcessPool,
)
from deployment_engine.core.errors import BackendCommunicationError, BackendError
from deployment_engine.core.models import ObjectState, WorkerProcess

logger = logging.getLogger(__name__)


class _Transition:
    """Pending backend-driven transition, completed after N state reads."""

    def __init__(self, target: ObjectState, reads: int):
        self.target = target
        self.remaining = reads


class InMemoryHostingUnit(HostingUnit):
    def __init__(self, backend: "InMemoryHostingBackend", name: str, physical_path: str, port: int):
        super().__init__(name, physical_path, port)
        self._backend = backend
        self._state = ObjectState.STOPPED
        self._transition: Optional[_Transition] = None

    @property
    def state(self) -> ObjectState:
        self._backend._maybe_fail()
        self._advance()
        return self._state

    def start(self) -> None:
        self._backend._maybe_fail()
        self._backend.start_calls.append(self.name)
        if self._state in (ObjectState.STARTED, ObjectState.STARTING):
            return
        self._begin(ObjectState.STARTING, ObjectState.STARTED)

    def stop(self) -> None:
        self._backend._maybe_fail()
        self._backend.stop_calls.append(self.name)
        if self._state in (ObjectState.STOPPED, ObjectState.STOPPING):
            return
        self._begin(ObjectState.STOPPING, ObjectState.STOPPED)

    def force_state(self, state: ObjectState) -> None:
        self._state = state
        self._transition = None

    def _begin(self, intermediate: ObjectState, target: ObjectState) -> None:
        self._state = intermediate
        self._transition = _Transition(target, self._backend.transition_reads)
        self._advance()

    def _advance(self) -> None:
        transition = self._transition
        if transition is None:
            return

        if transition.target == ObjectState.STOPPED and self.name in self._backend.stuck_units:
            return

        if transition.remaining > 0:
            transition.remaining -= 1
            return

        self._state = transition.target
        self._transition = None

        if self._state == ObjectState.STARTED and self.pool_name:
            self._backend._activate_pool(self.pool_name)


class InMemoryProcessPool(ProcessPool):
    def __init__(self, backend: "InMemoryHostingBackend", name: str):
        super().__init__(name)
        self._backend = backend
        self._state = ObjectState.STOPPED
        self._transition: Optional[_Transition] = None

    @property
    def state(self) -> ObjectState:
        self._backend._maybe_fail()
        self._advance()
        return self._state

    def stop(self) -> None:
        self._backend._maybe_fail()
        if self._state in (ObjectState.STOPPED, ObjectState.STOPPING):
            return
        self._state = ObjectState.STOPPING
        self._transition = _Transition(ObjectState.STOPPED, self._backend.transition_reads)
        self._advance()

    def _advance(self) -> None:
        transition = self._transition
        if transition is None:
            return

        if self.name in self._backend.stuck_pools and self._backend.workers_of(self.name):
            return

        if transition.remaining > 0:
            transition.remaining -= 1
            return

        self._state = transition.target
        self._transition = None
        self._backend._drop_workers(self.name)


class InMemorySession(BackendSession):
    def __init__(self, backend: "InMemoryHostingBackend"):
        self._backend = backend
        self._added_units: Dict[str, InMemoryHostingUnit] = {}
        self._removed_units: Set[str] = set()
        self._added_pools: Dict[str, InMemoryProcessPool] = {}
        self._removed_pools: Set[str] = set()
        self.closed = False

    # -------------------------
    # UNITS
    # -------------------------

    def units(self) -> List[HostingUnit]:
        committed = [
            unit for name, unit in self._backend._units.items()
            if name not in self._removed_units
        ]
        return committed + list(self._added_units.values())

    def get_unit(self, name: str) -> Optional[HostingUnit]:
        for unit in self.units():
            if unit.name == name:
                return unit
        return None

    def add_unit(self, name: str, physical_path: str, port: int) -> HostingUnit:
        if self.get_unit(name) is not None:
            raise BackendError(f"Hosting unit {name} already exists")

        unit = InMemoryHostingUnit(self._backend, name, physical_path, port)
        self._added_units[name] = unit
        return unit

    def remove_unit(self, unit: HostingUnit) -> None:
        if self._added_units.pop(unit.name, None) is None:
            self._removed_units.add(unit.name)

    # -------------------------
    # POOLS
    # -------------------------

    def pools(self) -> List[ProcessPool]:
        committed = [
            pool for name, pool in self._backend._pools.items()
            if name not in self._removed_pools
        ]
        return committed + list(self._added_pools.values())

    def get_pool(self, name: str) -> Optional[ProcessPool]:
        for pool in self.pools():
            if pool.name == name:
                return pool
        return None

    def add_pool(self, name: str) -> ProcessPool:
        if self.get_pool(name) is not None:
            raise BackendError(f"Process pool {name} already exists")

        pool = InMemoryProcessPool(self._backend, name)
        self._added_pools[name] = pool
        return pool

    def remove_pool(self, pool: ProcessPool) -> None:
        if self._added_pools.pop(pool.name, None) is None:
            self._removed_pools.add(pool.name)

    # -------------------------
    # PROCESSES / COMMIT
    # -------------------------

    def worker_processes(self) -> List[WorkerProcess]:
        return list(self._backend._workers.values())

    def commit_changes(self) -> None:
        self._backend._apply(self)
        self._added_units.clear()
        self._removed_units.clear()
        self._added_pools.clear()
        self._removed_pools.clear()

    def close(self) -> None:
        self.closed = True


class InMemoryHostingBackend(HostingBackend):
    """
    Hosting backend kept in process memory.

    State transitions are backend-driven: a started or stopped unit
    reaches its target state after ``transition_reads`` state reads.
    Starting a unit activates its pool and spawns one worker process.

    Fault injection:
    - ``communication_failures``: number of upcoming calls that raise
      BackendCommunicationError
    - ``stuck_units`` / ``stuck_pools``: names that never finish stopping
      while they still have live workers
    """

    name = "memory"

    def __init__(self, transition_reads: int = 1, first_pid: int = 4000):
        self.transition_reads = transition_reads
        self.communication_failures = 0
        self.stuck_units: Set[str] = set()
        self.stuck_pools: Set[str] = set()

        self.commits = 0
        self.start_calls: List[str] = []
        self.stop_calls: List[str] = []
        self.sessions: List[InMemorySession] = []

        self._units: Dict[str, InMemoryHostingUnit] = {}
        self._pools: Dict[str, InMemoryProcessPool] = {}
        self._workers: Dict[int, WorkerProcess] = {}
        self._pids = itertools.count(first_pid)
        self._lock = Lock()

    def open_session(self) -> BackendSession:
        session = InMemorySession(self)
        self.sessions.append(session)
        return session

    # -------------------------
    # WORKERS
    # -------------------------

    def spawn_worker(self, pool_name: str) -> WorkerProcess:
        with self._lock:
            process = WorkerProcess(process_id=next(self._pids), pool_name=pool_name)
            self._workers[process.process_id] = process
        logger.debug(f"[memory] spawned worker {process.process_id} in {pool_name}")
        return process

    def workers_of(self, pool_name: str) -> List[WorkerProcess]:
        return [w for w in self._workers.values() if w.pool_name == pool_name]

    def terminate_worker(self, process_id: int) -> bool:
        with self._lock:
            process = self._workers.pop(process_id, None)
        if process is None:
            return False

        pool = self._pools.get(process.pool_name)
        if pool is not None and not self.workers_of(pool.name):
            pool._state = ObjectState.STOPPED
            pool._transition = None
        return True

    # -------------------------
    # INTERNALS
    # -------------------------

    def _maybe_fail(self) -> None:
        if self.communication_failures > 0:
            self.communication_failures -= 1
            raise BackendCommunicationError("simulated backend communication failure")

    def _activate_pool(self, pool_name: str) -> None:
        pool = self._pools.get(pool_name)
        if pool is None:
            return
        pool._state = ObjectState.STARTED
        pool._transition = None
        if not self.workers_of(pool_name):
            self.spawn_worker(pool_name)

    def _drop_workers(self, pool_name: str) -> None:
        with self._lock:
            for process in self.workers_of(pool_name):
                self._workers.pop(process.process_id, None)

    def _apply(self, session: InMemorySession) -> None:
        with self._lock:
            for name in session._removed_units:
                self._units.pop(name, None)
            for name in session._removed_pools:
                self._pools.pop(name, None)
            self._units.update(session._added_units)
            self._pools.update(session._added_pools)
            self.commits += 1
