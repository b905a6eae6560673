# deployment_engine/core/backend.py

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Iterator, List, Optional

from deployment_engine.core.models import ObjectState, WorkerProcess


class HostingUnit(ABC):
    """
    Site binding a network port to a physical path.

    Configuration attributes (``pool_name``, ``autostart``) are plain
    attributes and take effect on ``BackendSession.commit_changes``.
    """

    def __init__(self, name: str, physical_path: str, port: int):
        self.name = name
        self.physical_path = physical_path
        self.port = port
        self.pool_name: Optional[str] = None
        self.autostart = True

    @property
    @abstractmethod
    def state(self) -> ObjectState:
        """
        Current state as reported by the backend.
        May raise BackendCommunicationError.
        """
        raise NotImplementedError

    @abstractmethod
    def start(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name={self.name!r}, port={self.port})>"


class ProcessPool(ABC):
    """Execution context (identity, worker processes) backing a hosting unit."""

    def __init__(self, name: str):
        self.name = name
        self.runtime_version: Optional[str] = None
        self.user: Optional[str] = None
        self.password: Optional[str] = None
        self.enable_32bit = False

    @property
    @abstractmethod
    def state(self) -> ObjectState:
        raise NotImplementedError

    @abstractmethod
    def stop(self) -> None:
        raise NotImplementedError

    def __repr__(self) -> str:
        return f"<{type(self).__name__}(name={self.name!r})>"


class BackendSession(ABC):
    """
    Open handle on the backend registry.

    Additions and removals are pending until ``commit_changes``.
    """

    @abstractmethod
    def units(self) -> List[HostingUnit]:
        raise NotImplementedError

    @abstractmethod
    def get_unit(self, name: str) -> Optional[HostingUnit]:
        raise NotImplementedError

    @abstractmethod
    def add_unit(self, name: str, physical_path: str, port: int) -> HostingUnit:
        """
        Stage a new hosting unit.
        Must fail if a unit with that name already exists.
        """
        raise NotImplementedError

    @abstractmethod
    def remove_unit(self, unit: HostingUnit) -> None:
        raise NotImplementedError

    @abstractmethod
    def pools(self) -> List[ProcessPool]:
        raise NotImplementedError

    @abstractmethod
    def get_pool(self, name: str) -> Optional[ProcessPool]:
        raise NotImplementedError

    @abstractmethod
    def add_pool(self, name: str) -> ProcessPool:
        raise NotImplementedError

    @abstractmethod
    def remove_pool(self, pool: ProcessPool) -> None:
        raise NotImplementedError

    @abstractmethod
    def worker_processes(self) -> List[WorkerProcess]:
        """Enumerate live worker processes of every pool."""
        raise NotImplementedError

    @abstractmethod
    def commit_changes(self) -> None:
        """Flush pending changes to the backend."""
        raise NotImplementedError

    def close(self) -> None:
        """Release the session. Uncommitted changes are discarded."""
        pass

    def find_unit_by_port(self, port: int) -> Optional[HostingUnit]:
        """First unit whose primary binding uses ``port``."""
        for unit in self.units():
            if unit.port == port:
                return unit
        return None


class HostingBackend(ABC):
    """Hosting backend contract (sites, process pools, worker processes)."""

    name = "abstract"

    @abstractmethod
    def open_session(self) -> BackendSession:
        raise NotImplementedError

    @contextmanager
    def session(self) -> Iterator[BackendSession]:
        session = self.open_session()
        try:
            yield session
        finally:
            session.close()
