# deployment_engine/infrastructure/memory/collaborators.py
"""In-memory firewall, permission and process collaborators."""

from threading import Lock
from typing import Dict, List, Tuple

from deployment_engine.core.collaborators import Firewall, PermissionManager, ProcessManager
from deployment_engine.core.models import Rights
from deployment_engine.infrastructure.memory.backend import InMemoryHostingBackend


class InMemoryPermissionManager(PermissionManager):
    def __init__(self):
        self.entries: Dict[Tuple[str, str], Rights] = {}
        self.revoked: List[Tuple[str, str]] = []

    def grant(self, path: str, principal: str, rights: Rights) -> None:
        key = (path, principal)
        if key in self.entries:
            rights = self.entries[key] | rights
        self.entries[key] = rights

    def revoke_all(self, path: str, principal: str) -> None:
        self.entries.pop((path, principal), None)
        self.revoked.append((path, principal))

    def rights_of(self, path: str, principal: str) -> Rights:
        return self.entries.get((path, principal), Rights(0))


class InMemoryFirewall(Firewall):
    def __init__(self):
        self.open_ports: Dict[int, str] = {}
        self._lock = Lock()

    def open_port(self, port: int, label: str) -> None:
        with self._lock:
            self.open_ports[port] = label

    def close_port(self, port: int) -> None:
        with self._lock:
            self.open_ports.pop(port, None)

    def is_open(self, port: int) -> bool:
        return port in self.open_ports


class InMemoryProcessManager(ProcessManager):
    """Terminates the fake worker processes of an in-memory backend."""

    def __init__(self, backend: InMemoryHostingBackend):
        self._backend = backend
        self.terminated: List[int] = []

    def terminate(self, process_id: int) -> bool:
        killed = self._backend.terminate_worker(process_id)
        if killed:
            self.terminated.append(process_id)
        return killed
