# deployment_engine/infrastructure/docker/backend.py
"""
Docker hosting backend.

Mapping:
- hosting unit  -> container named after the unit, publishing its port,
                   with the physical path mounted at /app
- process pool  -> the containers labelled with the pool name; pool
                   settings (runtime, identity) are stored as labels
- worker process -> host processes reported by ``container.top()``
"""

import logging
from typing import Dict, List, Optional

import docker
import requests

from deployment_engine.core.backend import (
    BackendSession,
    HostingBackend,
    HostingUnit,
    ProcessPool,
)
from deployment_engine.core.errors import BackendCommunicationError, BackendError
from deployment_engine.core.models import ObjectState, WorkerProcess

logger = logging.getLogger(__name__)

MANAGED_LABEL = "managed_by"
MANAGED_VALUE = "deployment_engine"
UNIT_LABEL = "deployment.unit"
POOL_LABEL = "deployment.pool"
PATH_LABEL = "deployment.path"
PORT_LABEL = "deployment.port"
RUNTIME_LABEL = "deployment.runtime"
USER_LABEL = "deployment.user"

_STATUS_MAP = {
    "created": ObjectState.STOPPED,
    "exited": ObjectState.STOPPED,
    "dead": ObjectState.STOPPED,
    "paused": ObjectState.STOPPED,
    "restarting": ObjectState.STARTING,
    "running": ObjectState.STARTED,
    "removing": ObjectState.STOPPING,
}


def _communication(e: Exception) -> BackendCommunicationError:
    return BackendCommunicationError(f"Docker error: {e}")


class DockerHostingUnit(HostingUnit):
    def __init__(self, backend: "DockerHostingBackend", name: str, physical_path: str, port: int, container=None):
        super().__init__(name, physical_path, port)
        self._backend = backend
        self.container = container
        self.autostart = False

    @property
    def state(self) -> ObjectState:
        if self.container is None:
            return ObjectState.STOPPED
        try:
            self.container.reload()
        except docker.errors.NotFound:
            return ObjectState.STOPPED
        except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
            raise _communication(e)
        return _STATUS_MAP.get(self.container.status, ObjectState.STOPPED)

    def start(self) -> None:
        if self.container is None:
            raise BackendError(f"Hosting unit {self.name} is not committed")
        try:
            self.container.start()
        except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
            raise _communication(e)

    def stop(self) -> None:
        if self.container is None:
            return
        try:
            self.container.stop(timeout=self._backend.stop_timeout)
        except docker.errors.NotFound:
            return
        except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
            raise _communication(e)


class DockerProcessPool(ProcessPool):
    def __init__(self, backend: "DockerHostingBackend", name: str):
        super().__init__(name)
        self._backend = backend

    def _containers(self) -> list:
        return self._backend.list_containers({POOL_LABEL: self.name})

    @property
    def state(self) -> ObjectState:
        states = {_STATUS_MAP.get(c.status, ObjectState.STOPPED) for c in self._containers()}
        for state in (ObjectState.STARTED, ObjectState.STARTING, ObjectState.STOPPING):
            if state in states:
                return state
        return ObjectState.STOPPED

    def stop(self) -> None:
        for container in self._containers():
            try:
                container.stop(timeout=self._backend.stop_timeout)
            except docker.errors.NotFound:
                continue
            except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
                raise _communication(e)


class DockerSession(BackendSession):
    def __init__(self, backend: "DockerHostingBackend"):
        self._backend = backend
        self._added_units: Dict[str, DockerHostingUnit] = {}
        self._removed_units: Dict[str, DockerHostingUnit] = {}
        self._added_pools: Dict[str, DockerProcessPool] = {}
        self._removed_pools: Dict[str, DockerProcessPool] = {}

    # -------------------------
    # UNITS
    # -------------------------

    def units(self) -> List[HostingUnit]:
        units: List[HostingUnit] = []
        for container in self._backend.list_containers():
            labels = container.labels
            name = labels.get(UNIT_LABEL, container.name)
            if name in self._removed_units:
                continue
            unit = DockerHostingUnit(
                self._backend,
                name,
                labels.get(PATH_LABEL, ""),
                int(labels.get(PORT_LABEL, 0)),
                container=container,
            )
            unit.pool_name = labels.get(POOL_LABEL)
            units.append(unit)
        return units + list(self._added_units.values())

    def get_unit(self, name: str) -> Optional[HostingUnit]:
        for unit in self.units():
            if unit.name == name:
                return unit
        return None

    def add_unit(self, name: str, physical_path: str, port: int) -> HostingUnit:
        if self.get_unit(name) is not None:
            raise BackendError(f"Hosting unit {name} already exists")
        unit = DockerHostingUnit(self._backend, name, physical_path, port)
        self._added_units[name] = unit
        return unit

    def remove_unit(self, unit: HostingUnit) -> None:
        if self._added_units.pop(unit.name, None) is None:
            self._removed_units[unit.name] = unit

    # -------------------------
    # POOLS
    # -------------------------

    def pools(self) -> List[ProcessPool]:
        names = {
            c.labels.get(POOL_LABEL) for c in self._backend.list_containers()
        } - {None} - set(self._removed_pools)

        pools: List[ProcessPool] = []
        for name in sorted(names):
            pool = DockerProcessPool(self._backend, name)
            labels = self._backend.list_containers({POOL_LABEL: name})[0].labels
            pool.runtime_version = labels.get(RUNTIME_LABEL)
            pool.user = labels.get(USER_LABEL) or None
            pools.append(pool)
        return pools + list(self._added_pools.values())

    def get_pool(self, name: str) -> Optional[ProcessPool]:
        for pool in self.pools():
            if pool.name == name:
                return pool
        return None

    def add_pool(self, name: str) -> ProcessPool:
        if self.get_pool(name) is not None:
            raise BackendError(f"Process pool {name} already exists")
        pool = DockerProcessPool(self._backend, name)
        self._added_pools[name] = pool
        return pool

    def remove_pool(self, pool: ProcessPool) -> None:
        if self._added_pools.pop(pool.name, None) is None:
            self._removed_pools[pool.name] = pool

    # -------------------------
    # PROCESSES / COMMIT
    # -------------------------

    def worker_processes(self) -> List[WorkerProcess]:
        processes: List[WorkerProcess] = []
        for container in self._backend.list_containers():
            if container.status != "running":
                continue
            pool_name = container.labels.get(POOL_LABEL)
            try:
                top = container.top()
            except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
                raise _communication(e)

            titles = top.get("Titles", [])
            pid_column = titles.index("PID") if "PID" in titles else 1
            for row in top.get("Processes") or []:
                processes.append(WorkerProcess(process_id=int(row[pid_column]), pool_name=pool_name))
        return processes

    def commit_changes(self) -> None:
        for unit in self._removed_units.values():
            if unit.container is not None:
                logger.info(f"[docker] Removing container {unit.name}")
                try:
                    unit.container.remove(force=True)
                except docker.errors.NotFound:
                    pass
                except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
                    raise _communication(e)

        for unit in self._added_units.values():
            pool = self._added_pools.get(unit.pool_name) or self.get_pool(unit.pool_name or "")
            unit.container = self._backend.create_container(unit, pool)

        # Pools only exist through their containers
        self._added_units.clear()
        self._removed_units.clear()
        self._added_pools.clear()
        self._removed_pools.clear()


class DockerHostingBackend(HostingBackend):
    """Hosting backend backed by the local Docker daemon."""

    name = "docker"

    def __init__(
        self,
        client=None,
        *,
        image: str = "mono:latest",
        container_port: int = 80,
        stop_timeout: int = 10,
    ):
        self._client = client
        self.image = image
        self.container_port = container_port
        self.stop_timeout = stop_timeout

    @property
    def client(self):
        if self._client is None:
            try:
                self._client = docker.from_env()
                logger.info("Connected to Docker daemon")
            except docker.errors.DockerException as e:
                raise _communication(e)
        return self._client

    def open_session(self) -> BackendSession:
        return DockerSession(self)

    def list_containers(self, labels: Optional[Dict[str, str]] = None) -> list:
        filters = [f"{MANAGED_LABEL}={MANAGED_VALUE}"]
        for key, value in (labels or {}).items():
            filters.append(f"{key}={value}")
        try:
            return self.client.containers.list(all=True, filters={"label": filters})
        except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
            raise _communication(e)

    def create_container(self, unit: DockerHostingUnit, pool: Optional[ProcessPool]):
        labels = {
            MANAGED_LABEL: MANAGED_VALUE,
            UNIT_LABEL: unit.name,
            PATH_LABEL: unit.physical_path,
            PORT_LABEL: str(unit.port),
            POOL_LABEL: unit.pool_name or unit.name,
        }

        container_config = {
            "image": self.image,
            "name": unit.name,
            "detach": True,
            "labels": labels,
            "ports": {f"{self.container_port}/tcp": unit.port},
            "volumes": {unit.physical_path: {"bind": "/app", "mode": "rw"}},
            "working_dir": "/app",
            "environment": {"PORT": str(self.container_port)},
        }

        if pool is not None:
            labels[RUNTIME_LABEL] = pool.runtime_version or ""
            labels[USER_LABEL] = pool.user or ""
            container_config["environment"]["RUNTIME_VERSION"] = pool.runtime_version or ""
            if pool.user:
                container_config["user"] = pool.user

        if unit.autostart:
            container_config["restart_policy"] = {"Name": "always"}

        logger.info(f"[docker] Creating container {unit.name} on port {unit.port}")
        try:
            return self.client.containers.create(**container_config)
        except docker.errors.ImageNotFound:
            raise BackendError(f"Image not found: {self.image}")
        except (docker.errors.APIError, requests.exceptions.ConnectionError) as e:
            raise _communication(e)
