# deployment_engine/controller/controller.py
"""Deployment controller - drives a hosted application through its lifecycle."""

import logging
import os
import threading
import time
from typing import Callable, List, Mapping, Optional, Sequence

from deployment_engine.autowiring.autowire import Autowirer
from deployment_engine.controller.config import WaitPolicy
from deployment_engine.controller.polling import wait_for_state
from deployment_engine.controller.runtime import detect_runtime_variant
from deployment_engine.controller.teardown import kill_pool_processes, stop_with_retry
from deployment_engine.core.backend import BackendSession, HostingBackend, HostingUnit
from deployment_engine.core.collaborators import Firewall, PermissionManager, ProcessManager
from deployment_engine.core.errors import (
    DeploymentValidationError,
    HostingUnitNotFound,
    OperationNotSupportedError,
    StateTimeoutError,
)
from deployment_engine.core.models import (
    DEPLOYMENT_DIR_RIGHTS,
    ApplicationDescriptor,
    ApplicationVariable,
    ObjectState,
    RuntimeVariant,
    ServiceBinding,
    WaitResult,
)

logger = logging.getLogger(__name__)


def startup_logger(identifier: str, log_path: Optional[str] = None) -> logging.Logger:
    """
    Per-application startup logger.

    When ``log_path`` is given, records are also written to that file.
    """
    log = logging.getLogger(f"deployment_engine.startup.{identifier}")

    if log_path:
        target = os.path.abspath(log_path)
        attached = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == target
            for h in log.handlers
        )
        if not attached:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            handler = logging.FileHandler(target, encoding="utf-8")
            handler.setFormatter(logging.Formatter(
                '%(asctime)s - %(levelname)s - %(message)s'
            ))
            log.addHandler(handler)
            log.setLevel(logging.INFO)

    return log


def _path_key(path: str) -> str:
    return os.path.normpath(os.path.abspath(os.path.expandvars(path))).casefold()


class DeploymentController:
    """
    Lifecycle controller for one hosted application.

    Flow:
    1. configure() - autowire the application's configuration
    2. start() - provision the hosting unit if needed, then start it
    3. query_process_id() while running
    4. stop() / stop_application() / kill()
    5. delete(port) / cleanup(path) to tear hosting units down

    Every operation that touches the backend holds ``lock`` for its whole
    duration, including polling waits. Pass the same lock (normally a
    ``HostLock``) to every controller on the host.
    """

    def __init__(
        self,
        backend: HostingBackend,
        permissions: PermissionManager,
        firewall: Firewall,
        processes: ProcessManager,
        *,
        lock=None,
        policy: Optional[WaitPolicy] = None,
        autowirer: Optional[Autowirer] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._backend = backend
        self._permissions = permissions
        self._firewall = firewall
        self._processes = processes

        self._lock = lock if lock is not None else threading.Lock()
        self._policy = policy or WaitPolicy()
        self._autowirer = autowirer or Autowirer(permissions)
        self._sleep = sleep

        self._app: Optional[ApplicationDescriptor] = None
        self._log = logger

    # -------------------------
    # PROPERTIES
    # -------------------------

    @property
    def app(self) -> Optional[ApplicationDescriptor]:
        return self._app

    @property
    def identifier(self) -> str:
        return self._require_app().identifier

    # -------------------------
    # CONFIGURE
    # -------------------------

    def configure(
        self,
        app: ApplicationDescriptor,
        variables: Sequence[ApplicationVariable] = (),
        services: Sequence[ServiceBinding] = (),
        log_file_path: str = "",
        error_log_file_path: str = "",
        *,
        startup_log_path: Optional[str] = None,
        templates: Optional[Mapping[str, str]] = None,
    ) -> None:
        """Bind this controller to an application and autowire it."""
        if app is None:
            raise DeploymentValidationError("application descriptor is required")

        self._app = app
        self._log = startup_logger(app.identifier, startup_log_path)

        try:
            self._autowirer.autowire(
                app,
                variables,
                services,
                log_file_path,
                error_log_file_path,
                templates=templates,
                log=self._log,
            )
        except Exception:
            self._log.error(f"[{app.identifier}] Configuration failed", exc_info=True)
            raise

    def recover_application(self, application_path: str, process_id: int) -> None:
        raise OperationNotSupportedError("Recovering a running application is not supported")

    def configure_debug(
        self,
        debug_port: str,
        debug_ip: str,
        debug_variables: Sequence[ApplicationVariable] = (),
    ) -> None:
        raise OperationNotSupportedError("Remote debugging is not supported")

    # -------------------------
    # PROVISION
    # -------------------------

    def provision(
        self,
        app: Optional[ApplicationDescriptor] = None,
        runtime_variant: RuntimeVariant = RuntimeVariant.V4,
    ) -> None:
        """
        Create the hosting unit and its process pool.

        Nothing is rolled back on failure: a partially provisioned unit
        must be removed by the caller with delete() or cleanup().
        """
        if app is not None and self._app is None:
            self._app = app
        app = app or self._require_app()

        with self._lock:
            self._provision(app, runtime_variant)

    def _provision(self, app: ApplicationDescriptor, runtime_variant: RuntimeVariant) -> None:
        self._log.info(f"[{app.identifier}] Deploying app on {self._backend.name} backend.")

        try:
            with self._backend.session() as session:
                if app.user:
                    self._permissions.grant(app.path, app.user, DEPLOYMENT_DIR_RIGHTS)

                unit = session.add_unit(app.identifier, app.path, app.port)
                unit.autostart = False

                pool = session.get_pool(app.identifier)
                if pool is None:
                    pool = session.add_pool(app.identifier)
                    pool.runtime_version = runtime_variant.value
                    pool.user = app.user
                    pool.password = app.password
                    pool.enable_32bit = True

                unit.pool_name = pool.name
                self._firewall.open_port(app.port, app.name)
                session.commit_changes()
        finally:
            self._log.info(f"[{app.identifier}] Finished app deployment.")

    # -------------------------
    # START
    # -------------------------

    def start(self) -> None:
        """
        Start the application and block until its unit is Started.

        Provisions the unit first when the backend does not know it yet.

        Raises:
            StateTimeoutError: If the unit does not reach Started in time
        """
        app = self._require_app()

        try:
            with self._lock:
                if not self._unit_exists(app.identifier):
                    self._provision(app, detect_runtime_variant(app.path))
                self._start_unit(app)
        except Exception:
            self._log.error(f"[{app.identifier}] Start failed", exc_info=True)
            raise

    def _start_unit(self, app: ApplicationDescriptor) -> None:
        self._log.info(f"[{app.identifier}] Starting hosting unit.")
        policy = self._policy

        try:
            with self._backend.session() as session:
                unit = self._require_unit(session, app.identifier)

                state = unit.state
                if state == ObjectState.STOPPING:
                    self._wait(unit, ObjectState.STOPPED, policy.settle_timeout_ms)
                    state = unit.state

                if state == ObjectState.STARTED:
                    self._log.info(f"[{app.identifier}] Already started.")
                    return

                if state != ObjectState.STARTING:
                    unit.start()

                result = self._wait(unit, ObjectState.STARTED, policy.start_timeout_ms)
                if not result:
                    raise StateTimeoutError(
                        "App start operation exceeded maximum time",
                        target=ObjectState.STARTED,
                        last_state=result.state,
                    )
        finally:
            self._log.info(f"[{app.identifier}] Finished starting hosting unit.")

    # -------------------------
    # STOP
    # -------------------------

    def stop(self) -> WaitResult:
        """
        Stop the application's unit and wait for Stopped.

        A timeout is logged, not raised: check the returned result.
        """
        app = self._require_app()
        with self._lock:
            return self._stop_unit(app)

    def stop_application(self) -> WaitResult:
        """Stop the application, then clean up everything hosted under its path."""
        result = self.stop()
        self.cleanup(self._require_app().path)
        return result

    def _stop_unit(self, app: ApplicationDescriptor) -> WaitResult:
        policy = self._policy

        with self._backend.session() as session:
            unit = session.get_unit(app.identifier)
            if unit is None:
                self._log.warning(f"[{app.identifier}] No hosting unit to stop.")
                return WaitResult(reached=True, target=ObjectState.STOPPED, state=None, elapsed_ms=0)

            state = unit.state
            if state == ObjectState.STOPPED:
                return WaitResult(reached=True, target=ObjectState.STOPPED, state=state, elapsed_ms=0)

            if state in (ObjectState.STARTING, ObjectState.STARTED):
                self._wait(unit, ObjectState.STARTED, policy.stop_timeout_ms)
                unit.stop()

            result = self._wait(unit, ObjectState.STOPPED, policy.stop_timeout_ms)
            if not result:
                self._log.warning(
                    f"[{app.identifier}] Unit not stopped after {policy.stop_timeout_ms}ms "
                    f"(state: {result.state})"
                )
            return result

    # -------------------------
    # QUERY / KILL
    # -------------------------

    def query_process_id(self) -> int:
        """Process id of the first worker of the application's pool, 0 if none."""
        app = self._require_app()

        with self._lock, self._backend.session() as session:
            unit = session.get_unit(app.identifier)
            if unit is None or not unit.pool_name:
                return 0

            for process in session.worker_processes():
                if process.pool_name == unit.pool_name:
                    return process.process_id
        return 0

    def kill(self) -> int:
        """Force-kill the application's worker processes without stopping first."""
        app = self._require_app()

        with self._lock, self._backend.session() as session:
            unit = self._require_unit(session, app.identifier)
            if not unit.pool_name:
                return 0
            return kill_pool_processes(session, self._processes, unit.pool_name)

    # -------------------------
    # DELETE / CLEANUP
    # -------------------------

    def delete(self, port: int) -> None:
        """
        Remove the hosting unit bound to ``port`` and its process pool.

        Units and pools that do not stop in time have their worker
        processes killed before removal.
        """
        with self._lock:
            self._delete(port)

    def _delete(self, port: int) -> None:
        policy = self._policy

        with self._backend.session() as session:
            unit = session.find_unit_by_port(port)
            if unit is None:
                raise HostingUnitNotFound(f"No hosting unit bound to port {port}")

            name = unit.name
            pool_name = unit.pool_name
            path = unit.physical_path
            # Read before removal: some backends drop the pool with its last unit
            pool = session.get_pool(pool_name) if pool_name else None
            user = pool.user if pool is not None else None
            logger.info(f"[{name}] Deleting hosting unit on port {port}")

            stop_with_retry(
                unit.stop, name, interval_ms=policy.delete_poll_interval_ms, sleep=self._sleep
            )
            result = self._wait(
                unit, ObjectState.STOPPED, policy.delete_timeout_ms, policy.delete_poll_interval_ms
            )
            if not result and pool_name:
                kill_pool_processes(session, self._processes, pool_name)

            session.remove_unit(unit)
            session.commit_changes()
            self._firewall.close_port(port)

            pool = session.get_pool(pool_name) if pool_name else None
            if pool is None:
                logger.info(f"[{name}] No process pool to delete")
            else:
                stop_with_retry(
                    pool.stop, pool.name, interval_ms=policy.delete_poll_interval_ms, sleep=self._sleep
                )
                result = self._wait(
                    pool, ObjectState.STOPPED, policy.delete_timeout_ms, policy.delete_poll_interval_ms
                )
                if not result:
                    kill_pool_processes(session, self._processes, pool.name)

                session.remove_pool(pool)
                session.commit_changes()

            if user and os.path.isdir(path):
                self._permissions.revoke_all(path, user)

        logger.info(f"[{name}] Deleted")

    def cleanup(self, root_path: str) -> List[str]:
        """
        Delete every hosting unit that is orphaned or hosted under ``root_path``.

        A unit is deleted when its physical path no longer exists, equals
        ``root_path``, or equals a directory below it. Paths are compared
        case-insensitively after environment-variable expansion.

        Returns:
            Names of the deleted units
        """
        with self._lock:
            return self._cleanup(root_path)

    def _cleanup(self, root_path: str) -> List[str]:
        root = os.path.abspath(os.path.expandvars(root_path))
        root_key = _path_key(root)

        children = set()
        if os.path.isdir(root):
            for dirpath, dirnames, _ in os.walk(root):
                for dirname in dirnames:
                    children.add(_path_key(os.path.join(dirpath, dirname)))

        targets = []
        with self._backend.session() as session:
            for unit in session.units():
                full_path = os.path.expandvars(unit.physical_path)
                key = _path_key(full_path)

                if not os.path.isdir(full_path):
                    logger.info(f"[{unit.name}] Physical path {full_path} is gone")
                    targets.append((unit.name, unit.port))
                elif key == root_key or key in children:
                    targets.append((unit.name, unit.port))

        for name, port in targets:
            self._delete(port)

        return [name for name, _ in targets]

    # -------------------------
    # HELPERS
    # -------------------------

    def _wait(self, handle, target: ObjectState, timeout_ms: int, interval_ms: Optional[int] = None) -> WaitResult:
        return wait_for_state(
            lambda: handle.state,
            target,
            timeout_ms,
            interval_ms=interval_ms or self._policy.poll_interval_ms,
            sleep=self._sleep,
        )

    def _unit_exists(self, name: str) -> bool:
        with self._backend.session() as session:
            return session.get_unit(name) is not None

    def _require_app(self) -> ApplicationDescriptor:
        if self._app is None:
            raise DeploymentValidationError("Controller has not been configured with an application")
        return self._app

    @staticmethod
    def _require_unit(session: BackendSession, name: str) -> HostingUnit:
        unit = session.get_unit(name)
        if unit is None:
            raise HostingUnitNotFound(f"Hosting unit {name} not found")
        return unit
