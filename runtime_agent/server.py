# runtime_agent/server.py
"""
Runtime Agent - Runs on hosting nodes.
Receives lifecycle requests and drives a deployment controller per application.
"""

import logging
from threading import Lock
from typing import Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from deployment_engine.controller.controller import DeploymentController
from deployment_engine.core.errors import (
    ControllerError,
    DeploymentValidationError,
    HostingUnitNotFound,
    OperationNotSupportedError,
    StateTimeoutError,
)
from deployment_engine.core.models import ApplicationDescriptor, ApplicationVariable, ServiceBinding
from deployment_engine.infrastructure.network import get_local_ip_address

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


# ============================================
# REQUEST/RESPONSE MODELS
# ============================================

class ServiceSpec(BaseModel):
    """Bound service specification."""
    label: str = Field(..., description="Service type, e.g. 'mssql'")
    name: str = Field(..., description="Service name used in the {label#name} marker")
    host: str
    port: int
    instance_name: str = ""
    user: str = ""
    password: str = ""


class ConfigureRequest(BaseModel):
    """Configure application request."""
    name: str
    port: int
    path: str
    user: Optional[str] = None
    password: Optional[str] = None
    variables: Dict[str, str] = Field(default_factory=dict, description="appSettings to inject")
    services: List[ServiceSpec] = Field(default_factory=list)
    log_file_path: str
    error_log_file_path: str
    startup_log_path: Optional[str] = None
    templates: Dict[str, str] = Field(default_factory=dict, description="Extra connection string templates")


class ConfigureResponse(BaseModel):
    identifier: str


class StopResponse(BaseModel):
    identifier: str
    stopped: bool
    state: Optional[str]
    deleted: List[str] = Field(default_factory=list)


class ProcessIdResponse(BaseModel):
    identifier: str
    process_id: int


class CleanupRequest(BaseModel):
    path: str


class CleanupResponse(BaseModel):
    deleted: List[str]


class NodeInfoResponse(BaseModel):
    host_ip: Optional[str]
    backend: str
    applications: int


# ============================================
# APP
# ============================================

def _http_error(e: Exception) -> HTTPException:
    if isinstance(e, DeploymentValidationError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, HostingUnitNotFound):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, OperationNotSupportedError):
        return HTTPException(status_code=501, detail=str(e))
    if isinstance(e, StateTimeoutError):
        return HTTPException(status_code=504, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def create_app(controller_factory: Callable[[], DeploymentController], backend_name: str = "memory") -> FastAPI:
    app = FastAPI(
        title="Runtime Agent",
        description="Hosting runtime agent for the deployment controller",
        version="1.0.0"
    )

    # One controller per configured application, dropped once its unit is deleted
    controllers: Dict[str, DeploymentController] = {}
    registry_lock = Lock()

    # Used for host-wide operations that are not tied to one application
    host_controller = controller_factory()

    def _controller(identifier: str) -> DeploymentController:
        with registry_lock:
            controller = controllers.get(identifier)
        if controller is None:
            raise HTTPException(status_code=404, detail=f"Application {identifier} not configured")
        return controller

    def _forget(identifiers) -> None:
        """Drop controllers whose hosting units were deleted."""
        with registry_lock:
            for identifier in identifiers:
                controllers.pop(identifier, None)

    def _forget_port(port: int) -> None:
        with registry_lock:
            gone = [i for i, c in controllers.items() if c.app is not None and c.app.port == port]
        _forget(gone)

    # ============================================
    # ENDPOINTS
    # ============================================

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {"status": "healthy"}

    @app.get("/info", response_model=NodeInfoResponse)
    def get_node_info():
        """Get node information."""
        try:
            host_ip = get_local_ip_address()
        except OSError as e:
            logger.warning(f"Cannot determine local IP: {e}")
            host_ip = None

        return NodeInfoResponse(host_ip=host_ip, backend=backend_name, applications=len(controllers))

    @app.post("/applications", response_model=ConfigureResponse)
    def configure_application(request: ConfigureRequest):
        """Configure (autowire) an application."""
        try:
            descriptor = ApplicationDescriptor(
                name=request.name,
                port=request.port,
                path=request.path,
                user=request.user,
                password=request.password,
            )
            controller = controller_factory()
            controller.configure(
                descriptor,
                [ApplicationVariable(name, value) for name, value in request.variables.items()],
                [ServiceBinding(**service.model_dump()) for service in request.services],
                request.log_file_path,
                request.error_log_file_path,
                startup_log_path=request.startup_log_path,
                templates=request.templates,
            )
        except ControllerError as e:
            raise _http_error(e)
        except Exception as e:
            logger.error(f"Configure failed: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))

        with registry_lock:
            controllers[descriptor.identifier] = controller

        logger.info(f"[{descriptor.identifier}] ✅ Configured")
        return ConfigureResponse(identifier=descriptor.identifier)

    @app.post("/applications/{identifier}/start")
    def start_application(identifier: str):
        controller = _controller(identifier)
        try:
            controller.start()
        except Exception as e:
            raise _http_error(e)
        return {"status": "started", "identifier": identifier}

    @app.get("/applications/{identifier}/process-id", response_model=ProcessIdResponse)
    def get_process_id(identifier: str):
        controller = _controller(identifier)
        try:
            process_id = controller.query_process_id()
        except Exception as e:
            raise _http_error(e)
        return ProcessIdResponse(identifier=identifier, process_id=process_id)

    @app.post("/applications/{identifier}/stop", response_model=StopResponse)
    def stop_application(identifier: str, cleanup: bool = True):
        """Stop an application; by default also clean up everything under its path."""
        controller = _controller(identifier)
        deleted: List[str] = []
        try:
            result = controller.stop()
            if cleanup:
                deleted = controller.cleanup(controller.app.path)
        except Exception as e:
            raise _http_error(e)
        _forget(deleted)

        return StopResponse(
            identifier=identifier,
            stopped=result.reached,
            state=result.state.value if result.state else None,
            deleted=deleted,
        )

    @app.post("/applications/{identifier}/kill")
    def kill_application(identifier: str):
        controller = _controller(identifier)
        try:
            killed = controller.kill()
        except Exception as e:
            raise _http_error(e)
        return {"status": "killed", "identifier": identifier, "processes": killed}

    @app.post("/cleanup", response_model=CleanupResponse)
    def cleanup(request: CleanupRequest):
        try:
            deleted = host_controller.cleanup(request.path)
        except Exception as e:
            raise _http_error(e)
        _forget(deleted)
        return CleanupResponse(deleted=deleted)

    @app.delete("/ports/{port}")
    def delete_by_port(port: int):
        try:
            host_controller.delete(port)
        except Exception as e:
            raise _http_error(e)
        _forget_port(port)
        return {"status": "removed", "port": port}

    return app


def build_app() -> FastAPI:
    from deployment_engine.container import build_controller
    from deployment_engine.controller.config import settings

    return create_app(build_controller, backend_name=settings.backend)


if __name__ == "__main__":
    import uvicorn

    from deployment_engine.controller.config import settings

    logger.info("🚀 Starting Runtime Agent...")
    logger.info(f"📍 Listening on {settings.agent_host}:{settings.agent_port}")

    uvicorn.run(
        build_app(),
        host=settings.agent_host,
        port=settings.agent_port,
        log_level="info"
    )
