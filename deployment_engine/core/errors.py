# deployment_engine/core/errors.py

# -----------------------------
# Base Errors
# -----------------------------

class ControllerError(Exception):
    """Base class for all deployment controller errors."""
    pass


# -----------------------------
# Validation Errors
# -----------------------------

class DeploymentValidationError(ControllerError, ValueError):
    """Invalid input or controller used before it was configured."""
    pass


class OperationNotSupportedError(ControllerError, NotImplementedError):
    """Entry point exists on the interface but is not implemented."""
    pass


# -----------------------------
# State Errors
# -----------------------------

class StateTimeoutError(ControllerError, TimeoutError):
    """Hosting unit did not reach the requested state in time."""

    def __init__(self, message: str, *, target=None, last_state=None):
        super().__init__(message)
        self.target = target
        self.last_state = last_state


# -----------------------------
# Backend Errors
# -----------------------------

class BackendError(ControllerError):
    pass


class BackendCommunicationError(BackendError):
    """Transient failure talking to the hosting backend."""
    pass


class HostingUnitNotFound(BackendError):
    pass
