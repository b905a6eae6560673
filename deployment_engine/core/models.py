"""Core domain models for hosted applications."""

from dataclasses import dataclass, field
from enum import Enum, Flag, auto
from typing import Optional

from deployment_engine.core.validation import build_identifier, validate_port


LOG_FILE_KEY = "UHURU_LOG_FILE"
ERROR_LOG_FILE_KEY = "UHURU_ERROR_LOG_FILE"
RESERVED_KEYS = (LOG_FILE_KEY, ERROR_LOG_FILE_KEY)


class ObjectState(Enum):
    """State of a hosting unit or process pool, as reported by the backend."""

    STOPPED = "Stopped"
    STARTING = "Starting"
    STARTED = "Started"
    STOPPING = "Stopping"


class RuntimeVariant(Enum):
    """Managed runtime a process pool is configured with."""

    V2 = "v2.0"
    V4 = "v4.0"


class Rights(Flag):
    """Filesystem rights granted to an execution identity."""

    READ = auto()
    WRITE = auto()
    MODIFY = auto()
    DELETE = auto()
    CREATE_FILES = auto()


DEPLOYMENT_DIR_RIGHTS = Rights.WRITE | Rights.READ | Rights.DELETE | Rights.MODIFY
LOG_DIR_RIGHTS = DEPLOYMENT_DIR_RIGHTS | Rights.CREATE_FILES


# ============================================
# APPLICATION
# ============================================

@dataclass(frozen=True)
class ApplicationDescriptor:
    """Identity and execution identity of a deployed application."""

    name: str
    port: int
    path: str

    # Execution identity
    user: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)

    identifier: str = field(init=False)

    def __post_init__(self):
        validate_port(self.port)
        object.__setattr__(self, "identifier", build_identifier(self.name, self.port))


@dataclass(frozen=True)
class ApplicationVariable:
    """Name/value pair injected into appSettings."""

    name: str
    value: str


@dataclass(frozen=True)
class ServiceBinding:
    """External service bound to the application."""

    label: str  # service type, e.g. "mssql"
    name: str
    host: str
    port: int
    instance_name: str = ""
    user: str = ""
    password: str = field(default="", repr=False)

    @property
    def marker(self) -> str:
        return "{%s#%s}" % (self.label, self.name)


# ============================================
# HOSTING
# ============================================

@dataclass(frozen=True)
class WorkerProcess:
    """Live OS process of a process pool. Never cached."""

    process_id: int
    pool_name: str


@dataclass(frozen=True)
class WaitResult:
    """Outcome of waiting for a state."""

    reached: bool
    target: ObjectState
    state: Optional[ObjectState]
    elapsed_ms: int

    def __bool__(self) -> bool:
        return self.reached
