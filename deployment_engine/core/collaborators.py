# deployment_engine/core/collaborators.py
"""Host-level collaborators the controller depends on."""

from abc import ABC, abstractmethod

from deployment_engine.core.models import Rights


class PermissionManager(ABC):
    """Directory access-control entries."""

    @abstractmethod
    def grant(self, path: str, principal: str, rights: Rights) -> None:
        """
        Allow ``principal`` the given rights on ``path``.
        Entries are recursive and inherited by contained objects.
        """
        raise NotImplementedError

    @abstractmethod
    def revoke_all(self, path: str, principal: str) -> None:
        """Remove every entry for ``principal`` on ``path``."""
        raise NotImplementedError


class Firewall(ABC):

    @abstractmethod
    def open_port(self, port: int, label: str) -> None:
        raise NotImplementedError

    @abstractmethod
    def close_port(self, port: int) -> None:
        raise NotImplementedError


class ProcessManager(ABC):

    @abstractmethod
    def terminate(self, process_id: int) -> bool:
        """
        Kill a process and block until it exits.

        Returns:
            True if the process was killed, False if it no longer existed
        """
        raise NotImplementedError
