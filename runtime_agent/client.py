# runtime_agent/client.py
"""Runtime Agent client for making lifecycle requests."""

import requests
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, field
import logging

logger = logging.getLogger(__name__)


class RuntimeAgentError(RuntimeError):
    """Request to the runtime agent failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class StopResult:
    """Result from stopping an application."""
    identifier: str
    stopped: bool
    state: Optional[str]
    deleted: List[str] = field(default_factory=list)


class RuntimeAgentClient:
    """Client for communicating with Runtime Agent."""

    def __init__(self, agent_url: str, timeout: int = 60, session: Optional[requests.Session] = None):
        """
        Initialize client.

        Args:
            agent_url: Base URL of runtime agent (e.g., "http://10.0.1.10:9000")
            timeout: Request timeout in seconds; start waits up to 20s on the node
            session: Optional requests session to reuse
        """
        self.base_url = agent_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()

    def health_check(self) -> bool:
        """
        Check if agent is healthy.

        Returns:
            True if healthy, False otherwise
        """
        try:
            response = self.session.get(f"{self.base_url}/health", timeout=5)
            return response.status_code == 200
        except requests.exceptions.RequestException as e:
            logger.error(f"Health check failed: {e}")
            return False

    def get_node_info(self) -> Optional[Dict[str, Any]]:
        """
        Get node information.

        Returns:
            Node info dict or None if failed
        """
        try:
            response = self.session.get(f"{self.base_url}/info", timeout=10)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to get node info: {e}")
            return None

    def configure(
        self,
        name: str,
        port: int,
        path: str,
        log_file_path: str,
        error_log_file_path: str,
        user: Optional[str] = None,
        password: Optional[str] = None,
        variables: Optional[Dict[str, str]] = None,
        services: Optional[List[Dict[str, Any]]] = None,
        startup_log_path: Optional[str] = None,
        templates: Optional[Dict[str, str]] = None,
    ) -> str:
        """
        Configure an application on the node.

        ``templates`` maps service labels to extra connection string
        templates; they override the built-in ones.

        Returns:
            Application identifier (sanitized name + port)

        Raises:
            RuntimeAgentError: If configuration fails
        """
        payload = {
            "name": name,
            "port": port,
            "path": path,
            "user": user,
            "password": password,
            "variables": variables or {},
            "services": services or [],
            "log_file_path": log_file_path,
            "error_log_file_path": error_log_file_path,
            "startup_log_path": startup_log_path,
            "templates": templates or {},
        }

        logger.info(f"Configuring {name}:{port} on {self.base_url}")
        data = self._request("post", "/applications", json=payload)

        logger.info(f"[{data['identifier']}] ✅ Configured")
        return data['identifier']

    def start(self, identifier: str) -> None:
        self._request("post", f"/applications/{identifier}/start")

    def stop(self, identifier: str, cleanup: bool = True) -> StopResult:
        data = self._request("post", f"/applications/{identifier}/stop", params={"cleanup": str(cleanup).lower()})
        return StopResult(
            identifier=data['identifier'],
            stopped=data['stopped'],
            state=data.get('state'),
            deleted=data.get('deleted', []),
        )

    def kill(self, identifier: str) -> int:
        return self._request("post", f"/applications/{identifier}/kill")['processes']

    def get_process_id(self, identifier: str) -> int:
        """Worker process id, 0 if nothing is running."""
        return self._request("get", f"/applications/{identifier}/process-id")['process_id']

    def cleanup(self, path: str) -> List[str]:
        return self._request("post", "/cleanup", json={"path": path})['deleted']

    def delete(self, port: int) -> None:
        self._request("delete", f"/ports/{port}")

    def _request(self, method: str, endpoint: str, **kwargs) -> Dict[str, Any]:
        url = f"{self.base_url}{endpoint}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.Timeout:
            raise RuntimeAgentError(f"Request timeout after {self.timeout}s: {method.upper()} {endpoint}")
        except requests.exceptions.ConnectionError:
            raise RuntimeAgentError(f"Cannot connect to runtime agent at {self.base_url}")

        if response.status_code != 200:
            try:
                error_detail = response.json().get('detail', response.text)
            except ValueError:
                error_detail = response.text
            logger.error(f"{method.upper()} {endpoint} failed [{response.status_code}]: {error_detail}")
            raise RuntimeAgentError(f"{method.upper()} {endpoint} failed: {error_detail}", response.status_code)

        return response.json()
