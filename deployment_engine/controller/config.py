#deployment_engine\controller\config.py

import os
import tempfile
from dataclasses import dataclass
from typing import Dict

from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class WaitPolicy:
    """Timing budgets (milliseconds) used by the controller."""

    poll_interval_ms: int = 25

    # start()
    settle_timeout_ms: int = 5000
    start_timeout_ms: int = 20000

    # stop()
    stop_timeout_ms: int = 5000

    # delete()
    delete_poll_interval_ms: int = 100
    delete_poll_iterations: int = 300

    @property
    def delete_timeout_ms(self) -> int:
        return self.delete_poll_interval_ms * self.delete_poll_iterations


class ControllerSettings(BaseSettings):
    """Controller configuration from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="DEPLOYMENT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Hosting backend: "memory" or "docker"
    backend: str = "memory"
    docker_image: str = "mono:latest"
    docker_container_port: int = 80

    # Host-wide lock shared by every controller on this machine
    lock_path: str = os.path.join(tempfile.gettempdir(), "deployment_engine.lock")

    # Application configuration artifacts
    config_file_name: str = "web.config"
    local_config_file_name: str = "uhuru.local.config"
    bin_dir_name: str = "bin"

    # Extra connection string templates, keyed by service label
    autowire_templates: Dict[str, str] = {}

    # Timing (milliseconds)
    poll_interval_ms: int = 25
    settle_timeout_ms: int = 5000
    start_timeout_ms: int = 20000
    stop_timeout_ms: int = 5000
    delete_poll_interval_ms: int = 100
    delete_poll_iterations: int = 300

    # Runtime agent
    agent_host: str = "0.0.0.0"
    agent_port: int = 9000

    def wait_policy(self) -> WaitPolicy:
        return WaitPolicy(
            poll_interval_ms=self.poll_interval_ms,
            settle_timeout_ms=self.settle_timeout_ms,
            start_timeout_ms=self.start_timeout_ms,
            stop_timeout_ms=self.stop_timeout_ms,
            delete_poll_interval_ms=self.delete_poll_interval_ms,
            delete_poll_iterations=self.delete_poll_iterations,
        )


settings = ControllerSettings()
