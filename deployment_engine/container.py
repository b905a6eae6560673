#deployment_engine\container.py

"""Dependency injection container - wires the controller and its collaborators."""

from deployment_engine.autowiring.autowire import Autowirer
from deployment_engine.controller.config import settings
from deployment_engine.controller.controller import DeploymentController
from deployment_engine.controller.locking import HostLock


# ============================================
# COLLABORATORS
# ============================================

if settings.backend == "docker":
    from deployment_engine.infrastructure.docker.backend import DockerHostingBackend
    from deployment_engine.infrastructure.system.firewall import UfwFirewall
    from deployment_engine.infrastructure.system.permissions import PosixAclPermissionManager
    from deployment_engine.infrastructure.system.processes import PsutilProcessManager

    hosting_backend = DockerHostingBackend(
        image=settings.docker_image,
        container_port=settings.docker_container_port,
    )
    permission_manager = PosixAclPermissionManager()
    firewall = UfwFirewall()
    process_manager = PsutilProcessManager()

elif settings.backend == "memory":
    from deployment_engine.infrastructure.memory.backend import InMemoryHostingBackend
    from deployment_engine.infrastructure.memory.collaborators import (
        InMemoryFirewall,
        InMemoryPermissionManager,
        InMemoryProcessManager,
    )

    hosting_backend = InMemoryHostingBackend()
    permission_manager = InMemoryPermissionManager()
    firewall = InMemoryFirewall()
    process_manager = InMemoryProcessManager(hosting_backend)

else:
    raise ValueError(f"Unknown hosting backend: {settings.backend}")


# ============================================
# SHARED
# ============================================

host_lock = HostLock(settings.lock_path)
wait_policy = settings.wait_policy()


def build_controller() -> DeploymentController:
    """New controller sharing the host lock and collaborators."""
    autowirer = Autowirer(
        permission_manager,
        config_file_name=settings.config_file_name,
        local_config_file_name=settings.local_config_file_name,
        bin_dir_name=settings.bin_dir_name,
        templates=settings.autowire_templates,
    )
    return DeploymentController(
        hosting_backend,
        permission_manager,
        firewall,
        process_manager,
        lock=host_lock,
        policy=wait_policy,
        autowirer=autowirer,
    )
