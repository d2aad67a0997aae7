"""Database and Docker Engine access."""

from gamehub.infra.database import (
    close_db,
    engine_options,
    get_session_factory,
    init_db,
)
from gamehub.infra.docker import (
    ContainerAPI,
    ContainerConfig,
    DockerClient,
    HealthCheckConfig,
    HostConfig,
    ImageAPI,
    LogConfig,
    RestartPolicy,
    close_docker,
    get_docker_client,
)

__all__ = [
    "ContainerAPI",
    "ContainerConfig",
    "DockerClient",
    "HealthCheckConfig",
    "HostConfig",
    "ImageAPI",
    "LogConfig",
    "RestartPolicy",
    "close_db",
    "close_docker",
    "engine_options",
    "get_docker_client",
    "get_session_factory",
    "init_db",
]
