"""Docker runtime for gamehub."""

from gamehub.runtimes.docker.naming import ResourceNaming
from gamehub.runtimes.docker.runtime import DockerRuntime

__all__ = ["DockerRuntime", "ResourceNaming"]
