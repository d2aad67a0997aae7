"""Container runtime implementations."""

from gamehub.runtimes.docker import DockerRuntime, ResourceNaming

__all__ = ["DockerRuntime", "ResourceNaming"]
