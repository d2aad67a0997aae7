"""Interfaces for pluggable infrastructure."""

from gamehub.core.interfaces.runtime import (
    AttachedStream,
    ContainerRuntime,
    ContainerSpec,
    ContainerState,
    HealthCheckSpec,
    RawSample,
)

__all__ = [
    "AttachedStream",
    "ContainerRuntime",
    "ContainerSpec",
    "ContainerState",
    "HealthCheckSpec",
    "RawSample",
]
