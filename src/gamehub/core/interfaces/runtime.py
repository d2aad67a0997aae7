"""Container runtime interface.

The lifecycle manager, metrics sampler and console gateway talk to the
container engine only through ContainerRuntime. Implementations map
transport failures to RuntimeUnavailableError and engine rejections to
RuntimeOperationError.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from datetime import datetime

from pydantic import BaseModel, Field

from gamehub.core.result import OperationResult


# =============================================================================
# Models
# =============================================================================


class HealthCheckSpec(BaseModel):
    """Container health check (seconds)."""

    test: list[str]
    interval: float
    timeout: float
    retries: int
    start_period: float

    model_config = {"frozen": True}


class ContainerSpec(BaseModel):
    """Runtime-neutral container descriptor for one game server."""

    name: str
    image: str
    env: dict[str, str] = Field(default_factory=dict)
    host_port: int
    container_port: int
    memory_limit_mb: int
    data_dir: str
    data_mount: str = "/data"
    labels: dict[str, str] = Field(default_factory=dict)
    network: str = "bridge"
    restart_policy: str = "unless-stopped"
    healthcheck: HealthCheckSpec | None = None
    log_max_size: str = "10m"
    log_max_file: str = "5"

    model_config = {"frozen": True}


class ContainerState(BaseModel):
    """Observed container state.

    status is the engine's own vocabulary: created, restarting, running,
    paused, removing, exited, dead. None when the container does not exist.
    """

    exists: bool
    status: str | None = None
    running: bool = False
    health: str | None = None
    exit_code: int | None = None
    restart_count: int = 0
    started_at: str | None = None
    error: str = ""

    model_config = {"frozen": True}


class RawSample(BaseModel):
    """Raw cumulative resource counters from the runtime."""

    cpu_total_ns: int
    system_cpu_ns: int
    online_cpus: int
    memory_used_bytes: int
    memory_limit_bytes: int
    read_at: datetime

    model_config = {"frozen": True}


class AttachedStream(ABC):
    """Bidirectional attach to a container's stdio.

    Iterating yields output chunks in order until the upstream closes.
    """

    @abstractmethod
    def __aiter__(self) -> AsyncIterator[bytes]:
        ...

    @abstractmethod
    async def send(self, data: bytes) -> None:
        """Write to the container's stdin."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


# =============================================================================
# ContainerRuntime Interface
# =============================================================================


class ContainerRuntime(ABC):
    """Container engine operations used by gamehub."""

    @abstractmethod
    async def ping(self) -> bool:
        """Check engine reachability."""
        ...

    @abstractmethod
    async def create(self, spec: ContainerSpec) -> OperationResult:
        """Create a container (ALREADY_EXISTS if the name is taken).

        Args:
            spec: Container descriptor

        Returns:
            OperationResult with COMPLETED or ALREADY_EXISTS
        """
        ...

    @abstractmethod
    async def start(self, name: str) -> OperationResult:
        """Start a created container (ALREADY_RUNNING if running)."""
        ...

    @abstractmethod
    async def stop(self, name: str, grace_seconds: int) -> OperationResult:
        """Graceful stop: SIGTERM, then engine kill after grace_seconds.

        Returns:
            OperationResult with COMPLETED or ALREADY_STOPPED
            (also for a missing container)
        """
        ...

    @abstractmethod
    async def kill(self, name: str) -> OperationResult:
        """Force kill (ALREADY_STOPPED if not running)."""
        ...

    @abstractmethod
    async def remove(self, name: str) -> OperationResult:
        """Remove the container definition, keeping bind-mounted data.

        Returns:
            OperationResult with COMPLETED or ALREADY_DELETED
        """
        ...

    @abstractmethod
    async def inspect(self, name: str) -> ContainerState:
        """Observe container state (exists=False when missing)."""
        ...

    @abstractmethod
    async def logs(self, name: str, tail: int) -> list[str]:
        """Return up to `tail` most recent log lines, oldest first."""
        ...

    @abstractmethod
    def stats(self, name: str) -> AsyncIterator[RawSample]:
        """Stream raw cumulative counters until the container stops."""
        ...

    @abstractmethod
    async def attach(self, name: str) -> AttachedStream:
        """Open an independent stdio attach for one console session."""
        ...
