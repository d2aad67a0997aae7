"""Docker implementation of ContainerRuntime."""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

import httpx
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus

from gamehub.config import get_config
from gamehub.core.circuit_breaker import (
    CircuitBreaker,
    CircuitOpenError,
    get_circuit_breaker,
)
from gamehub.core.errors import (
    RuntimeOperationError,
    RuntimeUnavailableError,
    StreamDetachError,
)
from gamehub.core.interfaces.runtime import (
    AttachedStream,
    ContainerRuntime,
    ContainerSpec,
    ContainerState,
    RawSample,
)
from gamehub.core.result import OperationResult, OperationStatus
from gamehub.infra import (
    ContainerAPI,
    ContainerConfig,
    HealthCheckConfig,
    HostConfig,
    ImageAPI,
    LogConfig,
    RestartPolicy,
)
from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import DOCKER_DURATION, DOCKER_ERRORS
from gamehub.runtimes.docker.frames import split_lines

if TYPE_CHECKING:
    from gamehub.config import GameHubConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

_NS_PER_SECOND = 1_000_000_000


def is_engine_outage(exc: Exception) -> bool:
    """Engine 4xx responses are answers, not outages."""
    return not (
        isinstance(exc, httpx.HTTPStatusError) and exc.response.status_code < 500
    )


def _engine_message(exc: httpx.HTTPStatusError) -> str:
    try:
        message = exc.response.json().get("message")
    except (ValueError, httpx.ResponseNotRead):
        message = None
    return message or f"Docker API returned {exc.response.status_code}"


def parse_stats(doc: dict) -> RawSample:
    """Convert an engine stats document into raw cumulative counters."""
    cpu_stats = doc.get("cpu_stats") or {}
    cpu_usage = cpu_stats.get("cpu_usage") or {}
    online_cpus = cpu_stats.get("online_cpus") or len(cpu_usage.get("percpu_usage") or []) or 1
    memory = doc.get("memory_stats") or {}
    return RawSample(
        cpu_total_ns=cpu_usage.get("total_usage", 0),
        system_cpu_ns=cpu_stats.get("system_cpu_usage", 0),
        online_cpus=online_cpus,
        memory_used_bytes=memory.get("usage", 0),
        memory_limit_bytes=memory.get("limit", 0),
        read_at=datetime.now(UTC),
    )


def parse_state(data: dict | None) -> ContainerState:
    """Convert an engine inspect document into ContainerState."""
    if not data:
        return ContainerState(exists=False)
    state = data.get("State") or {}
    health = state.get("Health") or {}
    return ContainerState(
        exists=True,
        status=state.get("Status"),
        running=state.get("Running", False),
        health=health.get("Status"),
        exit_code=state.get("ExitCode"),
        restart_count=data.get("RestartCount", 0),
        started_at=state.get("StartedAt"),
        error=state.get("Error", ""),
    )


class DockerAttachedStream(AttachedStream):
    """Console attach backed by the engine's attach WebSocket."""

    def __init__(self, connection: ClientConnection) -> None:
        self._ws = connection

    async def __aiter__(self) -> AsyncIterator[bytes]:
        try:
            async for message in self._ws:
                yield message.encode() if isinstance(message, str) else message
        except ConnectionClosed:
            return

    async def send(self, data: bytes) -> None:
        try:
            await self._ws.send(data)
        except ConnectionClosed as exc:
            raise StreamDetachError("Console upstream closed") from exc

    async def close(self) -> None:
        await self._ws.close()


class DockerRuntime(ContainerRuntime):
    """Container runtime backed by the Docker Engine API."""

    def __init__(
        self,
        config: GameHubConfig | None = None,
        containers: ContainerAPI | None = None,
        images: ImageAPI | None = None,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self._config = config or get_config()
        self._containers = containers or ContainerAPI()
        self._images = images or ImageAPI()
        self._breaker = breaker or get_circuit_breaker(
            "docker",
            failure_threshold=self._config.docker.breaker_failure_threshold,
            timeout=self._config.docker.breaker_timeout,
            is_outage=is_engine_outage,
        )

    async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        start = time.monotonic()
        try:
            return await self._breaker.call(factory)
        except CircuitOpenError as exc:
            DOCKER_ERRORS.labels(operation=operation, error_type="circuit_open").inc()
            raise RuntimeUnavailableError(str(exc)) from exc
        except (httpx.TransportError, OSError, TimeoutError) as exc:
            DOCKER_ERRORS.labels(operation=operation, error_type="unavailable").inc()
            logger.warning(
                "Docker engine unreachable",
                extra={
                    "event": LogEvent.RUNTIME_UNAVAILABLE,
                    "operation": operation,
                    "error": str(exc),
                },
            )
            raise RuntimeUnavailableError() from exc
        except httpx.HTTPStatusError as exc:
            DOCKER_ERRORS.labels(operation=operation, error_type="api_error").inc()
            raise RuntimeOperationError(_engine_message(exc)) from exc
        except InvalidStatus as exc:
            DOCKER_ERRORS.labels(operation=operation, error_type="api_error").inc()
            raise RuntimeOperationError(
                f"Docker attach rejected: {exc.response.status_code}"
            ) from exc
        except InvalidHandshake as exc:
            DOCKER_ERRORS.labels(operation=operation, error_type="api_error").inc()
            raise RuntimeOperationError(f"Docker attach failed: {exc}") from exc
        finally:
            DOCKER_DURATION.labels(operation=operation).observe(time.monotonic() - start)

    async def ping(self) -> bool:
        try:
            return await self._call("ping", self._containers.ping)
        except RuntimeUnavailableError:
            return False

    async def create(self, spec: ContainerSpec) -> OperationResult:
        config = self._to_container_config(spec)

        async def _create() -> bool:
            await self._images.ensure(spec.image)
            return await self._containers.create(config)

        created = await self._call("create", _create)
        if not created:
            return OperationResult(
                status=OperationStatus.ALREADY_EXISTS,
                message="Container already exists",
            )
        logger.info(
            "Container created",
            extra={
                "event": LogEvent.CONTAINER_CREATED,
                "container": spec.name,
                "image": spec.image,
                "host_port": spec.host_port,
            },
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    async def start(self, name: str) -> OperationResult:
        started = await self._call("start", lambda: self._containers.start(name))
        if not started:
            return OperationResult(
                status=OperationStatus.ALREADY_RUNNING,
                message="Container already running",
            )
        logger.info(
            "Container started",
            extra={"event": LogEvent.CONTAINER_STARTED, "container": name},
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    async def stop(self, name: str, grace_seconds: int) -> OperationResult:
        stopped = await self._call(
            "stop", lambda: self._containers.stop(name, timeout=grace_seconds)
        )
        if not stopped:
            return OperationResult(
                status=OperationStatus.ALREADY_STOPPED,
                message="Container not running",
            )
        logger.info(
            "Container stopped",
            extra={
                "event": LogEvent.CONTAINER_STOPPED,
                "container": name,
                "grace_seconds": grace_seconds,
            },
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    async def kill(self, name: str) -> OperationResult:
        killed = await self._call("kill", lambda: self._containers.kill(name))
        if not killed:
            return OperationResult(status=OperationStatus.ALREADY_STOPPED)
        logger.warning(
            "Container killed",
            extra={"event": LogEvent.CONTAINER_KILLED, "container": name},
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    async def remove(self, name: str) -> OperationResult:
        removed = await self._call("remove", lambda: self._containers.remove(name))
        if not removed:
            return OperationResult(
                status=OperationStatus.ALREADY_DELETED,
                message="Container does not exist",
            )
        logger.info(
            "Container removed",
            extra={"event": LogEvent.CONTAINER_REMOVED, "container": name},
        )
        return OperationResult(status=OperationStatus.COMPLETED)

    async def inspect(self, name: str) -> ContainerState:
        data = await self._call("inspect", lambda: self._containers.inspect(name))
        return parse_state(data)

    async def logs(self, name: str, tail: int) -> list[str]:
        async def _fetch() -> bytes:
            try:
                return await self._containers.logs(name, tail=tail)
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code == 404:
                    return b""
                raise

        raw = await self._call("logs", _fetch)
        return split_lines(raw, tail=tail)

    async def stats(self, name: str) -> AsyncIterator[RawSample]:
        try:
            async for doc in self._containers.stats(name):
                yield parse_stats(doc)
        except httpx.TransportError as exc:
            raise RuntimeUnavailableError() from exc
        except httpx.HTTPStatusError as exc:
            raise RuntimeOperationError(_engine_message(exc)) from exc

    async def attach(self, name: str) -> AttachedStream:
        connection = await self._call("attach", lambda: self._containers.attach(name))
        return DockerAttachedStream(connection)

    def _to_container_config(self, spec: ContainerSpec) -> ContainerConfig:
        port_key = f"{spec.container_port}/tcp"
        healthcheck = None
        if spec.healthcheck is not None:
            hc = spec.healthcheck
            healthcheck = HealthCheckConfig(
                test=hc.test,
                interval=int(hc.interval * _NS_PER_SECOND),
                timeout=int(hc.timeout * _NS_PER_SECOND),
                retries=hc.retries,
                start_period=int(hc.start_period * _NS_PER_SECOND),
            )
        return ContainerConfig(
            image=spec.image,
            name=spec.name,
            env=[f"{key}={value}" for key, value in spec.env.items()],
            exposed_ports={port_key: {}},
            labels=spec.labels,
            healthcheck=healthcheck,
            host_config=HostConfig(
                network_mode=spec.network,
                binds=[f"{spec.data_dir}:{spec.data_mount}"],
                port_bindings={port_key: [{"HostPort": str(spec.host_port)}]},
                memory=spec.memory_limit_mb * 1024 * 1024,
                restart_policy=RestartPolicy(name=spec.restart_policy),
                log_config=LogConfig(
                    options={"max-size": spec.log_max_size, "max-file": spec.log_max_file}
                ),
            ),
        )
