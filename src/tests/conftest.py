"""Shared fixtures for gamehub tests."""

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel

from gamehub.config import (
    GameHubConfig,
    LifecycleConfig,
    PortsConfig,
    RuntimeConfig,
    StreamingConfig,
)
from gamehub.core import models  # noqa: F401
from gamehub.core.circuit_breaker import reset_all_circuit_breakers
from gamehub.core.interfaces.runtime import (
    AttachedStream,
    ContainerRuntime,
    ContainerSpec,
    ContainerState,
    RawSample,
)
from gamehub.core.result import OperationResult, OperationStatus
from gamehub.infra.cache import clear_session_cache
from gamehub.lifecycle.lock import reset_instance_locks


class FakeAttachedStream(AttachedStream):
    """Scripted console attach: yields `output`, records stdin."""

    def __init__(
        self,
        output: list[bytes] | None = None,
        hold_open: bool = False,
        error: Exception | None = None,
    ) -> None:
        self.output = output or []
        self.hold_open = hold_open
        self.error = error
        self.sent: list[bytes] = []
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self.output:
            yield chunk
        if self.error is not None:
            raise self.error
        if self.hold_open:
            await asyncio.Event().wait()

    async def send(self, data: bytes) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True


class FakeRuntime(ContainerRuntime):
    """In-memory container engine.

    Containers start running immediately unless `start_status` says otherwise.
    """

    def __init__(self) -> None:
        self.specs: dict[str, ContainerSpec] = {}
        self.running: set[str] = set()
        self.calls: list[tuple[str, str]] = []
        self.start_status = "running"
        self.fail_start: Exception | None = None
        self.fail_create: Exception | None = None
        self.ignore_stop = False
        self.log_lines: list[str] = []
        self.samples: list[RawSample] = []
        self.attached: list[FakeAttachedStream] = []
        self.attach_output: list[bytes] = []
        self.attach_hold_open = True
        self.attach_error: Exception | None = None

    async def ping(self) -> bool:
        return True

    async def create(self, spec: ContainerSpec) -> OperationResult:
        self.calls.append(("create", spec.name))
        if self.fail_create is not None:
            raise self.fail_create
        if spec.name in self.specs:
            return OperationResult(status=OperationStatus.ALREADY_EXISTS)
        self.specs[spec.name] = spec
        return OperationResult(status=OperationStatus.COMPLETED)

    async def start(self, name: str) -> OperationResult:
        self.calls.append(("start", name))
        if self.fail_start is not None:
            raise self.fail_start
        if name in self.running:
            return OperationResult(status=OperationStatus.ALREADY_RUNNING)
        if self.start_status == "running":
            self.running.add(name)
        return OperationResult(status=OperationStatus.COMPLETED)

    async def stop(self, name: str, grace_seconds: int) -> OperationResult:
        self.calls.append(("stop", name))
        if name not in self.running:
            return OperationResult(status=OperationStatus.ALREADY_STOPPED)
        if not self.ignore_stop:
            self.running.discard(name)
        return OperationResult(status=OperationStatus.COMPLETED)

    async def kill(self, name: str) -> OperationResult:
        self.calls.append(("kill", name))
        if name not in self.running:
            return OperationResult(status=OperationStatus.ALREADY_STOPPED)
        self.running.discard(name)
        return OperationResult(status=OperationStatus.COMPLETED)

    async def remove(self, name: str) -> OperationResult:
        self.calls.append(("remove", name))
        if name not in self.specs:
            return OperationResult(status=OperationStatus.ALREADY_DELETED)
        del self.specs[name]
        self.running.discard(name)
        return OperationResult(status=OperationStatus.COMPLETED)

    async def inspect(self, name: str) -> ContainerState:
        if name not in self.specs:
            return ContainerState(exists=False)
        if name in self.running:
            return ContainerState(exists=True, status="running", running=True)
        status = "exited" if self.start_status == "running" else self.start_status
        return ContainerState(exists=True, status=status, running=False, exit_code=0)

    async def logs(self, name: str, tail: int) -> list[str]:
        return self.log_lines[-tail:] if tail > 0 else []

    async def stats(self, name: str) -> AsyncIterator[RawSample]:
        for sample in self.samples:
            yield sample

    async def attach(self, name: str) -> AttachedStream:
        stream = FakeAttachedStream(
            list(self.attach_output), hold_open=self.attach_hold_open, error=self.attach_error
        )
        self.attached.append(stream)
        return stream


def raw_sample(
    cpu: int, system: int, cpus: int = 2, used: int = 512, limit: int = 1024
) -> RawSample:
    return RawSample(
        cpu_total_ns=cpu,
        system_cpu_ns=system,
        online_cpus=cpus,
        memory_used_bytes=used,
        memory_limit_bytes=limit,
        read_at=datetime.now(UTC),
    )


@pytest.fixture(autouse=True)
def reset_globals() -> None:
    """Reset process-wide registries between tests."""
    reset_instance_locks()
    reset_all_circuit_breakers()
    clear_session_cache()


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """SQLite-backed session factory with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gamehub.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def config(tmp_path: Path) -> GameHubConfig:
    """Config with a small port range and fast lifecycle timings."""
    return GameHubConfig(
        ports=PortsConfig(range_min=30000, range_max=30009, quarantine_seconds=30),
        runtime=RuntimeConfig(data_root=str(tmp_path / "data")),
        lifecycle=LifecycleConfig(
            stop_grace_seconds=1,
            startup_grace_seconds=0.2,
            startup_poll_interval=0.01,
            max_log_tail=50,
        ),
        streaming=StreamingConfig(metrics_interval=1.0, metrics_buffer_size=4),
    )


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()


@pytest.fixture
def always_free():
    """Bind probe that accepts every port."""

    async def probe(port: int) -> bool:
        return True

    return probe


@pytest.fixture
def make_sample() -> Callable[..., RawSample]:
    return raw_sample
