"""Unit tests for LifecycleManager."""

import asyncio

import pytest
from sqlalchemy import select

from gamehub.config import GameHubConfig
from gamehub.core.domain import ErrorReason, InstanceStatus, PortState
from gamehub.core.errors import (
    InstanceNotFoundError,
    InvalidStateError,
    LifecycleConflictError,
    PortsExhaustedError,
    RuntimeOperationError,
    RuntimeUnavailableError,
)
from gamehub.core.models import Instance, PortReservation
from gamehub.lifecycle import (
    CreateInstanceRequest,
    InstanceRepository,
    LifecycleManager,
    StorageManager,
)
from gamehub.lifecycle.lock import exclusive
from gamehub.provisioning import PortArena, Provisioner
from gamehub.runtimes.docker.naming import ResourceNaming


@pytest.fixture
def naming(config: GameHubConfig) -> ResourceNaming:
    return ResourceNaming(config.runtime)


@pytest.fixture
def arena(session_factory, config: GameHubConfig, always_free) -> PortArena:
    return PortArena(session_factory, config.ports, probe=always_free)


@pytest.fixture
def manager(
    session_factory,
    config: GameHubConfig,
    arena: PortArena,
    naming: ResourceNaming,
    fake_runtime,
) -> LifecycleManager:
    """Create LifecycleManager over sqlite and the in-memory runtime."""
    repository = InstanceRepository(session_factory)
    return LifecycleManager(
        repository=repository,
        provisioner=Provisioner(arena, config.provisioning, config.runtime),
        runtime=fake_runtime,
        naming=naming,
        storage=StorageManager(naming, repository, config.lifecycle),
        config=config,
    )


def _request(**overrides) -> CreateInstanceRequest:
    fields = {"owner_user_id": "user-1", "name": "Survival", "memory_limit_mb": 2048}
    fields.update(overrides)
    return CreateInstanceRequest(**fields)


async def _port_row(session_factory, port: int) -> PortReservation:
    async with session_factory() as db:
        return await db.get(PortReservation, port)


async def _instances(session_factory) -> list[Instance]:
    async with session_factory() as db:
        return list((await db.execute(select(Instance))).scalars())


class TestCreate:
    async def test_create_runs_instance(
        self, manager: LifecycleManager, fake_runtime, naming, session_factory
    ) -> None:
        result = await manager.create(_request())

        snapshot = result.instance
        assert snapshot.status == InstanceStatus.RUNNING
        assert snapshot.port == 30000
        assert result.provisioning.port == 30000
        assert "secret" not in snapshot.model_dump()

        spec = fake_runtime.specs[naming.container_name(snapshot.id)]
        assert spec.env["RCON_PASSWORD"] == result.provisioning.secret
        assert spec.env["MEMORY"] == "2048M"
        assert spec.host_port == 30000
        assert (await _port_row(session_factory, 30000)).state == PortState.BOUND

    async def test_create_defaults_image_and_version(
        self, manager: LifecycleManager, config: GameHubConfig
    ) -> None:
        result = await manager.create(_request())

        assert result.instance.image_ref == config.runtime.default_image
        assert result.instance.game_version == config.runtime.default_version

    async def test_concurrent_creates_get_distinct_ports(
        self, manager: LifecycleManager
    ) -> None:
        results = await asyncio.gather(
            *(manager.create(_request(name=f"s{i}")) for i in range(5))
        )

        ports = [r.instance.port for r in results]
        assert len(set(ports)) == 5

    async def test_ports_exhausted_marks_failed(
        self, manager: LifecycleManager, arena: PortArena, session_factory
    ) -> None:
        for i in range(10):
            await arena.allocate(f"other-{i}")

        with pytest.raises(PortsExhaustedError):
            await manager.create(_request())

        [instance] = await _instances(session_factory)
        assert instance.status == InstanceStatus.FAILED
        assert instance.error_reason == ErrorReason.PORTS_EXHAUSTED
        assert instance.secret is None

    async def test_start_failure_releases_port_with_quarantine(
        self, manager: LifecycleManager, fake_runtime, session_factory
    ) -> None:
        fake_runtime.fail_start = RuntimeOperationError("port is already allocated")

        with pytest.raises(RuntimeOperationError):
            await manager.create(_request())

        [instance] = await _instances(session_factory)
        assert instance.status == InstanceStatus.FAILED
        assert instance.error_reason == ErrorReason.ACTION_FAILED
        assert instance.error_message == "port is already allocated"
        assert instance.port is None

        row = await _port_row(session_factory, 30000)
        assert row.state == PortState.FREE
        assert row.quarantined_until is not None

    async def test_engine_unreachable(
        self, manager: LifecycleManager, fake_runtime, session_factory
    ) -> None:
        fake_runtime.fail_create = RuntimeUnavailableError()

        with pytest.raises(RuntimeUnavailableError):
            await manager.create(_request())

        [instance] = await _instances(session_factory)
        assert instance.error_reason == ErrorReason.RUNTIME_UNAVAILABLE

    async def test_exit_during_startup(
        self, manager: LifecycleManager, fake_runtime, session_factory
    ) -> None:
        fake_runtime.start_status = "exited"

        with pytest.raises(RuntimeOperationError):
            await manager.create(_request())

        [instance] = await _instances(session_factory)
        assert instance.error_reason == ErrorReason.EXITED_ON_START

    async def test_startup_timeout(
        self, manager: LifecycleManager, fake_runtime, session_factory
    ) -> None:
        fake_runtime.start_status = "created"

        with pytest.raises(RuntimeOperationError):
            await manager.create(_request())

        [instance] = await _instances(session_factory)
        assert instance.error_reason == ErrorReason.START_TIMEOUT


class TestStop:
    async def test_stop_is_idempotent(self, manager: LifecycleManager, fake_runtime) -> None:
        created = await manager.create(_request())
        instance_id = created.instance.id

        first = await manager.stop(instance_id)
        second = await manager.stop(instance_id)

        assert first.status == InstanceStatus.STOPPED
        assert second.status == InstanceStatus.STOPPED
        assert [c for c in fake_runtime.calls if c[0] == "stop"] == [
            ("stop", f"mc-{instance_id.lower()}")
        ]

    async def test_stop_keeps_port(
        self, manager: LifecycleManager, session_factory
    ) -> None:
        created = await manager.create(_request())

        stopped = await manager.stop(created.instance.id)

        assert stopped.port == created.instance.port
        row = await _port_row(session_factory, created.instance.port)
        assert row.instance_id == created.instance.id

    async def test_kill_after_grace(self, manager: LifecycleManager, fake_runtime) -> None:
        created = await manager.create(_request())
        fake_runtime.ignore_stop = True

        await manager.stop(created.instance.id, grace_seconds=0)

        assert ("kill", f"mc-{created.instance.id.lower()}") in fake_runtime.calls

    async def test_concurrent_operation_rejected(self, manager: LifecycleManager) -> None:
        created = await manager.create(_request())

        async with exclusive(created.instance.id, "restart"):
            with pytest.raises(LifecycleConflictError, match="restart already in progress"):
                await manager.stop(created.instance.id)

    async def test_unknown_instance(self, manager: LifecycleManager) -> None:
        with pytest.raises(InstanceNotFoundError):
            await manager.stop("01UNKNOWN")

    async def test_termination_listener_notified(self, manager: LifecycleManager) -> None:
        events: list[tuple[str, InstanceStatus]] = []

        async def listener(instance_id: str, status: InstanceStatus) -> None:
            events.append((instance_id, status))

        manager.add_termination_listener(listener)
        created = await manager.create(_request())
        await manager.stop(created.instance.id)

        assert events == [(created.instance.id, InstanceStatus.STOPPED)]

    async def test_failing_listener_does_not_break_stop(self, manager: LifecycleManager) -> None:
        async def listener(instance_id: str, status: InstanceStatus) -> None:
            raise RuntimeError("listener bug")

        manager.add_termination_listener(listener)
        created = await manager.create(_request())

        stopped = await manager.stop(created.instance.id)

        assert stopped.status == InstanceStatus.STOPPED


class TestLaunchAndRestart:
    async def test_launch_running_is_noop(self, manager: LifecycleManager, fake_runtime) -> None:
        created = await manager.create(_request())
        starts = len([c for c in fake_runtime.calls if c[0] == "start"])

        snapshot = await manager.launch(created.instance.id)

        assert snapshot.status == InstanceStatus.RUNNING
        assert len([c for c in fake_runtime.calls if c[0] == "start"]) == starts

    async def test_launch_stopped(self, manager: LifecycleManager) -> None:
        created = await manager.create(_request())
        await manager.stop(created.instance.id)

        snapshot = await manager.launch(created.instance.id)

        assert snapshot.status == InstanceStatus.RUNNING
        assert snapshot.port == created.instance.port

    async def test_restart_reuses_port_and_secret(
        self, manager: LifecycleManager, fake_runtime, naming
    ) -> None:
        created = await manager.create(_request())
        name = naming.container_name(created.instance.id)

        restarted = await manager.restart(created.instance.id)

        assert restarted.status == InstanceStatus.RUNNING
        assert restarted.port == created.instance.port
        assert fake_runtime.specs[name].env["RCON_PASSWORD"] == created.provisioning.secret
        assert ("remove", name) not in fake_runtime.calls

    async def test_relaunch_after_failure_gets_new_port(
        self, manager: LifecycleManager, fake_runtime, naming, session_factory
    ) -> None:
        fake_runtime.fail_start = RuntimeOperationError("boom")
        with pytest.raises(RuntimeOperationError):
            await manager.create(_request())
        [instance] = await _instances(session_factory)
        instance_id = instance.id
        fake_runtime.fail_start = None

        snapshot = await manager.launch(instance_id)

        assert snapshot.status == InstanceStatus.RUNNING
        # 30000 is quarantined after the failure
        assert snapshot.port == 30001
        assert snapshot.error_reason is None
        assert ("remove", naming.container_name(instance_id)) in fake_runtime.calls

    async def test_never_provisioned_cannot_launch(
        self, manager: LifecycleManager, arena: PortArena, session_factory
    ) -> None:
        for i in range(10):
            await arena.allocate(f"other-{i}")
        with pytest.raises(PortsExhaustedError):
            await manager.create(_request())
        [instance] = await _instances(session_factory)

        with pytest.raises(InvalidStateError, match="never provisioned"):
            await manager.launch(instance.id)


class TestDestroy:
    async def test_destroy_releases_port_immediately(
        self, manager: LifecycleManager, fake_runtime, naming, session_factory
    ) -> None:
        created = await manager.create(_request())
        port = created.instance.port

        destroyed = await manager.destroy(created.instance.id)

        assert destroyed.status == InstanceStatus.DESTROYED
        assert destroyed.port is None
        assert naming.container_name(created.instance.id) not in fake_runtime.specs
        row = await _port_row(session_factory, port)
        assert row.state == PortState.FREE
        assert row.quarantined_until is None

        again = await manager.create(_request(name="next"))
        assert again.instance.port == port

    async def test_destroy_clears_secret(
        self, manager: LifecycleManager, session_factory
    ) -> None:
        created = await manager.create(_request())

        await manager.destroy(created.instance.id)

        [instance] = await _instances(session_factory)
        assert instance.secret is None
        assert instance.destroyed_at is not None

    async def test_destroy_twice(self, manager: LifecycleManager) -> None:
        created = await manager.create(_request())
        await manager.destroy(created.instance.id)

        snapshot = await manager.destroy(created.instance.id)

        assert snapshot.status == InstanceStatus.DESTROYED

    async def test_destroy_with_purge_removes_data(
        self, manager: LifecycleManager, naming
    ) -> None:
        created = await manager.create(_request())
        data_dir = naming.data_dir(created.instance.id)
        data_dir.mkdir(parents=True)
        (data_dir / "level.dat").write_bytes(b"\x00")

        await manager.destroy(created.instance.id, purge=True)

        assert not data_dir.exists()

    async def test_destroy_without_purge_keeps_data(
        self, manager: LifecycleManager, naming
    ) -> None:
        created = await manager.create(_request())
        data_dir = naming.data_dir(created.instance.id)
        data_dir.mkdir(parents=True)

        await manager.destroy(created.instance.id)

        assert data_dir.exists()

    async def test_stop_after_destroy_rejected(self, manager: LifecycleManager) -> None:
        created = await manager.create(_request())
        await manager.destroy(created.instance.id)

        with pytest.raises(InvalidStateError):
            await manager.stop(created.instance.id)


class TestQueries:
    async def test_status_includes_observed_state(self, manager: LifecycleManager) -> None:
        created = await manager.create(_request())

        snapshot = await manager.get_status(created.instance.id)

        assert snapshot.status == InstanceStatus.RUNNING
        assert snapshot.observed_status == InstanceStatus.RUNNING
        assert snapshot.container_state == "running"

    async def test_status_unknown(self, manager: LifecycleManager) -> None:
        with pytest.raises(InstanceNotFoundError):
            await manager.get_status("01UNKNOWN")

    async def test_log_tail_bounded(self, manager: LifecycleManager, fake_runtime) -> None:
        created = await manager.create(_request())
        fake_runtime.log_lines = [f"line {i}" for i in range(200)]

        lines = await manager.get_log_buffer(created.instance.id, tail_lines=500)

        # max_log_tail is 50 in the test config
        assert len(lines) == 50
        assert lines[-1] == "line 199"

    async def test_reclaim_orphan_ports(
        self, manager: LifecycleManager, arena: PortArena
    ) -> None:
        created = await manager.create(_request())
        ghost_port = await arena.allocate("ghost")

        reclaimed = await manager.reclaim_orphan_ports()

        assert reclaimed == [ghost_port]
        assert created.instance.port != ghost_port
