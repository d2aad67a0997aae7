"""Tests for GameHub wiring."""

import pytest

from gamehub.core.domain import ErrorReason, InstanceStatus, SessionKind
from gamehub.core.models import Instance, PortReservation
from gamehub.hub import GameHub
from gamehub.lifecycle import CreateInstanceRequest


@pytest.fixture
async def hub(session_factory, config, fake_runtime, always_free):
    hub = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await hub.start()
    yield hub
    await hub.close()


async def test_start_seeds_port_range(hub: GameHub) -> None:
    assert await hub.arena.seed() == 0
    assert await hub.arena.in_use() == 0


async def test_stop_terminates_stream_sessions(hub: GameHub) -> None:
    created = await hub.lifecycle.create(
        CreateInstanceRequest(owner_user_id="user-1", name="world", memory_limit_mb=1024)
    )
    session = hub.registry.open(created.instance.id, "user-1", SessionKind.CONSOLE)

    await hub.lifecycle.stop(created.instance.id)

    assert session.terminated.is_set()
    assert session.termination_reason == f"Instance {InstanceStatus.STOPPED.value.lower()}"


async def test_restart_on_existing_ports(
    session_factory, config, fake_runtime, always_free
) -> None:
    first = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await first.start()
    await first.arena.allocate("crashed-instance")
    await first.close()

    second = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await second.start()
    try:
        # reservation without a live holder is reclaimed on startup
        assert await second.arena.in_use() == 0
    finally:
        await second.close()


async def _seed_interrupted(session_factory, hub: GameHub, status: InstanceStatus) -> Instance:
    async with session_factory() as db:
        instance = Instance(
            owner_user_id="user-1",
            name="world",
            image_ref="itzg/minecraft-server:java21",
            game_version="LATEST",
            memory_limit_mb=1024,
            status=status,
        )
        db.add(instance)
        await db.commit()
        await db.refresh(instance)
    port = await hub.arena.allocate(instance.id)
    return await hub.repository.update(instance.id, port=port, secret="s3cretRconPw")


@pytest.mark.parametrize("status", [InstanceStatus.PROVISIONING, InstanceStatus.STOPPING])
async def test_interrupted_instance_is_failed_on_start(
    session_factory, config, fake_runtime, always_free, status: InstanceStatus
) -> None:
    first = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await first.start()
    stuck = await _seed_interrupted(session_factory, first, status)
    await first.close()

    second = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await second.start()
    try:
        instance = await second.repository.get(stuck.id)
        assert instance.status == InstanceStatus.FAILED
        assert instance.error_reason == ErrorReason.ACTION_FAILED
        assert instance.error_message == f"Interrupted by restart while {status.value}"
        assert instance.port is None
        assert await second.arena.in_use() == 0

        async with session_factory() as db:
            row = await db.get(PortReservation, stuck.port)
        assert row.quarantined_until is not None

        destroyed = await second.lifecycle.destroy(stuck.id)
        assert destroyed.status == InstanceStatus.DESTROYED
    finally:
        await second.close()


async def test_running_instance_untouched_on_start(
    session_factory, config, fake_runtime, always_free
) -> None:
    first = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await first.start()
    created = await first.lifecycle.create(
        CreateInstanceRequest(owner_user_id="user-1", name="world", memory_limit_mb=1024)
    )
    await first.close()

    second = GameHub(session_factory, config, runtime=fake_runtime, bind_probe=always_free)
    await second.start()
    try:
        instance = await second.repository.get(created.instance.id)
        assert instance.status == InstanceStatus.RUNNING
        assert await second.arena.in_use() == 1
    finally:
        await second.close()
