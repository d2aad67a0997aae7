"""Tests for InstanceRepository status transitions."""

import pytest

from gamehub.core.domain import InstanceStatus, can_transition
from gamehub.core.errors import InstanceNotFoundError, InvalidStateError
from gamehub.core.models import Instance
from gamehub.lifecycle import InstanceRepository


@pytest.fixture
def repository(session_factory) -> InstanceRepository:
    return InstanceRepository(session_factory)


async def _add(repository: InstanceRepository, **fields) -> Instance:
    return await repository.add(
        Instance(
            owner_user_id="user-1",
            name="world",
            image_ref="itzg/minecraft-server:latest",
            game_version="LATEST",
            memory_limit_mb=1024,
            **fields,
        )
    )


class TestTransitions:
    async def test_allowed_transition(self, repository: InstanceRepository) -> None:
        instance = await _add(repository)

        updated = await repository.transition(
            instance.id, InstanceStatus.PROVISIONING, port=30001
        )

        assert updated.status == InstanceStatus.PROVISIONING
        assert updated.port == 30001
        assert updated.status_changed_at is not None

    async def test_rejected_transition(self, repository: InstanceRepository) -> None:
        instance = await _add(repository)

        with pytest.raises(InvalidStateError):
            await repository.transition(instance.id, InstanceStatus.RUNNING)

        assert (await repository.get(instance.id)).status == InstanceStatus.REQUESTED

    def test_destroyed_is_terminal(self) -> None:
        for target in InstanceStatus:
            assert not can_transition(InstanceStatus.DESTROYED, target)

    async def test_unknown_instance(self, repository: InstanceRepository) -> None:
        with pytest.raises(InstanceNotFoundError):
            await repository.transition("01HXMISSING", InstanceStatus.PROVISIONING)


class TestUpdate:
    async def test_update_refuses_status(self, repository: InstanceRepository) -> None:
        instance = await _add(repository)

        with pytest.raises(ValueError):
            await repository.update(instance.id, status=InstanceStatus.RUNNING)

    async def test_port_holders(self, repository: InstanceRepository) -> None:
        holder = await _add(repository, status=InstanceStatus.STOPPED, port=30000)
        await _add(repository, status=InstanceStatus.FAILED, port=None)
        await _add(repository, status=InstanceStatus.REQUESTED)

        assert await repository.port_holders() == {holder.id}
