"""Instance persistence with validated status transitions."""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from gamehub.core.domain import PORT_HOLDING_STATUSES, InstanceStatus, can_transition
from gamehub.core.errors import InstanceNotFoundError, InvalidStateError
from gamehub.core.models import Instance, utc_now
from gamehub.logging_schema import LogEvent

logger = logging.getLogger(__name__)


class InstanceRepository:
    """Instance rows. Status changes go through transition() only."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, instance: Instance) -> Instance:
        async with self._session_factory() as db:
            db.add(instance)
            await db.commit()
            await db.refresh(instance)
            return instance

    async def get(self, instance_id: str) -> Instance:
        """Raises InstanceNotFoundError if missing."""
        async with self._session_factory() as db:
            instance = await db.get(Instance, instance_id)
            if instance is None:
                raise InstanceNotFoundError()
            return instance

    async def update(self, instance_id: str, **fields: Any) -> Instance:
        """Update non-status fields."""
        if "status" in fields:
            raise ValueError("Use transition() to change status")
        async with self._session_factory() as db:
            instance = await db.get(Instance, instance_id)
            if instance is None:
                raise InstanceNotFoundError()
            for key, value in fields.items():
                setattr(instance, key, value)
            await db.commit()
            await db.refresh(instance)
            return instance

    async def transition(
        self, instance_id: str, target: InstanceStatus, **fields: Any
    ) -> Instance:
        """Move an instance to `target`, updating extra fields atomically.

        Raises:
            InstanceNotFoundError: If the instance does not exist.
            InvalidStateError: If current -> target is not allowed.
        """
        async with self._session_factory() as db:
            instance = await db.get(Instance, instance_id)
            if instance is None:
                raise InstanceNotFoundError()

            current = InstanceStatus(instance.status)
            if not can_transition(current, target):
                raise InvalidStateError(
                    f"Instance {instance_id} cannot go from {current} to {target}"
                )

            instance.status = target
            instance.status_changed_at = utc_now()
            for key, value in fields.items():
                setattr(instance, key, value)
            await db.commit()
            await db.refresh(instance)

        logger.info(
            "Instance status changed",
            extra={
                "event": LogEvent.STATE_CHANGED,
                "instance_id": instance_id,
                "from_status": current.value,
                "to_status": target.value,
            },
        )
        return instance

    async def list_in_status(self, statuses: frozenset[InstanceStatus]) -> list[Instance]:
        async with self._session_factory() as db:
            result = await db.execute(
                select(Instance).where(col(Instance.status).in_([s.value for s in statuses]))
            )
            return list(result.scalars())

    async def port_holders(self) -> set[str]:
        """Ids of instances that legitimately hold a port reservation."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Instance.id).where(
                    col(Instance.status).in_([s.value for s in PORT_HOLDING_STATUSES]),
                    col(Instance.port).is_not(None),
                )
            )
            return set(result.scalars())

    async def list_purgeable(self, destroyed_before: datetime) -> list[Instance]:
        """Destroyed instances whose data directory is past retention."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Instance).where(
                    col(Instance.status) == InstanceStatus.DESTROYED,
                    col(Instance.storage_purged_at).is_(None),
                    col(Instance.destroyed_at) <= destroyed_before,
                )
            )
            return list(result.scalars())
