"""Host port arena.

Every port of the configured range is a row in port_reservations. A port
is handed out only after two checks pass:

1. An atomic compare-and-set in the store (FREE -> RESERVED). Concurrent
   allocators racing for the same row see rowcount 0 and move on.
2. An OS bind test, so ports taken by processes outside gamehub are
   skipped. A failed bind test rolls the claim back to FREE.

A per-port in-process lock is held across both steps so two allocators in
this process never probe the same port at once.
"""

import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from datetime import timedelta

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import col

from gamehub.config import PortsConfig
from gamehub.core.domain import PortState
from gamehub.core.errors import PortsExhaustedError
from gamehub.core.models import PortReservation, utc_now
from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import (
    PORT_ALLOCATIONS_TOTAL,
    PORT_BIND_FAILURES_TOTAL,
    PORTS_IN_USE,
)

logger = logging.getLogger(__name__)

BindProbe = Callable[[int], Awaitable[bool]]


def _try_bind(host: str, port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        try:
            sock.bind((host, port))
        except OSError:
            return False
    return True


def make_bind_probe(host: str, timeout: float) -> BindProbe:
    """Build a probe that tests whether `port` can be bound on `host`."""

    async def probe(port: int) -> bool:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(_try_bind, host, port), timeout=timeout
            )
        except TimeoutError:
            return False

    return probe


class PortArena:
    """Persisted port allocation state for one host."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: PortsConfig,
        probe: BindProbe | None = None,
    ) -> None:
        if config.range_min > config.range_max:
            raise ValueError("ports.range_min must not exceed ports.range_max")
        self._session_factory = session_factory
        self._config = config
        self._probe = probe or make_bind_probe(config.bind_host, config.bind_timeout)
        self._port_locks: dict[int, asyncio.Lock] = {}
        self._seeded = False
        self._seed_lock = asyncio.Lock()

    @property
    def range(self) -> tuple[int, int]:
        return self._config.range_min, self._config.range_max

    def _in_range(self):
        return col(PortReservation.port).between(
            self._config.range_min, self._config.range_max
        )

    def _not_quarantined(self, now):
        return or_(
            col(PortReservation.quarantined_until).is_(None),
            col(PortReservation.quarantined_until) <= now,
        )

    async def seed(self) -> int:
        """Insert rows for ports of the range not yet tracked. Idempotent."""
        async with self._seed_lock:
            async with self._session_factory() as db:
                result = await db.execute(
                    select(PortReservation.port).where(self._in_range())
                )
                existing = set(result.scalars())
                missing = [
                    port
                    for port in range(self._config.range_min, self._config.range_max + 1)
                    if port not in existing
                ]
                db.add_all(PortReservation(port=port) for port in missing)
                await db.commit()
            self._seeded = True
            await self._refresh_in_use()
            return len(missing)

    async def allocate(self, instance_id: str) -> int:
        """Reserve the lowest free port that passes the bind test.

        Raises:
            PortsExhaustedError: If no candidate passes both checks.
        """
        if not self._seeded:
            await self.seed()

        now = utc_now()
        async with self._session_factory() as db:
            result = await db.execute(
                select(PortReservation.port)
                .where(
                    self._in_range(),
                    col(PortReservation.state) == PortState.FREE,
                    self._not_quarantined(now),
                )
                .order_by(col(PortReservation.port))
            )
            candidates = list(result.scalars())

        for port in candidates:
            if await self._try_claim(port, instance_id):
                PORT_ALLOCATIONS_TOTAL.labels(result="reserved").inc()
                PORTS_IN_USE.inc()
                logger.info(
                    "Port reserved",
                    extra={
                        "event": LogEvent.PORT_RESERVED,
                        "port": port,
                        "instance_id": instance_id,
                    },
                )
                return port

        PORT_ALLOCATIONS_TOTAL.labels(result="exhausted").inc()
        logger.warning(
            "No free port in range",
            extra={
                "event": LogEvent.PORTS_EXHAUSTED,
                "range_min": self._config.range_min,
                "range_max": self._config.range_max,
                "instance_id": instance_id,
            },
        )
        raise PortsExhaustedError()

    async def _try_claim(self, port: int, instance_id: str) -> bool:
        lock = self._port_locks.setdefault(port, asyncio.Lock())
        if lock.locked():
            return False
        async with lock:
            if not await self._compare_and_set(port, instance_id):
                return False
            if await self._probe(port):
                return True

            await self._rollback_claim(port, instance_id)
            PORT_BIND_FAILURES_TOTAL.inc()
            logger.info(
                "Port failed bind test, skipping",
                extra={"event": LogEvent.PORT_BIND_FAILED, "port": port},
            )
            return False

    async def _compare_and_set(self, port: int, instance_id: str) -> bool:
        now = utc_now()
        async with self._session_factory() as db:
            result = await db.execute(
                update(PortReservation)
                .where(
                    col(PortReservation.port) == port,
                    col(PortReservation.state) == PortState.FREE,
                    self._not_quarantined(now),
                )
                .values(
                    state=PortState.RESERVED,
                    instance_id=instance_id,
                    reserved_at=now,
                    quarantined_until=None,
                )
            )
            await db.commit()
            return result.rowcount == 1

    async def _rollback_claim(self, port: int, instance_id: str) -> None:
        async with self._session_factory() as db:
            await db.execute(
                update(PortReservation)
                .where(
                    col(PortReservation.port) == port,
                    col(PortReservation.instance_id) == instance_id,
                    col(PortReservation.state) == PortState.RESERVED,
                )
                .values(state=PortState.FREE, instance_id=None, reserved_at=None)
            )
            await db.commit()

    async def mark_bound(self, port: int, instance_id: str) -> bool:
        """RESERVED -> BOUND once the container runs with the port."""
        async with self._session_factory() as db:
            result = await db.execute(
                update(PortReservation)
                .where(
                    col(PortReservation.port) == port,
                    col(PortReservation.instance_id) == instance_id,
                    col(PortReservation.state).in_([PortState.RESERVED, PortState.BOUND]),
                )
                .values(state=PortState.BOUND)
            )
            await db.commit()
        if result.rowcount != 1:
            logger.warning(
                "Port not reserved by instance, cannot mark bound",
                extra={"port": port, "instance_id": instance_id},
            )
            return False
        return True

    async def release(
        self,
        port: int,
        instance_id: str | None = None,
        quarantine: bool = False,
    ) -> bool:
        """Return a port to FREE.

        Args:
            port: Port to release
            instance_id: Only release if held by this instance
            quarantine: Keep the port out of allocation for
                ports.quarantine_seconds

        Returns:
            True if a reservation was released
        """
        now = utc_now()
        quarantined_until = (
            now + timedelta(seconds=self._config.quarantine_seconds) if quarantine else None
        )
        conditions = [
            col(PortReservation.port) == port,
            col(PortReservation.state) != PortState.FREE,
        ]
        if instance_id is not None:
            conditions.append(col(PortReservation.instance_id) == instance_id)

        async with self._session_factory() as db:
            result = await db.execute(
                update(PortReservation)
                .where(*conditions)
                .values(
                    state=PortState.FREE,
                    instance_id=None,
                    reserved_at=None,
                    released_at=now,
                    quarantined_until=quarantined_until,
                )
            )
            await db.commit()

        released = result.rowcount == 1
        if released:
            PORTS_IN_USE.dec()
            logger.info(
                "Port released",
                extra={
                    "event": LogEvent.PORT_RELEASED,
                    "port": port,
                    "instance_id": instance_id,
                    "quarantine": quarantine,
                },
            )
        return released

    async def reclaim_orphans(self, active_instance_ids: set[str]) -> list[int]:
        """Release reservations whose instance no longer holds a port."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(PortReservation).where(
                    col(PortReservation.state) != PortState.FREE
                )
            )
            orphans = [
                row.port
                for row in result.scalars()
                if row.instance_id not in active_instance_ids
            ]

        for port in orphans:
            await self.release(port)

        if orphans:
            logger.info(
                "Reclaimed orphaned port reservations",
                extra={"event": LogEvent.PORTS_RECLAIMED, "ports": orphans},
            )
        return orphans

    async def in_use(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                select(func.count())
                .select_from(PortReservation)
                .where(col(PortReservation.state) != PortState.FREE)
            )
            return result.scalar_one()

    async def _refresh_in_use(self) -> None:
        PORTS_IN_USE.set(await self.in_use())
