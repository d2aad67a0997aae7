"""GameHub service container.

Wires the port arena, provisioner, lifecycle manager, metrics sampler and
streaming gateway over one database session factory and one container
runtime.
"""

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamehub.config import GameHubConfig, get_config
from gamehub.core.interfaces.runtime import ContainerRuntime
from gamehub.lifecycle import (
    InstanceRepository,
    LifecycleManager,
    StorageManager,
    run_storage_gc,
)
from gamehub.logging_schema import LogEvent
from gamehub.provisioning import PortArena, Provisioner
from gamehub.provisioning.ports import BindProbe
from gamehub.runtimes import DockerRuntime, ResourceNaming
from gamehub.streaming import SessionRegistry, StreamGateway
from gamehub.telemetry import MetricsSampler

logger = logging.getLogger(__name__)


class GameHub:
    """Composition root shared by the HTTP API and WebSocket endpoints."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        config: GameHubConfig | None = None,
        runtime: ContainerRuntime | None = None,
        bind_probe: BindProbe | None = None,
    ) -> None:
        self.config = config or get_config()
        self.session_factory = session_factory
        self.runtime = runtime or DockerRuntime(self.config)
        self.naming = ResourceNaming(self.config.runtime)

        self.arena = PortArena(session_factory, self.config.ports, probe=bind_probe)
        self.provisioner = Provisioner(
            self.arena, self.config.provisioning, self.config.runtime
        )
        self.repository = InstanceRepository(session_factory)
        self.storage = StorageManager(self.naming, self.repository, self.config.lifecycle)
        self.lifecycle = LifecycleManager(
            self.repository,
            self.provisioner,
            self.runtime,
            self.naming,
            self.storage,
            self.config,
        )

        self.sampler = MetricsSampler(self.runtime, self.naming, self.config.streaming)
        self.registry = SessionRegistry()
        self.gateway = StreamGateway(
            session_factory,
            self.runtime,
            self.naming,
            self.sampler,
            self.registry,
            self.config.streaming,
        )
        self.lifecycle.add_termination_listener(self.registry.on_instance_terminated)

        self._gc_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Seed the port arena, reclaim crash leftovers and start storage GC."""
        seeded = await self.arena.seed()
        recovered = await self.lifecycle.recover_interrupted()
        reclaimed = await self.lifecycle.reclaim_orphan_ports()
        logger.info(
            "GameHub started",
            extra={
                "event": LogEvent.APP_STARTED,
                "ports_seeded": seeded,
                "instances_recovered": len(recovered),
                "ports_reclaimed": len(reclaimed),
            },
        )
        self._gc_task = asyncio.create_task(
            run_storage_gc(self.storage, self.config.lifecycle.storage_gc_interval),
            name="storage-gc",
        )

    async def close(self) -> None:
        if self._gc_task is not None:
            self._gc_task.cancel()
            try:
                await self._gc_task
            except asyncio.CancelledError:
                pass
            self._gc_task = None
        await self.sampler.close()
