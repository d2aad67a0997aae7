"""Instance lifecycle manager.

Sole writer of instance status. Every mutating operation holds the
instance's lifecycle guard for its whole duration, so create, launch,
stop, restart and destroy never interleave on one instance. Different
instances proceed in parallel.

Port handling:
- create/relaunch reserve a port (RESERVED), a successful start marks it BOUND
- a stopped instance keeps its port so restart reuses it
- a failed instance releases its port with a quarantine
- destroy releases the port for immediate reuse
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager

from pydantic import BaseModel, Field

from gamehub.config import GameHubConfig
from gamehub.core.domain import INTERRUPTED_STATUSES, ErrorReason, InstanceStatus
from gamehub.core.errors import (
    GameHubError,
    InvalidStateError,
    LifecycleConflictError,
    PortsExhaustedError,
    RuntimeOperationError,
    RuntimeUnavailableError,
)
from gamehub.core.interfaces.runtime import ContainerRuntime, ContainerState
from gamehub.core.models import Instance, utc_now
from gamehub.lifecycle.descriptor import build_container_spec
from gamehub.lifecycle.lock import exclusive
from gamehub.lifecycle.repository import InstanceRepository
from gamehub.lifecycle.snapshot import InstanceSnapshot
from gamehub.lifecycle.storage import StorageManager
from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import LIFECYCLE_DURATION, LIFECYCLE_OPERATIONS_TOTAL
from gamehub.provisioning import Provisioner, ProvisioningResult
from gamehub.runtimes.docker.naming import ResourceNaming

logger = logging.getLogger(__name__)

TerminationListener = Callable[[str, InstanceStatus], Awaitable[None]]


class StartupFailedError(RuntimeOperationError):
    """Container did not reach running after start."""

    def __init__(self, message: str, reason: ErrorReason) -> None:
        self.reason = reason
        super().__init__(message)


class CreateInstanceRequest(BaseModel):
    """Parameters for a new instance."""

    owner_user_id: str = Field(min_length=1)
    name: str = Field(min_length=1, max_length=255)
    memory_limit_mb: int = Field(gt=0)
    disk_quota_mb: int | None = Field(default=None, gt=0)
    image_ref: str | None = None
    game_version: str | None = None


class CreateResult(BaseModel):
    """Outcome of create: the instance plus its one-time provisioning data."""

    instance: InstanceSnapshot
    provisioning: ProvisioningResult


def _error_reason(exc: BaseException) -> ErrorReason:
    if isinstance(exc, StartupFailedError):
        return exc.reason
    if isinstance(exc, PortsExhaustedError):
        return ErrorReason.PORTS_EXHAUSTED
    if isinstance(exc, RuntimeUnavailableError):
        return ErrorReason.RUNTIME_UNAVAILABLE
    return ErrorReason.ACTION_FAILED


def _error_message(exc: BaseException) -> str:
    message = exc.message if isinstance(exc, GameHubError) else str(exc)
    return (message or type(exc).__name__)[:1024]


class LifecycleManager:
    """Drives the container runtime for provisioned instances."""

    def __init__(
        self,
        repository: InstanceRepository,
        provisioner: Provisioner,
        runtime: ContainerRuntime,
        naming: ResourceNaming,
        storage: StorageManager,
        config: GameHubConfig,
    ) -> None:
        self._repository = repository
        self._provisioner = provisioner
        self._runtime = runtime
        self._naming = naming
        self._storage = storage
        self._config = config
        self._listeners: list[TerminationListener] = []

    @property
    def repository(self) -> InstanceRepository:
        return self._repository

    def add_termination_listener(self, listener: TerminationListener) -> None:
        """Register a callback for instances that stopped, failed or were destroyed."""
        self._listeners.append(listener)

    # =========================================================================
    # Operations
    # =========================================================================

    async def create(self, request: CreateInstanceRequest) -> CreateResult:
        """Record, provision and launch a new instance.

        Raises:
            PortsExhaustedError: No port available (instance left FAILED).
            RuntimeUnavailableError: Engine unreachable (instance left FAILED).
        """
        runtime_config = self._config.runtime
        instance = await self._repository.add(
            Instance(
                owner_user_id=request.owner_user_id,
                name=request.name,
                image_ref=request.image_ref or runtime_config.default_image,
                game_version=request.game_version or runtime_config.default_version,
                memory_limit_mb=request.memory_limit_mb,
                disk_quota_mb=request.disk_quota_mb,
            )
        )
        logger.info(
            "Instance requested",
            extra={
                "event": LogEvent.INSTANCE_CREATED,
                "instance_id": instance.id,
                "owner_user_id": request.owner_user_id,
            },
        )

        async with self._operation(instance.id, "create"):
            await self._repository.transition(instance.id, InstanceStatus.PROVISIONING)
            try:
                provisioning = await self._provisioner.provision(
                    instance.id, request.owner_user_id
                )
            except Exception as exc:
                await self._fail(instance.id, exc)
                raise
            try:
                instance = await self._repository.update(
                    instance.id,
                    port=provisioning.port,
                    address=provisioning.address,
                    address_label=provisioning.address_label,
                    region=provisioning.region,
                    secret=provisioning.secret,
                )
            except Exception as exc:
                await self._provisioner.release_port(provisioning.port, instance.id)
                await self._fail(instance.id, exc)
                raise
            snapshot = await self._launch_locked(instance)

        return CreateResult(instance=snapshot, provisioning=provisioning)

    async def launch(self, instance_id: str) -> InstanceSnapshot:
        """Start a STOPPED or FAILED instance. RUNNING is a no-op."""
        async with self._operation(instance_id, "launch"):
            instance = await self._repository.get(instance_id)
            status = InstanceStatus(instance.status)
            if status == InstanceStatus.RUNNING:
                return InstanceSnapshot.build(instance)
            if status not in (InstanceStatus.STOPPED, InstanceStatus.FAILED):
                raise InvalidStateError(f"Cannot launch instance in {status}")
            return await self._relaunch_locked(instance)

    async def stop(
        self, instance_id: str, grace_seconds: int | None = None
    ) -> InstanceSnapshot:
        """Stop gracefully. Stopping a STOPPED instance is a no-op success."""
        grace = self._grace(grace_seconds)
        async with self._operation(instance_id, "stop"):
            instance = await self._repository.get(instance_id)
            status = InstanceStatus(instance.status)
            if status == InstanceStatus.STOPPED:
                logger.info(
                    "Instance already stopped",
                    extra={
                        "event": LogEvent.INSTANCE_STOPPED,
                        "instance_id": instance_id,
                        "status": "already_stopped",
                    },
                )
                return InstanceSnapshot.build(instance)
            if status not in (InstanceStatus.RUNNING, InstanceStatus.FAILED):
                raise InvalidStateError(f"Cannot stop instance in {status}")
            instance = await self._stop_locked(instance, grace)
            return InstanceSnapshot.build(instance)

    async def restart(
        self, instance_id: str, grace_seconds: int | None = None
    ) -> InstanceSnapshot:
        """Stop then launch, reusing data directory, port and secret."""
        grace = self._grace(grace_seconds)
        async with self._operation(instance_id, "restart"):
            instance = await self._repository.get(instance_id)
            status = InstanceStatus(instance.status)
            if status in (InstanceStatus.RUNNING, InstanceStatus.FAILED):
                instance = await self._stop_locked(instance, grace)
            elif status != InstanceStatus.STOPPED:
                raise InvalidStateError(f"Cannot restart instance in {status}")
            return await self._relaunch_locked(instance)

    async def destroy(self, instance_id: str, purge: bool = False) -> InstanceSnapshot:
        """Stop, remove the container and release the port.

        Args:
            instance_id: Instance to destroy
            purge: Delete the data directory now instead of after retention
        """
        grace = self._grace(None)
        async with self._operation(instance_id, "destroy"):
            instance = await self._repository.get(instance_id)
            status = InstanceStatus(instance.status)
            if status == InstanceStatus.DESTROYED:
                return InstanceSnapshot.build(instance)
            if status in (InstanceStatus.RUNNING, InstanceStatus.FAILED):
                instance = await self._stop_locked(instance, grace)
            elif status != InstanceStatus.STOPPED:
                raise InvalidStateError(f"Cannot destroy instance in {status}")

            await self._runtime.remove(self._naming.container_name(instance_id))
            if purge:
                await self._storage.purge(instance_id)
            if instance.port is not None:
                await self._provisioner.release_port(instance.port, instance_id)

            now = utc_now()
            instance = await self._repository.transition(
                instance_id,
                InstanceStatus.DESTROYED,
                port=None,
                secret=None,
                destroyed_at=now,
                storage_purged_at=now if purge else None,
            )
            logger.info(
                "Instance destroyed",
                extra={
                    "event": LogEvent.INSTANCE_DESTROYED,
                    "instance_id": instance_id,
                    "purge": purge,
                },
            )
        await self._notify_terminated(instance_id, InstanceStatus.DESTROYED)
        return InstanceSnapshot.build(instance)

    async def get_status(self, instance_id: str) -> InstanceSnapshot:
        """Recorded status plus the runtime's observed state. Read-only."""
        instance = await self._repository.get(instance_id)
        status = InstanceStatus(instance.status)
        if status in (InstanceStatus.REQUESTED, InstanceStatus.DESTROYED):
            return InstanceSnapshot.build(instance)
        state = await self._runtime.inspect(self._naming.container_name(instance_id))
        return InstanceSnapshot.build(instance, state)

    async def get_log_buffer(self, instance_id: str, tail_lines: int = 100) -> list[str]:
        """Most recent log lines, bounded by lifecycle.max_log_tail."""
        instance = await self._repository.get(instance_id)
        tail = max(0, min(tail_lines, self._config.lifecycle.max_log_tail))
        status = InstanceStatus(instance.status)
        if tail == 0 or status in (InstanceStatus.REQUESTED, InstanceStatus.DESTROYED):
            return []
        return await self._runtime.logs(self._naming.container_name(instance_id), tail)

    async def recover_interrupted(self) -> list[str]:
        """Fail instances a crash left mid-operation, quarantining their ports.

        Without this, an instance stuck in PROVISIONING or STOPPING accepts
        no operation and keeps its port forever.
        """
        recovered = []
        for instance in await self._repository.list_in_status(INTERRUPTED_STATUSES):
            async with exclusive(instance.id, "recover"):
                await self._mark_failed(
                    instance.id,
                    ErrorReason.ACTION_FAILED,
                    f"Interrupted by restart while {instance.status}",
                    quarantine_port=True,
                )
            recovered.append(instance.id)
        return recovered

    async def reclaim_orphan_ports(self) -> list[int]:
        """Release reservations left behind by a crash."""
        holders = await self._repository.port_holders()
        return await self._provisioner.arena.reclaim_orphans(holders)

    # =========================================================================
    # Internals (caller holds the instance guard)
    # =========================================================================

    async def _relaunch_locked(self, instance: Instance) -> InstanceSnapshot:
        if instance.secret is None:
            raise InvalidStateError(
                "Instance was never provisioned; destroy it and create a new one"
            )
        was_failed = InstanceStatus(instance.status) == InstanceStatus.FAILED
        stale_container = was_failed or instance.port is None

        instance = await self._repository.transition(
            instance.id,
            InstanceStatus.PROVISIONING,
            error_reason=None,
            error_message=None,
        )
        try:
            if stale_container:
                await self._runtime.remove(self._naming.container_name(instance.id))
            if instance.port is None:
                port = await self._provisioner.allocate_port(instance.id)
                instance = await self._repository.update(instance.id, port=port)
        except Exception as exc:
            await self._fail(instance.id, exc)
            raise
        return await self._launch_locked(instance)

    async def _launch_locked(self, instance: Instance) -> InstanceSnapshot:
        spec = build_container_spec(
            instance,
            self._config.runtime,
            self._naming,
            network=self._config.docker.network,
        )
        try:
            await self._runtime.create(spec)
            await self._runtime.start(spec.name)
            state = await self._await_running(spec.name)
        except Exception as exc:
            await self._fail(instance.id, exc, stop_container=True, quarantine_port=True)
            raise

        await self._provisioner.arena.mark_bound(spec.host_port, instance.id)
        instance = await self._repository.transition(instance.id, InstanceStatus.RUNNING)
        logger.info(
            "Instance running",
            extra={
                "event": LogEvent.INSTANCE_RUNNING,
                "instance_id": instance.id,
                "port": instance.port,
            },
        )
        return InstanceSnapshot.build(instance, state)

    async def _await_running(self, name: str) -> ContainerState:
        lifecycle = self._config.lifecycle
        deadline = time.monotonic() + lifecycle.startup_grace_seconds
        while True:
            state = await self._runtime.inspect(name)
            if state.running:
                return state
            if not state.exists or state.status in ("exited", "dead"):
                raise StartupFailedError(
                    f"Container exited during startup (exit code {state.exit_code})",
                    ErrorReason.EXITED_ON_START,
                )
            if time.monotonic() >= deadline:
                raise StartupFailedError(
                    f"Container not running after {lifecycle.startup_grace_seconds:.0f}s",
                    ErrorReason.START_TIMEOUT,
                )
            await asyncio.sleep(lifecycle.startup_poll_interval)

    async def _stop_locked(self, instance: Instance, grace: int) -> Instance:
        name = self._naming.container_name(instance.id)
        await self._repository.transition(instance.id, InstanceStatus.STOPPING)
        try:
            await self._runtime.stop(name, grace)
            state = await self._runtime.inspect(name)
            if state.running:
                await self._runtime.kill(name)
        except Exception as exc:
            await self._fail(instance.id, exc, quarantine_port=True)
            raise

        instance = await self._repository.transition(instance.id, InstanceStatus.STOPPED)
        logger.info(
            "Instance stopped",
            extra={
                "event": LogEvent.INSTANCE_STOPPED,
                "instance_id": instance.id,
                "grace_seconds": grace,
            },
        )
        await self._notify_terminated(instance.id, InstanceStatus.STOPPED)
        return instance

    async def _fail(
        self,
        instance_id: str,
        exc: BaseException,
        stop_container: bool = False,
        quarantine_port: bool = False,
    ) -> None:
        await self._mark_failed(
            instance_id,
            _error_reason(exc),
            _error_message(exc),
            stop_container=stop_container,
            quarantine_port=quarantine_port,
        )

    async def _mark_failed(
        self,
        instance_id: str,
        reason: ErrorReason,
        message: str,
        stop_container: bool = False,
        quarantine_port: bool = False,
    ) -> None:
        """Move to FAILED, releasing the port.

        quarantine_port keeps the port out of allocation for a while when a
        container may still be holding it.
        """
        instance = await self._repository.get(instance_id)
        fields: dict = {"error_reason": reason, "error_message": message}

        if stop_container:
            name = self._naming.container_name(instance_id)
            try:
                await self._runtime.stop(name, self._config.lifecycle.stop_grace_seconds)
            except GameHubError as cleanup_exc:
                logger.warning(
                    "Could not stop container of failed instance",
                    extra={
                        "event": LogEvent.INSTANCE_FAILED,
                        "instance_id": instance_id,
                        "error": cleanup_exc.message,
                    },
                )

        if instance.port is not None:
            await self._provisioner.release_port(
                instance.port, instance_id, quarantine=quarantine_port
            )
            fields["port"] = None

        if InstanceStatus(instance.status) == InstanceStatus.FAILED:
            await self._repository.update(instance_id, **fields)
        else:
            await self._repository.transition(instance_id, InstanceStatus.FAILED, **fields)

        logger.error(
            "Instance failed",
            extra={
                "event": LogEvent.INSTANCE_FAILED,
                "instance_id": instance_id,
                "error_reason": fields["error_reason"],
                "error": fields["error_message"],
            },
        )
        await self._notify_terminated(instance_id, InstanceStatus.FAILED)

    async def _notify_terminated(self, instance_id: str, status: InstanceStatus) -> None:
        for listener in self._listeners:
            try:
                await listener(instance_id, status)
            except Exception:
                logger.exception(
                    "Termination listener failed",
                    extra={"instance_id": instance_id, "status": status.value},
                )

    def _grace(self, grace_seconds: int | None) -> int:
        if grace_seconds is None:
            return self._config.lifecycle.stop_grace_seconds
        return max(0, grace_seconds)

    @asynccontextmanager
    async def _operation(self, instance_id: str, operation: str) -> AsyncIterator[None]:
        start = time.monotonic()
        try:
            async with exclusive(instance_id, operation):
                yield
        except LifecycleConflictError as exc:
            LIFECYCLE_OPERATIONS_TOTAL.labels(operation=operation, result="conflict").inc()
            logger.warning(
                "Lifecycle operation rejected",
                extra={
                    "event": LogEvent.LIFECYCLE_CONFLICT,
                    "instance_id": instance_id,
                    "operation": operation,
                    "error": exc.message,
                },
            )
            raise
        except Exception:
            LIFECYCLE_OPERATIONS_TOTAL.labels(operation=operation, result="error").inc()
            raise
        else:
            LIFECYCLE_OPERATIONS_TOTAL.labels(operation=operation, result="success").inc()
        finally:
            LIFECYCLE_DURATION.labels(operation=operation).observe(time.monotonic() - start)
