"""Session streaming gateway.

Authenticates a client WebSocket against an instance, then relays either
the server console (duplex) or the metrics feed (read-only). Clients are
only accepted after authentication and upstream attach both succeed.
"""

import contextlib
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocket

from gamehub.config import StreamingConfig
from gamehub.core.domain import InstanceStatus, SessionKind
from gamehub.core.errors import ErrorCode, GameHubError
from gamehub.core.interfaces.runtime import AttachedStream, ContainerRuntime
from gamehub.core.models import Instance
from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import STREAM_REJECTIONS_TOTAL
from gamehub.runtimes.docker.naming import ResourceNaming
from gamehub.streaming.auth import authorize_stream, extract_token
from gamehub.streaming.registry import SessionRegistry, StreamSession
from gamehub.streaming.relay import (
    CLOSE_INTERNAL_ERROR,
    CLOSE_POLICY_VIOLATION,
    run_console,
    run_metrics,
)
from gamehub.telemetry import MetricsSampler

logger = logging.getLogger(__name__)


class StreamGateway:
    """Entry point for console and metrics WebSocket sessions."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        runtime: ContainerRuntime,
        naming: ResourceNaming,
        sampler: MetricsSampler,
        registry: SessionRegistry,
        config: StreamingConfig,
    ) -> None:
        self._session_factory = session_factory
        self._runtime = runtime
        self._naming = naming
        self._sampler = sampler
        self._registry = registry
        self._config = config

    @property
    def registry(self) -> SessionRegistry:
        return self._registry

    async def attach_console(self, websocket: WebSocket, instance_id: str) -> None:
        session = await self._open_session(websocket, instance_id, SessionKind.CONSOLE)
        if session is None:
            return
        try:
            stream = await self._attach_upstream(websocket, instance_id)
            if stream is None:
                return
            try:
                await websocket.accept()
                await run_console(websocket, stream, session, self._config)
            except Exception:
                logger.exception(
                    "Console session error",
                    extra={"event": LogEvent.STREAM_DETACHED, "instance_id": instance_id},
                )
            finally:
                with contextlib.suppress(Exception):
                    await stream.close()
                with contextlib.suppress(Exception):
                    await websocket.close()
        finally:
            self._registry.close(session)

    async def attach_metrics(self, websocket: WebSocket, instance_id: str) -> None:
        session = await self._open_session(websocket, instance_id, SessionKind.METRICS)
        if session is None:
            return
        try:
            await websocket.accept()
            await run_metrics(websocket, self._sampler, session)
        except Exception:
            logger.exception(
                "Metrics session error",
                extra={"event": LogEvent.STREAM_DETACHED, "instance_id": instance_id},
            )
        finally:
            self._registry.close(session)
            with contextlib.suppress(Exception):
                await websocket.close()

    async def _open_session(
        self, websocket: WebSocket, instance_id: str, kind: SessionKind
    ) -> StreamSession | None:
        """Authorize and register a session, or close with 1008 and return None.

        The session is registered before the status is read again, so a stop
        racing the handshake either shows up in that read or reaches the
        session through the registry.
        """
        principal = await self._authorize(websocket, instance_id, kind)
        if principal is None:
            return None

        session = self._registry.open(instance_id, principal, kind)
        async with self._session_factory() as db:
            instance = await db.get(Instance, instance_id)
            running = instance is not None and instance.status == InstanceStatus.RUNNING
        if running:
            return session

        self._registry.close(session)
        STREAM_REJECTIONS_TOTAL.labels(
            kind=kind.value, reason=ErrorCode.INVALID_STATE.value
        ).inc()
        await websocket.close(code=CLOSE_POLICY_VIOLATION, reason="Instance is not running")
        return None

    async def _authorize(
        self, websocket: WebSocket, instance_id: str, kind: SessionKind
    ) -> str | None:
        """Return the principal, or close with 1008 and return None."""
        token = extract_token(websocket)
        try:
            async with self._session_factory() as db:
                principal, _ = await authorize_stream(db, token, instance_id)
        except GameHubError as exc:
            STREAM_REJECTIONS_TOTAL.labels(kind=kind.value, reason=exc.code.value).inc()
            logger.info(
                "Stream session rejected",
                extra={
                    "event": LogEvent.SESSION_REJECTED,
                    "instance_id": instance_id,
                    "kind": kind.value,
                    "error_code": exc.code.value,
                },
            )
            await websocket.close(code=CLOSE_POLICY_VIOLATION, reason=exc.message)
            return None
        return principal

    async def _attach_upstream(
        self, websocket: WebSocket, instance_id: str
    ) -> AttachedStream | None:
        try:
            return await self._runtime.attach(self._naming.container_name(instance_id))
        except GameHubError as exc:
            STREAM_REJECTIONS_TOTAL.labels(
                kind=SessionKind.CONSOLE.value, reason=exc.code.value
            ).inc()
            logger.warning(
                "Console attach failed",
                extra={
                    "event": LogEvent.STREAM_DETACHED,
                    "instance_id": instance_id,
                    "error": exc.message,
                },
            )
            await websocket.close(code=CLOSE_INTERNAL_ERROR, reason="Upstream attach failed")
            return None
