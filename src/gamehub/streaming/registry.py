"""Live streaming session registry."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime

from ulid import ULID

from gamehub.core.domain import InstanceStatus, SessionKind
from gamehub.core.models import utc_now
from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import STREAM_SESSIONS

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    """One attached client connection."""

    instance_id: str
    principal: str
    kind: SessionKind
    id: str = field(default_factory=lambda: str(ULID()))
    opened_at: datetime = field(default_factory=utc_now)
    terminated: asyncio.Event = field(default_factory=asyncio.Event)
    termination_reason: str | None = None

    def terminate(self, reason: str) -> None:
        self.termination_reason = reason
        self.terminated.set()

    async def wait_terminated(self) -> str:
        await self.terminated.wait()
        return self.termination_reason or "Session terminated"


class SessionRegistry:
    """Tracks open sessions so instance termination can close them."""

    def __init__(self) -> None:
        self._sessions: dict[str, StreamSession] = {}

    def open(self, instance_id: str, principal: str, kind: SessionKind) -> StreamSession:
        session = StreamSession(instance_id=instance_id, principal=principal, kind=kind)
        self._sessions[session.id] = session
        STREAM_SESSIONS.labels(kind=kind.value).inc()
        logger.info(
            "Stream session opened",
            extra={
                "event": LogEvent.SESSION_OPENED,
                "session_id": session.id,
                "instance_id": instance_id,
                "user_id": principal,
                "kind": kind.value,
            },
        )
        return session

    def close(self, session: StreamSession) -> None:
        if self._sessions.pop(session.id, None) is None:
            return
        STREAM_SESSIONS.labels(kind=session.kind.value).dec()
        logger.info(
            "Stream session closed",
            extra={
                "event": LogEvent.SESSION_CLOSED,
                "session_id": session.id,
                "instance_id": session.instance_id,
                "kind": session.kind.value,
                "reason": session.termination_reason,
            },
        )

    def sessions_for(self, instance_id: str) -> list[StreamSession]:
        return [s for s in self._sessions.values() if s.instance_id == instance_id]

    def __len__(self) -> int:
        return len(self._sessions)

    async def on_instance_terminated(self, instance_id: str, status: InstanceStatus) -> None:
        """Lifecycle termination listener: end every session of the instance."""
        for session in self.sessions_for(instance_id):
            session.terminate(f"Instance {status.value.lower()}")
