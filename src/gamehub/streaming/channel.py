"""Bounded per-session outbound channel."""

import asyncio
from typing import Literal

from gamehub.metrics.collector import STREAM_DROPPED_FRAMES_TOTAL

OverflowPolicy = Literal["disconnect", "drop_oldest"]


class ChannelOverflowError(Exception):
    """Raised on put when the channel is full and the policy is disconnect."""


class Detached:
    """End-of-stream marker carrying the detach reason."""

    def __init__(self, reason: str) -> None:
        self.reason = reason


class SessionChannel:
    """FIFO of outbound frames with a fixed capacity.

    put never blocks, so a slow client cannot stall the upstream reader.
    The end marker is always delivered, after every frame queued before it.
    """

    def __init__(self, maxsize: int, policy: OverflowPolicy, kind: str) -> None:
        self._queue: asyncio.Queue[bytes | Detached] = asyncio.Queue(maxsize=max(1, maxsize))
        self._policy = policy
        self._kind = kind
        self._closed = False

    def put(self, frame: bytes) -> None:
        if self._closed:
            return
        if self._queue.full():
            if self._policy == "disconnect":
                raise ChannelOverflowError(
                    f"Client too slow: {self._queue.maxsize} frames pending"
                )
            self._queue.get_nowait()
            STREAM_DROPPED_FRAMES_TOTAL.labels(kind=self._kind).inc()
        self._queue.put_nowait(frame)

    def close(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        if self._queue.full():
            self._queue.get_nowait()
            STREAM_DROPPED_FRAMES_TOTAL.labels(kind=self._kind).inc()
        self._queue.put_nowait(Detached(reason))

    async def get(self) -> bytes | Detached:
        return await self._queue.get()
