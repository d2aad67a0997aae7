"""Metrics sampler.

One upstream stats reader per instance, shared by every subscriber.
Raw cumulative counters are converted to instantaneous rates against the
immediately preceding sample, then throttled before fan-out. Each
subscriber has a small queue that drops its oldest sample when full, so a
slow client only ever loses stale samples and never slows the reader.
"""

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator, Callable
from datetime import datetime

from pydantic import BaseModel, computed_field

from gamehub.config import StreamingConfig
from gamehub.core.errors import GameHubError
from gamehub.core.interfaces.runtime import ContainerRuntime, RawSample
from gamehub.logging_schema import LogEvent
from gamehub.metrics.collector import METRICS_SAMPLERS, STREAM_DROPPED_FRAMES_TOTAL
from gamehub.runtimes.docker.naming import ResourceNaming
from gamehub.telemetry.throttle import FixedWindowThrottle

logger = logging.getLogger(__name__)


class NormalizedSample(BaseModel):
    """Instantaneous resource usage."""

    cpu_percent: float
    memory_used_bytes: int
    memory_limit_bytes: int
    timestamp: datetime

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def memory_percent(self) -> float:
        if self.memory_limit_bytes <= 0:
            return 0.0
        return self.memory_used_bytes / self.memory_limit_bytes * 100.0


def normalize(sample: RawSample, previous: RawSample | None) -> NormalizedSample:
    """Convert cumulative counters into rates.

    cpu_percent = cpu_delta / system_delta * online_cpus * 100, and 0 when
    there is no previous sample or either delta is not usable.
    """
    cpu_percent = 0.0
    if previous is not None:
        cpu_delta = sample.cpu_total_ns - previous.cpu_total_ns
        system_delta = sample.system_cpu_ns - previous.system_cpu_ns
        if system_delta > 0 and cpu_delta >= 0:
            cpu_percent = cpu_delta / system_delta * sample.online_cpus * 100.0
    return NormalizedSample(
        cpu_percent=cpu_percent,
        memory_used_bytes=sample.memory_used_bytes,
        memory_limit_bytes=sample.memory_limit_bytes,
        timestamp=sample.read_at,
    )


class Subscription:
    """One subscriber's view of an instance's metrics feed."""

    def __init__(self, instance_id: str, maxsize: int) -> None:
        self.instance_id = instance_id
        self.detach_reason: str | None = None
        self._queue: asyncio.Queue[NormalizedSample | None] = asyncio.Queue(
            maxsize=max(1, maxsize)
        )

    def push(self, sample: NormalizedSample | None) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            STREAM_DROPPED_FRAMES_TOTAL.labels(kind="metrics").inc()
        self._queue.put_nowait(sample)

    def detach(self, reason: str) -> None:
        self.detach_reason = reason
        self.push(None)

    async def __aiter__(self) -> AsyncIterator[NormalizedSample]:
        while True:
            sample = await self._queue.get()
            if sample is None:
                return
            yield sample


class _Feed:
    def __init__(self) -> None:
        self.subscribers: set[Subscription] = set()
        self.task: asyncio.Task | None = None


class MetricsSampler:
    """Per-instance stats readers with subscriber fan-out."""

    def __init__(
        self,
        runtime: ContainerRuntime,
        naming: ResourceNaming,
        config: StreamingConfig,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._runtime = runtime
        self._naming = naming
        self._config = config
        self._clock = clock
        self._feeds: dict[str, _Feed] = {}

    def active_instances(self) -> list[str]:
        return list(self._feeds)

    def subscribe(self, instance_id: str) -> Subscription:
        """Attach a subscriber, starting the instance's reader if needed."""
        feed = self._feeds.get(instance_id)
        if feed is None:
            feed = _Feed()
            self._feeds[instance_id] = feed
            feed.task = asyncio.create_task(
                self._run(instance_id, feed), name=f"metrics-{instance_id}"
            )
            METRICS_SAMPLERS.inc()
            logger.info(
                "Metrics reader started",
                extra={"event": LogEvent.SAMPLER_STARTED, "instance_id": instance_id},
            )
        subscription = Subscription(instance_id, self._config.metrics_buffer_size)
        feed.subscribers.add(subscription)
        return subscription

    async def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscriber; the last one out cancels the reader."""
        feed = self._feeds.get(subscription.instance_id)
        if feed is None:
            return
        feed.subscribers.discard(subscription)
        if not feed.subscribers:
            await self._stop_feed(subscription.instance_id, feed)

    async def close(self) -> None:
        for instance_id, feed in list(self._feeds.items()):
            await self._stop_feed(instance_id, feed)

    async def _stop_feed(self, instance_id: str, feed: _Feed) -> None:
        if self._feeds.get(instance_id) is feed:
            del self._feeds[instance_id]
            METRICS_SAMPLERS.dec()
        if feed.task is not None and not feed.task.done():
            feed.task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await feed.task
        logger.info(
            "Metrics reader stopped",
            extra={"event": LogEvent.SAMPLER_STOPPED, "instance_id": instance_id},
        )

    async def _run(self, instance_id: str, feed: _Feed) -> None:
        throttle = FixedWindowThrottle(self._config.metrics_interval, self._clock)
        previous: RawSample | None = None
        name = self._naming.container_name(instance_id)
        try:
            async for raw in self._runtime.stats(name):
                sample = normalize(raw, previous)
                previous = raw
                if throttle.allow():
                    for subscription in list(feed.subscribers):
                        subscription.push(sample)
        except GameHubError as exc:
            reason = exc.message
        except Exception:
            logger.exception(
                "Metrics reader crashed",
                extra={"event": LogEvent.STREAM_DETACHED, "instance_id": instance_id},
            )
            reason = "Metrics reader failed"
        else:
            reason = "Stats stream ended"

        logger.info(
            "Metrics stream detached",
            extra={
                "event": LogEvent.STREAM_DETACHED,
                "instance_id": instance_id,
                "reason": reason,
            },
        )
        if self._feeds.get(instance_id) is feed:
            del self._feeds[instance_id]
            METRICS_SAMPLERS.dec()
        for subscription in list(feed.subscribers):
            subscription.detach(reason)
