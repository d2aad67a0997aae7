"""Tests for MetricsSampler normalization and fan-out."""

import asyncio

import pytest

from gamehub.config import StreamingConfig
from gamehub.core.errors import RuntimeUnavailableError
from gamehub.runtimes.docker.naming import ResourceNaming
from gamehub.telemetry import MetricsSampler, normalize


@pytest.fixture
def naming(config) -> ResourceNaming:
    return ResourceNaming(config.runtime)


async def _collect(subscription) -> list:
    return [sample async for sample in subscription]


class TestNormalize:
    def test_cpu_percent(self, make_sample) -> None:
        previous = make_sample(1_000, 10_000)
        current = make_sample(2_000, 20_000, cpus=2)

        sample = normalize(current, previous)

        assert sample.cpu_percent == pytest.approx(20.0)
        assert sample.memory_percent == pytest.approx(50.0)

    def test_first_sample_has_zero_cpu(self, make_sample) -> None:
        assert normalize(make_sample(5_000, 50_000), None).cpu_percent == 0.0

    def test_zero_system_delta(self, make_sample) -> None:
        previous = make_sample(1_000, 10_000)
        assert normalize(make_sample(2_000, 10_000), previous).cpu_percent == 0.0

    def test_counter_reset(self, make_sample) -> None:
        previous = make_sample(9_000, 10_000)
        assert normalize(make_sample(1_000, 20_000), previous).cpu_percent == 0.0

    def test_unknown_memory_limit(self, make_sample) -> None:
        sample = normalize(make_sample(1, 1, limit=0), None)
        assert sample.memory_percent == 0.0


class TestMetricsSampler:
    async def test_throttles_to_interval(
        self, fake_runtime, naming, make_sample
    ) -> None:
        fake_runtime.samples = [make_sample(i * 100, i * 1_000) for i in range(6)]
        times = iter([0.0, 0.3, 0.9, 1.0, 1.5, 2.2])
        sampler = MetricsSampler(
            fake_runtime,
            naming,
            StreamingConfig(metrics_interval=1.0, metrics_buffer_size=8),
            clock=lambda: next(times),
        )

        samples = await _collect(sampler.subscribe("01HXA"))

        assert len(samples) == 3
        assert samples[0].cpu_percent == 0.0
        # rates are computed against the immediately preceding raw sample
        assert samples[1].cpu_percent == pytest.approx(20.0)

    async def test_fan_out_to_all_subscribers(
        self, fake_runtime, naming, make_sample
    ) -> None:
        fake_runtime.samples = [make_sample(i * 100, i * 1_000) for i in range(3)]
        sampler = MetricsSampler(
            fake_runtime, naming, StreamingConfig(metrics_interval=0, metrics_buffer_size=8)
        )

        first = sampler.subscribe("01HXA")
        second = sampler.subscribe("01HXA")
        a, b = await asyncio.gather(_collect(first), _collect(second))

        assert len(a) == 3
        assert a == b

    async def test_slow_subscriber_keeps_newest(
        self, fake_runtime, naming, make_sample
    ) -> None:
        fake_runtime.samples = [make_sample(0, 0, used=i) for i in range(10)]
        sampler = MetricsSampler(
            fake_runtime, naming, StreamingConfig(metrics_interval=0, metrics_buffer_size=3)
        )
        subscription = sampler.subscribe("01HXA")
        await asyncio.sleep(0.01)

        samples = await _collect(subscription)

        # end-of-stream marker displaces one more
        assert [s.memory_used_bytes for s in samples] == [8, 9]

    async def test_detach_when_stream_ends(self, fake_runtime, naming, make_sample) -> None:
        fake_runtime.samples = [make_sample(0, 0)]
        sampler = MetricsSampler(fake_runtime, naming, StreamingConfig(metrics_interval=0))

        subscription = sampler.subscribe("01HXA")
        await _collect(subscription)

        assert subscription.detach_reason == "Stats stream ended"
        assert sampler.active_instances() == []

    async def test_detach_when_runtime_unavailable(self, fake_runtime, naming) -> None:
        async def failing_stats(name: str):
            raise RuntimeUnavailableError()
            yield

        fake_runtime.stats = failing_stats
        sampler = MetricsSampler(fake_runtime, naming, StreamingConfig())

        subscription = sampler.subscribe("01HXA")
        assert await _collect(subscription) == []
        assert subscription.detach_reason == RuntimeUnavailableError().message

    async def test_last_unsubscribe_stops_reader(self, fake_runtime, naming, make_sample) -> None:
        started = asyncio.Event()

        async def hanging_stats(name: str):
            started.set()
            await asyncio.Event().wait()
            yield make_sample(0, 0)

        fake_runtime.stats = hanging_stats
        sampler = MetricsSampler(fake_runtime, naming, StreamingConfig())
        first = sampler.subscribe("01HXA")
        second = sampler.subscribe("01HXA")
        await started.wait()

        await sampler.unsubscribe(first)
        assert sampler.active_instances() == ["01HXA"]

        await sampler.unsubscribe(second)
        assert sampler.active_instances() == []

    async def test_one_reader_per_instance(self, fake_runtime, naming) -> None:
        calls: list[str] = []

        async def hanging_stats(name: str):
            calls.append(name)
            await asyncio.Event().wait()
            yield

        fake_runtime.stats = hanging_stats
        sampler = MetricsSampler(fake_runtime, naming, StreamingConfig())
        sampler.subscribe("01HXA")
        sampler.subscribe("01HXA")
        sampler.subscribe("01HXB")
        await asyncio.sleep(0.01)

        assert sorted(calls) == ["mc-01hxa", "mc-01hxb"]
        await sampler.close()
        assert sampler.active_instances() == []
