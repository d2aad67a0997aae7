"""Resource usage telemetry."""

from gamehub.telemetry.sampler import (
    MetricsSampler,
    NormalizedSample,
    Subscription,
    normalize,
)
from gamehub.telemetry.throttle import FixedWindowThrottle

__all__ = [
    "FixedWindowThrottle",
    "MetricsSampler",
    "NormalizedSample",
    "Subscription",
    "normalize",
]
