"""Prometheus metrics for GameHub."""

from gamehub.metrics.collector import *  # noqa: F401,F403
