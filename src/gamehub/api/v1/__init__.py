"""API v1 module."""

from gamehub.api.v1.health import router as health_router
from gamehub.api.v1.instances import router as instances_router
from gamehub.api.v1.streams import router as streams_router

__all__ = [
    "health_router",
    "instances_router",
    "streams_router",
]
