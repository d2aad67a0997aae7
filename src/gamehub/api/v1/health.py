"""Health check endpoint."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from gamehub import __version__
from gamehub.api.dependencies import get_hub
from gamehub.hub import GameHub

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    runtime: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(hub: GameHub = Depends(get_hub)) -> HealthResponse:
    """Health check endpoint. Reports degraded while the engine is unreachable."""
    runtime_ok = await hub.runtime.ping()
    return HealthResponse(
        status="healthy" if runtime_ok else "degraded",
        version=__version__,
        runtime=runtime_ok,
    )
