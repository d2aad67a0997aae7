"""Console and metrics WebSocket endpoints."""

from fastapi import APIRouter
from starlette.websockets import WebSocket

from gamehub.api.dependencies import get_hub

router = APIRouter(prefix="/ws/instances", tags=["streams"])


@router.websocket("/{instance_id}/console")
async def console_stream(websocket: WebSocket, instance_id: str) -> None:
    """Duplex server console."""
    await get_hub().gateway.attach_console(websocket, instance_id)


@router.websocket("/{instance_id}/metrics")
async def metrics_stream(websocket: WebSocket, instance_id: str) -> None:
    """Read-only resource usage feed."""
    await get_hub().gateway.attach_metrics(websocket, instance_id)
