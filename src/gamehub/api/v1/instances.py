"""Instance API endpoints."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from gamehub.api.dependencies import get_hub
from gamehub.hub import GameHub
from gamehub.lifecycle import CreateInstanceRequest, InstanceSnapshot, LifecycleManager
from gamehub.provisioning import ProvisioningResult

router = APIRouter(prefix="/instances", tags=["instances"])


# =============================================================================
# Schemas
# =============================================================================


class CreateInstanceResponse(BaseModel):
    """Create response. The only response that carries the secret."""

    instance: InstanceSnapshot
    provisioning: ProvisioningResult


class StopInstanceRequest(BaseModel):
    """Stop/restart request."""

    grace_seconds: int | None = Field(default=None, ge=0)


class LogsResponse(BaseModel):
    """Log buffer response."""

    instance_id: str
    lines: list[str]


def get_lifecycle(hub: GameHub = Depends(get_hub)) -> LifecycleManager:
    return hub.lifecycle


# =============================================================================
# Endpoints
# =============================================================================


@router.post("", status_code=201, response_model=CreateInstanceResponse)
async def create_instance(
    request: CreateInstanceRequest,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> CreateInstanceResponse:
    """Provision and launch a new instance."""
    result = await lifecycle.create(request)
    return CreateInstanceResponse(instance=result.instance, provisioning=result.provisioning)


@router.post("/{instance_id}/launch", response_model=InstanceSnapshot)
async def launch_instance(
    instance_id: str,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> InstanceSnapshot:
    """Start a stopped or failed instance."""
    return await lifecycle.launch(instance_id)


@router.post("/{instance_id}/stop", response_model=InstanceSnapshot)
async def stop_instance(
    instance_id: str,
    request: StopInstanceRequest | None = None,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> InstanceSnapshot:
    """Stop an instance gracefully."""
    grace = request.grace_seconds if request else None
    return await lifecycle.stop(instance_id, grace)


@router.post("/{instance_id}/restart", response_model=InstanceSnapshot)
async def restart_instance(
    instance_id: str,
    request: StopInstanceRequest | None = None,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> InstanceSnapshot:
    """Restart an instance, keeping its port and secret."""
    grace = request.grace_seconds if request else None
    return await lifecycle.restart(instance_id, grace)


@router.delete("/{instance_id}", response_model=InstanceSnapshot)
async def destroy_instance(
    instance_id: str,
    purge: bool = Query(default=False),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> InstanceSnapshot:
    """Destroy an instance. purge deletes its data immediately."""
    return await lifecycle.destroy(instance_id, purge=purge)


@router.get("/{instance_id}/status", response_model=InstanceSnapshot)
async def get_instance_status(
    instance_id: str,
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> InstanceSnapshot:
    """Get recorded and observed instance status."""
    return await lifecycle.get_status(instance_id)


@router.get("/{instance_id}/logs", response_model=LogsResponse)
async def get_instance_logs(
    instance_id: str,
    tail: int = Query(default=100, ge=0),
    lifecycle: LifecycleManager = Depends(get_lifecycle),
) -> LogsResponse:
    """Get the most recent log lines."""
    lines = await lifecycle.get_log_buffer(instance_id, tail_lines=tail)
    return LogsResponse(instance_id=instance_id, lines=lines)
