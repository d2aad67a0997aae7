"""Instance status snapshots."""

from datetime import datetime

from pydantic import BaseModel

from gamehub.core.domain import InstanceStatus
from gamehub.core.interfaces.runtime import ContainerState
from gamehub.core.models import Instance


def map_runtime_state(state: ContainerState) -> InstanceStatus | None:
    """Map the engine's container state onto the instance status enum.

    Returns None when there is no container to observe.
    """
    if not state.exists:
        return None
    if state.running:
        if state.health == "unhealthy":
            return InstanceStatus.FAILED
        return InstanceStatus.RUNNING
    match state.status:
        case "created" | "restarting":
            return InstanceStatus.PROVISIONING
        case "removing":
            return InstanceStatus.STOPPING
        case "paused" | "exited":
            return InstanceStatus.STOPPED
        case _:
            return InstanceStatus.FAILED


class InstanceSnapshot(BaseModel):
    """Read-only view of an instance. Never carries the secret."""

    id: str
    owner_user_id: str
    name: str
    status: InstanceStatus
    observed_status: InstanceStatus | None = None
    container_state: str | None = None
    health: str | None = None
    restart_count: int = 0
    started_at: str | None = None
    exit_code: int | None = None
    port: int | None = None
    address: str | None = None
    address_label: str | None = None
    region: str | None = None
    image_ref: str
    game_version: str
    memory_limit_mb: int
    error_reason: str | None = None
    error_message: str | None = None
    created_at: datetime
    status_changed_at: datetime | None = None

    @classmethod
    def build(
        cls, instance: Instance, state: ContainerState | None = None
    ) -> "InstanceSnapshot":
        snapshot = cls(
            id=instance.id,
            owner_user_id=instance.owner_user_id,
            name=instance.name,
            status=InstanceStatus(instance.status),
            port=instance.port,
            address=instance.address,
            address_label=instance.address_label,
            region=instance.region,
            image_ref=instance.image_ref,
            game_version=instance.game_version,
            memory_limit_mb=instance.memory_limit_mb,
            error_reason=instance.error_reason,
            error_message=instance.error_message,
            created_at=instance.created_at,
            status_changed_at=instance.status_changed_at,
        )
        if state is None:
            return snapshot
        return snapshot.model_copy(
            update={
                "observed_status": map_runtime_state(state),
                "container_state": state.status,
                "health": state.health,
                "restart_count": state.restart_count,
                "started_at": state.started_at,
                "exit_code": state.exit_code,
            }
        )
