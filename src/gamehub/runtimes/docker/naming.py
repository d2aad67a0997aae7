"""Resource naming utilities for Docker runtime."""

from pathlib import Path

from gamehub.config import RuntimeConfig

MANAGED_LABEL = "gamehub.managed"
INSTANCE_LABEL = "gamehub.instance_id"
OWNER_LABEL = "gamehub.owner"


class ResourceNaming:
    """Centralized naming conventions for Docker resources."""

    def __init__(self, config: RuntimeConfig) -> None:
        self._prefix = config.resource_prefix
        self._data_root = Path(config.data_root)

    @property
    def prefix(self) -> str:
        return self._prefix

    def container_name(self, instance_id: str) -> str:
        return f"{self._prefix}{instance_id.lower()}"

    def data_dir(self, instance_id: str) -> Path:
        return self._data_root / instance_id

    def labels(self, instance_id: str, owner_user_id: str) -> dict[str, str]:
        return {
            MANAGED_LABEL: "true",
            INSTANCE_LABEL: instance_id,
            OWNER_LABEL: owner_user_id,
        }
