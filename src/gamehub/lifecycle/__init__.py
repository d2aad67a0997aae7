"""Instance lifecycle management."""

from gamehub.lifecycle.manager import (
    CreateInstanceRequest,
    CreateResult,
    LifecycleManager,
)
from gamehub.lifecycle.repository import InstanceRepository
from gamehub.lifecycle.snapshot import InstanceSnapshot, map_runtime_state
from gamehub.lifecycle.storage import StorageManager, run_storage_gc

__all__ = [
    "CreateInstanceRequest",
    "CreateResult",
    "InstanceRepository",
    "InstanceSnapshot",
    "LifecycleManager",
    "StorageManager",
    "map_runtime_state",
    "run_storage_gc",
]
