"""Per-instance lifecycle guard."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from gamehub.core.errors import LifecycleConflictError

_instance_locks: dict[str, asyncio.Lock] = {}
_running_operations: dict[str, str] = {}


def get_instance_lock(instance_id: str) -> asyncio.Lock:
    """Get or create a per-instance lock."""
    if instance_id not in _instance_locks:
        _instance_locks[instance_id] = asyncio.Lock()
    return _instance_locks[instance_id]


@asynccontextmanager
async def exclusive(instance_id: str, operation: str) -> AsyncIterator[None]:
    """Hold the instance lock for one lifecycle operation.

    A second operation on the same instance is rejected immediately
    instead of queueing behind the first.

    Raises:
        LifecycleConflictError: If another operation holds the lock.
    """
    lock = get_instance_lock(instance_id)
    if lock.locked():
        running = _running_operations.get(instance_id, "operation")
        raise LifecycleConflictError(
            f"Cannot {operation}: {running} already in progress for instance {instance_id}"
        )
    async with lock:
        _running_operations[instance_id] = operation
        try:
            yield
        finally:
            _running_operations.pop(instance_id, None)


def reset_instance_locks() -> None:
    """Drop all locks (for testing)."""
    _instance_locks.clear()
    _running_operations.clear()
