"""Operation result types for runtime operations."""

from enum import Enum

from pydantic import BaseModel


class OperationStatus(str, Enum):
    """Operation status values."""

    COMPLETED = "completed"

    ALREADY_EXISTS = "already_exists"
    ALREADY_RUNNING = "already_running"
    ALREADY_STOPPED = "already_stopped"
    ALREADY_DELETED = "already_deleted"


class OperationResult(BaseModel):
    """Idempotent result of a runtime operation.

    "Already in target state" outcomes are successes, not errors.
    """

    status: OperationStatus
    message: str = ""

    @property
    def is_success(self) -> bool:
        return self.status in (
            OperationStatus.COMPLETED,
            OperationStatus.ALREADY_EXISTS,
            OperationStatus.ALREADY_RUNNING,
            OperationStatus.ALREADY_STOPPED,
            OperationStatus.ALREADY_DELETED,
        )

    @property
    def changed(self) -> bool:
        """True if the operation changed runtime state."""
        return self.status == OperationStatus.COMPLETED
