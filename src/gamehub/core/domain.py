"""Instance and port domain enums."""

from enum import StrEnum


class InstanceStatus(StrEnum):
    """Instance status. Written only by the lifecycle manager."""

    REQUESTED = "REQUESTED"
    PROVISIONING = "PROVISIONING"
    RUNNING = "RUNNING"
    STOPPING = "STOPPING"
    STOPPED = "STOPPED"
    FAILED = "FAILED"
    DESTROYED = "DESTROYED"


ALLOWED_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.REQUESTED: frozenset(
        {InstanceStatus.PROVISIONING, InstanceStatus.FAILED}
    ),
    InstanceStatus.PROVISIONING: frozenset(
        {InstanceStatus.RUNNING, InstanceStatus.FAILED}
    ),
    InstanceStatus.RUNNING: frozenset({InstanceStatus.STOPPING, InstanceStatus.FAILED}),
    InstanceStatus.STOPPING: frozenset({InstanceStatus.STOPPED, InstanceStatus.FAILED}),
    InstanceStatus.STOPPED: frozenset(
        {InstanceStatus.PROVISIONING, InstanceStatus.DESTROYED}
    ),
    InstanceStatus.FAILED: frozenset(
        {
            InstanceStatus.PROVISIONING,
            InstanceStatus.STOPPING,
            InstanceStatus.DESTROYED,
        }
    ),
    InstanceStatus.DESTROYED: frozenset(),
}

# Statuses during which the instance holds its port reservation
PORT_HOLDING_STATUSES = frozenset(
    {
        InstanceStatus.PROVISIONING,
        InstanceStatus.RUNNING,
        InstanceStatus.STOPPING,
        InstanceStatus.STOPPED,
    }
)

# Transient statuses; an instance found in one at startup was cut off mid-operation
INTERRUPTED_STATUSES = frozenset(
    {
        InstanceStatus.REQUESTED,
        InstanceStatus.PROVISIONING,
        InstanceStatus.STOPPING,
    }
)


def can_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    """Check whether current -> target is an allowed status change."""
    return target in ALLOWED_TRANSITIONS[current]


class PortState(StrEnum):
    """Port arena slot state."""

    FREE = "FREE"
    RESERVED = "RESERVED"
    BOUND = "BOUND"


class SessionKind(StrEnum):
    """Streaming session kind."""

    CONSOLE = "console"
    METRICS = "metrics"


class ErrorReason(StrEnum):
    """error_reason column values."""

    PORTS_EXHAUSTED = "PortsExhausted"
    RUNTIME_UNAVAILABLE = "RuntimeUnavailable"
    START_TIMEOUT = "StartTimeout"
    EXITED_ON_START = "ExitedOnStart"
    ACTION_FAILED = "ActionFailed"
