"""Log event types for structured logging."""

from enum import StrEnum


class LogEvent(StrEnum):
    """Log event types for GameHub.

    Used with logger.info/warning/error extra dict:
        logger.info("message", extra={"event": LogEvent.INSTANCE_RUNNING, ...})
    """

    # Application lifecycle
    APP_STARTED = "app_started"
    APP_STOPPED = "app_stopped"
    DB_CONNECTED = "db_connected"
    DB_ERROR = "db_error"

    # Provisioning
    PORT_RESERVED = "port_reserved"
    PORT_BIND_FAILED = "port_bind_failed"
    PORT_RELEASED = "port_released"
    PORTS_EXHAUSTED = "ports_exhausted"
    PORTS_RECLAIMED = "ports_reclaimed"
    PROVISIONED = "provisioned"
    PROVISION_FAILED = "provision_failed"

    # Instance lifecycle
    STATE_CHANGED = "state_changed"
    INSTANCE_CREATED = "instance_created"
    INSTANCE_RUNNING = "instance_running"
    INSTANCE_STOPPED = "instance_stopped"
    INSTANCE_DESTROYED = "instance_destroyed"
    INSTANCE_FAILED = "instance_failed"
    LIFECYCLE_CONFLICT = "lifecycle_conflict"

    # Container events
    CONTAINER_CREATED = "container_created"
    CONTAINER_STARTED = "container_started"
    CONTAINER_STOPPED = "container_stopped"
    CONTAINER_KILLED = "container_killed"
    CONTAINER_REMOVED = "container_removed"
    RUNTIME_UNAVAILABLE = "runtime_unavailable"

    # Storage
    STORAGE_PURGED = "storage_purged"
    GC_COMPLETED = "gc_completed"
    GC_FAILED = "gc_failed"

    # Streaming
    SESSION_REJECTED = "session_rejected"
    SESSION_OPENED = "session_opened"
    SESSION_CLOSED = "session_closed"
    STREAM_DETACHED = "stream_detached"
    STREAM_OVERFLOW = "stream_overflow"
    SAMPLER_STARTED = "sampler_started"
    SAMPLER_STOPPED = "sampler_stopped"

    # Error events
    UNHANDLED_EXCEPTION = "unhandled_exception"
    GAMEHUB_ERROR = "gamehub_error"
