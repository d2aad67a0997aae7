"""Persistent models (Instance, PortReservation, Session).

Models are defined using SQLModel (SQLAlchemy + Pydantic).
"""

from datetime import UTC, datetime

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel
from ulid import ULID

from gamehub.core.domain import InstanceStatus, PortState


def generate_ulid() -> str:
    """Generate a new ULID string."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a stored datetime to aware UTC.

    Some drivers (sqlite) return naive datetimes for timezone columns.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class Instance(SQLModel, table=True):
    """Game server instance."""

    __tablename__ = "instances"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    owner_user_id: str = Field(index=True)
    name: str = Field(max_length=255)

    # Game template
    image_ref: str = Field(max_length=512)
    game_version: str = Field(max_length=64)

    # Quotas
    memory_limit_mb: int
    disk_quota_mb: int | None = None

    # Network identity (set during provisioning)
    port: int | None = Field(default=None, index=True)
    address: str | None = Field(default=None, max_length=64)
    address_label: str | None = Field(default=None, max_length=64)
    region: str | None = Field(default=None, max_length=64)

    # RCON password, never logged or returned in status snapshots
    secret: str | None = Field(default=None, max_length=128)

    status: InstanceStatus = Field(default=InstanceStatus.REQUESTED, sa_type=String)
    error_reason: str | None = None  # ErrorReason enum value
    error_message: str | None = Field(default=None, max_length=1024)

    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True), nullable=False)
    )
    status_changed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    destroyed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    storage_purged_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )


class PortReservation(SQLModel, table=True):
    """One row per port of the managed host range."""

    __tablename__ = "port_reservations"

    port: int = Field(primary_key=True)
    state: PortState = Field(default=PortState.FREE, sa_type=String, index=True)
    instance_id: str | None = Field(default=None, index=True)
    reserved_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    released_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
    quarantined_until: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )


class Session(SQLModel, table=True):
    """Login session issued by the external auth service (read-only here)."""

    __tablename__ = "sessions"

    id: str = Field(default_factory=generate_ulid, primary_key=True)
    user_id: str = Field(index=True)
    created_at: datetime = Field(
        default_factory=utc_now, sa_column=Column(DateTime(timezone=True))
    )
    expires_at: datetime = Field(sa_column=Column(DateTime(timezone=True)))
    revoked_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True))
    )
