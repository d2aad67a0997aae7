"""Stream authentication with TTL caching.

Token -> user lookups are cached; ownership and instance status are
checked on every connection because they change.
"""

from datetime import UTC, datetime

from cachetools_async import cached
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocket

from gamehub.core.domain import InstanceStatus
from gamehub.core.errors import (
    AuthorizationError,
    InstanceNotFoundError,
    InvalidStateError,
    UnauthorizedError,
)
from gamehub.core.models import Instance, Session, as_utc
from gamehub.infra.cache import session_cache


def extract_token(websocket: WebSocket) -> str | None:
    """Bearer token from the Authorization header or the `token` query param.

    Browsers cannot set headers on WebSocket upgrades, hence the fallback.
    """
    header = websocket.headers.get("authorization", "")
    scheme, _, value = header.partition(" ")
    if scheme.lower() == "bearer" and value.strip():
        return value.strip()
    return websocket.query_params.get("token") or None


def is_session_valid(session: Session) -> bool:
    """Check if a session is neither revoked nor expired."""
    if session.revoked_at is not None:
        return False
    expires_at = as_utc(session.expires_at)
    return expires_at is not None and expires_at > datetime.now(UTC)


async def get_valid_session(db: AsyncSession, token: str) -> Session | None:
    result = await db.execute(
        select(Session).where(Session.id == token)  # type: ignore[arg-type]
    )
    session = result.scalar_one_or_none()
    if session is None or not is_session_valid(session):
        return None
    return session


def _token_key(_db: AsyncSession, token: str | None) -> str | None:
    return token


@cached(cache=session_cache, key=_token_key)
async def get_user_id_from_token(db: AsyncSession, token: str | None) -> str:
    """Resolve a bearer token to its user id. Raises UnauthorizedError if invalid."""
    if not token:
        raise UnauthorizedError()

    session = await get_valid_session(db, token)
    if session is None:
        raise UnauthorizedError("Invalid or expired session")
    return session.user_id


async def authorize_stream(
    db: AsyncSession, token: str | None, instance_id: str
) -> tuple[str, Instance]:
    """Authenticate the token and check the principal may attach.

    Returns:
        (principal user id, instance)

    Raises:
        UnauthorizedError: Missing or invalid token.
        InstanceNotFoundError: Unknown or destroyed instance.
        AuthorizationError: Instance owned by someone else.
        InvalidStateError: Instance not running.
    """
    user_id = await get_user_id_from_token(db, token)

    instance = await db.get(Instance, instance_id)
    if instance is None or instance.status == InstanceStatus.DESTROYED:
        raise InstanceNotFoundError()
    if instance.owner_user_id != user_id:
        raise AuthorizationError("You don't have access to this instance")
    if instance.status != InstanceStatus.RUNNING:
        raise InvalidStateError("Instance is not running")
    return user_id, instance
