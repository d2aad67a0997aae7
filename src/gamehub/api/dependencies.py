"""API dependencies for dependency injection."""

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gamehub.hub import GameHub

# Singleton hub instance
_hub: GameHub | None = None


async def init_hub(session_factory: async_sessionmaker[AsyncSession]) -> GameHub:
    """Initialize hub singleton.

    Seeds the port arena and starts background work.
    Must be called during app startup, after the database is initialized.
    """
    global _hub
    _hub = GameHub(session_factory)
    await _hub.start()
    return _hub


async def close_hub() -> None:
    """Stop background work and release resources."""
    global _hub
    if _hub:
        await _hub.close()
        _hub = None


def get_hub() -> GameHub:
    """Get hub singleton.

    Raises:
        RuntimeError: If called before init_hub().
    """
    if _hub is None:
        raise RuntimeError("GameHub not initialized. Call init_hub() first.")
    return _hub


def reset_hub() -> None:
    """Reset hub singleton (for testing)."""
    global _hub
    _hub = None
