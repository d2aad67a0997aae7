"""TTL cache for stream authentication.

A page reconnecting its console and metrics sockets looks up the same
token repeatedly within a few seconds.
Configuration via CacheConfig (GAMEHUB_CACHE_ env prefix).
"""

from cachetools import TTLCache

from gamehub.config import get_config

_cache_config = get_config().cache

session_cache: TTLCache[str, str] = TTLCache(
    maxsize=_cache_config.maxsize, ttl=_cache_config.ttl
)


def clear_session_cache(token: str | None = None) -> None:
    if token is None:
        session_cache.clear()
    else:
        session_cache.pop(token, None)
