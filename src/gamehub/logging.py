"""Logging setup.

Two output formats, selected by GAMEHUB_LOGGING_FORMAT:
- text: human-readable, for local runs
- json: one object per line for log aggregation

Every handler carries two filters. SecretRedactionFilter masks extra
fields that hold credentials (instance secrets, session tokens), and
RateLimitFilter collapses storms of identical records.
"""

import logging
import sys
from typing import Any

from cachetools import TTLCache
from pythonjsonlogger import json as jsonlogger

from gamehub.config import LoggingConfig

SENSITIVE_FIELDS = frozenset(
    {"secret", "rcon_password", "password", "token", "authorization", "api_key"}
)

# Extra fields that make two records with the same message distinct
IDENTITY_FIELDS = ("instance_id", "session_id", "port", "container")

_TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
_JSON_FIELDS = "%(levelname)s %(name)s %(message)s %(filename)s %(lineno)d %(process)d"


def mask_sensitive(value: Any, visible_prefix: int = 0) -> str:
    """Mask a value, keeping at most `visible_prefix` leading characters."""
    text = str(value)
    if visible_prefix <= 0 or len(text) <= visible_prefix:
        return "****"
    return f"{text[:visible_prefix]}****"


class SecretRedactionFilter(logging.Filter):
    """Mask credential-bearing extra fields on every record."""

    def __init__(self, fields: frozenset[str] = SENSITIVE_FIELDS, name: str = "") -> None:
        super().__init__(name)
        self._fields = fields

    def filter(self, record: logging.LogRecord) -> bool:
        attrs = record.__dict__
        for field in self._fields & attrs.keys():
            if attrs[field] is not None:
                attrs[field] = mask_sensitive(attrs[field])
        return True


class RateLimitFilter(logging.Filter):
    """Drop a record identical to one emitted less than `rate_limit_seconds` ago.

    Records are identical when logger, line, message and identity fields
    match. ERROR and above always pass.
    """

    def __init__(
        self,
        rate_limit_seconds: float = 5.0,
        max_cache_size: int = 1000,
        name: str = "",
    ) -> None:
        super().__init__(name)
        self._recent: TTLCache[tuple, bool] = TTLCache(
            maxsize=max_cache_size, ttl=rate_limit_seconds
        )

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True
        key = (
            record.name,
            record.lineno,
            record.getMessage(),
            *(getattr(record, field, None) for field in IDENTITY_FIELDS),
        )
        if key in self._recent:
            return False
        self._recent[key] = True
        return True


def build_formatter(config: LoggingConfig) -> logging.Formatter:
    if config.format != "json":
        return logging.Formatter(_TEXT_FORMAT)
    return jsonlogger.JsonFormatter(
        _JSON_FIELDS,
        rename_fields={"levelname": "level", "name": "logger", "process": "pid"},
        static_fields={"service": config.service_name},
        timestamp=True,
    )


def setup_logging(config: LoggingConfig) -> None:
    """Install the stdout handler on the root and uvicorn loggers."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(config))
    handler.addFilter(SecretRedactionFilter())
    handler.addFilter(RateLimitFilter(rate_limit_seconds=config.rate_limit_seconds))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(logging.getLevelNamesMapping().get(config.level.upper(), logging.INFO))

    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = False
        uvicorn_logger.addHandler(handler)

    # Query strings may carry stream tokens
    logging.getLogger("uvicorn.access").disabled = True

    for noisy in ("httpx", "httpcore", "websockets"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
