"""Tests for logging filters."""

import json
import logging

from gamehub.config import LoggingConfig
from gamehub.logging import (
    RateLimitFilter,
    SecretRedactionFilter,
    build_formatter,
    mask_sensitive,
)


def _record(msg: str = "message", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord("gamehub.test", level, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestMaskSensitive:
    def test_fully_masked_by_default(self) -> None:
        assert mask_sensitive("hunter2hunter2") == "****"

    def test_visible_prefix(self) -> None:
        assert mask_sensitive("abcdef123456", visible_prefix=3) == "abc****"

    def test_short_value_fully_masked(self) -> None:
        assert mask_sensitive("ab", visible_prefix=3) == "****"


class TestSecretRedactionFilter:
    def test_masks_secret_fields(self) -> None:
        record = _record(secret="Zr8kQ2mLx9Pa", token="01HXYZ", instance_id="01ABC")

        assert SecretRedactionFilter().filter(record) is True
        assert record.secret == "****"
        assert record.token == "****"
        assert record.instance_id == "01ABC"

    def test_none_left_alone(self) -> None:
        record = _record(secret=None)
        SecretRedactionFilter().filter(record)
        assert record.secret is None


class TestRateLimitFilter:
    def test_duplicate_suppressed(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("port released")) is True
        assert f.filter(_record("port released")) is False

    def test_distinct_messages_pass(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("a")) is True
        assert f.filter(_record("b")) is True

    def test_errors_always_pass(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("boom", logging.ERROR)) is True
        assert f.filter(_record("boom", logging.ERROR)) is True

    def test_identity_fields_distinguish_records(self) -> None:
        f = RateLimitFilter(rate_limit_seconds=60)
        assert f.filter(_record("Port released", port=30000)) is True
        assert f.filter(_record("Port released", port=30001)) is True
        assert f.filter(_record("Port released", port=30000)) is False


class TestBuildFormatter:
    def test_json_output(self) -> None:
        formatter = build_formatter(LoggingConfig(format="json", service_name="gamehub-test"))
        record = _record("Instance running", instance_id="01HX")

        data = json.loads(formatter.format(record))

        assert data["message"] == "Instance running"
        assert data["level"] == "INFO"
        assert data["logger"] == "gamehub.test"
        assert data["service"] == "gamehub-test"
        assert data["instance_id"] == "01HX"
        assert "timestamp" in data

    def test_text_output(self) -> None:
        formatter = build_formatter(LoggingConfig(format="text"))
        assert "Instance running" in formatter.format(_record("Instance running"))
