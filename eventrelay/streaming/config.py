from __future__ import annotations

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

from eventrelay.constants import (
    DEFAULT_API_HOST,
    DEFAULT_DEDUP_WINDOW,
    DEFAULT_FLUSH_AT,
    DEFAULT_FLUSH_INTERVAL,
    DEFAULT_QUEUE_SIZE,
    DEFAULT_RETRY,
    KEEPALIVE_REQUEST_TIMEOUT,
    MAX_FLUSH_AT,
    MAX_FLUSH_INTERVAL,
    MAX_QUEUE_SIZE,
    MAX_RETRY,
    MIN_FLUSH_AT,
    MIN_FLUSH_INTERVAL,
    MIN_QUEUE_SIZE,
    MIN_RETRY,
    REQUEST_TIMEOUT,
    get_config_setting,
)
from eventrelay.errors import InvalidConfigError
from eventrelay.logs_helpers import log_call


def clamp(value, maximum, minimum):
    return min(max(value, minimum), maximum)


@dataclass
class QueueConfig:
    """
    Per instance settings for an EventQueue.

    ``None`` selects the default. Numeric settings are clamped to their
    allowed range.
    """

    write_key: str
    api_host: str | None = None
    flush_at: int | None = None
    flush_interval: float | None = None  # seconds
    max_queue_size: int | None = None  # bytes
    retry_count: int | None = None
    dedup_window: float | None = None  # seconds
    request_timeout: float | None = None
    keepalive_timeout: float | None = None

    def __post_init__(self):
        self.api_host = self.api_host or DEFAULT_API_HOST
        self.flush_at = clamp(
            _or_default(self.flush_at, DEFAULT_FLUSH_AT), MAX_FLUSH_AT, MIN_FLUSH_AT
        )
        self.flush_interval = clamp(
            _or_default(self.flush_interval, DEFAULT_FLUSH_INTERVAL),
            MAX_FLUSH_INTERVAL,
            MIN_FLUSH_INTERVAL,
        )
        self.max_queue_size = clamp(
            _or_default(self.max_queue_size, DEFAULT_QUEUE_SIZE),
            MAX_QUEUE_SIZE,
            MIN_QUEUE_SIZE,
        )
        self.retry_count = clamp(
            _or_default(self.retry_count, DEFAULT_RETRY), MAX_RETRY, MIN_RETRY
        )
        self.dedup_window = max(
            _or_default(self.dedup_window, DEFAULT_DEDUP_WINDOW), 0.0
        )
        self.request_timeout = _or_default(self.request_timeout, REQUEST_TIMEOUT)
        self.keepalive_timeout = _or_default(
            self.keepalive_timeout, KEEPALIVE_REQUEST_TIMEOUT
        )

    @classmethod
    @log_call(show_args=False, show_result=True)
    def from_settings(cls, path: Path | None = None, **overrides: Any) -> QueueConfig:
        """
        Build a config from EVENTRELAY_* environment variables and the
        ``[queue]`` section of the user config file.

        Keyword overrides that are not None win over both sources.

        Raises:
            InvalidConfigError: A numeric setting could not be parsed.
        """
        values: dict[str, Any] = {}

        for f in fields(cls):
            override = overrides.get(f.name)
            if override is not None:
                values[f.name] = override
                continue

            raw = get_config_setting(f.name, path=path)
            if raw is None:
                continue

            values[f.name] = _coerce(f.name, raw)

        if not values.get("write_key"):
            raise InvalidConfigError("write_key", values.get("write_key", ""))

        return cls(**values)


_INT_SETTINGS = {"flush_at", "max_queue_size", "retry_count"}
_FLOAT_SETTINGS = {
    "flush_interval",
    "dedup_window",
    "request_timeout",
    "keepalive_timeout",
}


def _or_default(value, default):
    return default if value is None else value


def _coerce(name: str, raw: str) -> Any:
    try:
        if name in _INT_SETTINGS:
            return int(raw)
        if name in _FLOAT_SETTINGS:
            return float(raw)
    except ValueError as e:
        raise InvalidConfigError(name, raw) from e

    return raw
