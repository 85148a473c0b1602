from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Mapping, Optional


def serialize(value: Any) -> str:
    """
    Compact JSON, exactly as it goes on the wire.
    """
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def byte_length(text: str) -> int:
    """
    Size of ``text`` once UTF-8 encoded.

    Non-ASCII content (emoji, CJK) takes 2-4 bytes per character, so
    ``len(text)`` under-reports what the transport sees.
    """
    return len(text.encode("utf-8"))


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp. Naive values are taken as UTC.
    """
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)

    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """
    ISO-8601 UTC with millisecond precision and a ``Z`` suffix.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)

    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def quantize_timestamp(value: datetime, quantum: int = 60) -> str:
    """
    Truncate ``value`` to a multiple of ``quantum`` seconds since the epoch.

    Used for hashing only; a one minute quantum gives ``YYYY-MM-DD HH:MM``.
    """
    epoch = int(value.timestamp())
    floored = datetime.fromtimestamp(epoch - epoch % quantum, tz=timezone.utc)

    if quantum % 60 == 0:
        return floored.strftime("%Y-%m-%d %H:%M")

    return floored.strftime("%Y-%m-%d %H:%M:%S")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_action_descriptor(
    event_type: str, properties: Optional[Mapping[str, Any]]
) -> str:
    """
    Short human readable label for an event, used in log lines.
    """
    descriptor = event_type

    if properties and properties.get("status"):
        descriptor += f" {properties['status']}"

    if event_type in ("connect", "disconnect") and properties and properties.get("rdns"):
        descriptor += f" ({properties['rdns']})"

    return descriptor
