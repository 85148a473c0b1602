from __future__ import annotations

import hashlib
import json
import logging
from datetime import datetime

from eventrelay.constants import DEFAULT_DEDUP_QUANTUM, DEFAULT_DEDUP_WINDOW
from eventrelay.models import EventRecord
from eventrelay.utils import quantize_timestamp

logger = logging.getLogger(__name__)


class Deduplicator:
    """
    Rejects repeats of the same event inside a time window.

    Events are fingerprinted with their timestamp truncated to ``quantum``
    seconds, so double submissions a few milliseconds apart share a hash.
    Ages are measured against the incoming event's own timestamp, never the
    wall clock. Entries survive queue flushes and are evicted only once they
    fall out of the window.
    """

    def __init__(
        self,
        window: float = DEFAULT_DEDUP_WINDOW,
        quantum: int = DEFAULT_DEDUP_QUANTUM,
    ):
        if quantum <= 0:
            raise ValueError("quantum must be a positive number of seconds")

        self.window = window
        self.quantum = quantum
        self._entries: dict[str, datetime] = {}

    def fingerprint(self, event: EventRecord) -> str:
        """
        Content hash of ``event`` with a quantized timestamp.

        Also used as the event's ``message_id``.
        """
        payload = event.to_payload()
        payload["original_timestamp"] = quantize_timestamp(
            event.timestamp, self.quantum
        )
        canonical = json.dumps(
            payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False
        )

        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def check(self, event: EventRecord) -> bool:
        """
        Return True if ``event`` duplicates one seen inside the window.

        A new event is recorded as a side effect.
        """
        return self.is_duplicate(self.fingerprint(event), event.timestamp)

    def is_duplicate(self, fingerprint: str, timestamp: datetime) -> bool:
        self._evict(timestamp)

        seen_at = self._entries.get(fingerprint)
        if seen_at is not None:
            age = (timestamp - seen_at).total_seconds()
            if abs(age) <= self.window:
                # Out of order arrivals leave the original in the future
                logger.warning(
                    "Duplicate event %s rejected, original seen %.1f seconds %s",
                    fingerprint[:12],
                    abs(age),
                    "ago" if age >= 0 else "later",
                )
                return True

        self._entries[fingerprint] = timestamp
        return False

    def age_of(self, fingerprint: str, timestamp: datetime) -> float | None:
        seen_at = self._entries.get(fingerprint)
        if seen_at is None:
            return None
        return (timestamp - seen_at).total_seconds()

    def _evict(self, now: datetime) -> None:
        expired = [
            key
            for key, seen_at in self._entries.items()
            if (now - seen_at).total_seconds() > self.window
        ]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug("Evicted %d expired dedup entries", len(expired))

    def __len__(self) -> int:
        return len(self._entries)
