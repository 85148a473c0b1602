from __future__ import annotations

import logging
from typing import Any, Sequence

from eventrelay.constants import KEEPALIVE_PAYLOAD_LIMIT
from eventrelay.logs_helpers import log_call
from eventrelay.models import Chunk
from eventrelay.utils import byte_length, serialize

logger = logging.getLogger(__name__)

# "[" and "]"
ARRAY_OVERHEAD = 2


@log_call(show_args=False, show_result=True)
def partition(
    events: Sequence[dict[str, Any]], limit: int = KEEPALIVE_PAYLOAD_LIMIT
) -> list[Chunk]:
    """
    Split a batch into chunks whose JSON body fits in ``limit`` UTF-8 bytes.

    Chunks keep the batch order. An event that cannot fit on its own is sent
    alone with keepalive disabled; it may be lost if the host goes away
    while it is in flight.

    Args:
        events: Wire payloads of the batch, in send order.
        limit: Maximum body size in bytes for a keepalive request.

    Returns:
        The chunks to send, in order.
    """
    if not events:
        return []

    events = list(events)
    if byte_length(serialize(events)) <= limit:
        return [Chunk(events=events, keepalive=True)]

    chunks: list[Chunk] = []
    current: list[dict[str, Any]] = []
    current_size = ARRAY_OVERHEAD

    for event in events:
        event_size = byte_length(serialize(event))

        # One comma separates it from the previous event
        size_with_event = current_size + (1 if current else 0) + event_size

        if size_with_event <= limit:
            current.append(event)
            current_size = size_with_event
            continue

        if current:
            chunks.append(Chunk(events=current, keepalive=True))

        if event_size + ARRAY_OVERHEAD > limit:
            logger.warning(
                "Event %s is %d bytes, above the %d byte keepalive limit; "
                "sending it without keepalive",
                event.get("message_id", "<unknown>"),
                event_size,
                limit,
            )
            chunks.append(Chunk(events=[event], keepalive=False))
            current = []
            current_size = ARRAY_OVERHEAD
        else:
            current = [event]
            current_size = ARRAY_OVERHEAD + event_size

    if current:
        chunks.append(Chunk(events=current, keepalive=True))

    return chunks
