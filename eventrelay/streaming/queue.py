from __future__ import annotations

import asyncio
import logging
from collections import deque
from datetime import datetime
from typing import Any, Callable, Optional

from eventrelay.errors import DeliveryError, TerminalDeliveryError
from eventrelay.models import (
    DeliveryResult,
    EventRecord,
    FlushCallback,
    FlushResult,
    QueueCallback,
    QueueItem,
)
from eventrelay.utils import (
    byte_length,
    format_timestamp,
    get_action_descriptor,
    serialize,
    utc_now,
)

from .callbacks import (
    NullQueueCallbacks,
    QueueCallbacks,
    QueuePressure,
    calculate_queue_pressure,
)
from .config import QueueConfig
from .dedup import Deduplicator
from .http import EventSender, HttpxTransport, Transport
from .lifecycle import LifecycleSource, LifecycleTrigger
from .splitter import partition

logger = logging.getLogger(__name__)


class EventQueue:
    """
    Batches events in memory and delivers them to the collection endpoint.

    Flush triggers: flush_at items, max_queue_size bytes, idle timer,
    host leaving (lifecycle signal).

    All methods must be called from inside the running event loop.
    ``enqueue`` never waits on the network; ``flush`` returns an awaitable
    that settles once the batch has been attempted. Flushes run one at a
    time, in the order they were requested. Delivery failures are reported
    to callbacks and never raised.
    """

    def __init__(
        self,
        config: QueueConfig,
        transport: Optional[Transport] = None,
        lifecycle: Optional[LifecycleSource] = None,
        error_handler: Optional[Callable[[DeliveryError], Any]] = None,
        callbacks: Optional[QueueCallbacks] = None,
        deduplicator: Optional[Deduplicator] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Any]] = None,
    ):
        self.config = config
        self.error_handler = error_handler
        self.callbacks = callbacks or NullQueueCallbacks()
        self.deduplicator = deduplicator or Deduplicator(window=config.dedup_window)
        self._clock = clock or utc_now

        self._owned_transport: Optional[HttpxTransport] = None
        if transport is None:
            transport = self._owned_transport = HttpxTransport(
                timeout=config.request_timeout,
                keepalive_timeout=config.keepalive_timeout,
            )

        self.sender = EventSender(
            config.api_host,
            config.write_key,
            transport,
            retry_count=config.retry_count,
            sleep=sleep,
        )

        self._queue: deque[QueueItem] = deque()
        self._queue_bytes = 0
        self._timer: Optional[asyncio.TimerHandle] = None
        self._pending_flush: Optional[asyncio.Task] = None
        self._tasks: set[asyncio.Task] = set()
        self._last_pressure = QueuePressure.LOW

        self._stats = {
            "enqueued": 0,
            "duplicates": 0,
            "flushes": 0,
            "events_sent": 0,
            "events_failed": 0,
        }

        self._trigger: Optional[LifecycleTrigger] = None
        if lifecycle is not None:
            self._trigger = LifecycleTrigger(lifecycle, self._on_leave)

    def enqueue(
        self, event: EventRecord, callback: Optional[QueueCallback] = None
    ) -> bool:
        """
        Queue an event for delivery.

        Returns:
            False if the event was rejected as a duplicate, True otherwise.

        Raises:
            RuntimeError: Called outside a running event loop. Nothing is
                recorded, so the same event can be enqueued again later.
        """
        loop = asyncio.get_running_loop()
        message_id = self.deduplicator.fingerprint(event)
        timestamp = event.timestamp

        if self.deduplicator.is_duplicate(message_id, timestamp):
            self._stats["duplicates"] += 1
            age = self.deduplicator.age_of(message_id, timestamp) or 0.0
            self._notify("duplicate_rejected", message_id, age)
            return False

        message = event.to_payload()
        message["message_id"] = message_id
        size = byte_length(serialize(message))

        self._queue.append(QueueItem(message=message, size=size, callback=callback))
        self._queue_bytes += size
        self._stats["enqueued"] += 1

        logger.info(
            "Event enqueued: %s", get_action_descriptor(event.type, event.properties)
        )
        self._notify("event_queued", len(self._queue))
        self._update_pressure()

        if (
            len(self._queue) >= self.config.flush_at
            or self._queue_bytes >= self.config.max_queue_size
        ):
            self._start_flush()
            return True

        if self._timer is None:
            self._timer = loop.call_later(self.config.flush_interval, self._on_timer)

        return True

    def flush(self, callback: Optional[FlushCallback] = None) -> asyncio.Future:
        """
        Deliver up to flush_at queued events.

        If another flush is still in flight this one waits for it before
        taking its batch. The returned future resolves to a FlushResult;
        cancelling it does not abort the delivery.
        """
        return asyncio.shield(self._start_flush(callback))

    async def drain(self) -> list[FlushResult]:
        """
        Flush until the queue is empty and nothing is in flight.
        """
        results = []

        while self._queue:
            results.append(await self.flush())

        if self._pending_flush is not None:
            await asyncio.wait([self._pending_flush])

        return results

    def cleanup(self) -> None:
        """
        Cancel the idle timer and detach lifecycle listeners. Does not flush.
        """
        self._cancel_timer()

        if self._trigger is not None:
            self._trigger.detach()

    async def aclose(self) -> None:
        self.cleanup()

        if self._owned_transport is not None:
            await self._owned_transport.aclose()

    async def __aenter__(self) -> EventQueue:
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    @property
    def size(self) -> int:
        return len(self._queue)

    @property
    def byte_size(self) -> int:
        return self._queue_bytes

    @property
    def pending(self) -> bool:
        return self._pending_flush is not None and not self._pending_flush.done()

    @property
    def timer_armed(self) -> bool:
        return self._timer is not None

    @property
    def stats(self) -> dict:
        return {
            **self._stats,
            "queue_size": self.size,
            "queue_bytes": self.byte_size,
            "dedup_entries": len(self.deduplicator),
        }

    def _start_flush(self, callback: Optional[FlushCallback] = None) -> asyncio.Task:
        self._cancel_timer()
        loop = asyncio.get_running_loop()

        if not self._queue:
            task = loop.create_task(self._resolve_empty(callback))
            self._track(task)
            return task

        previous = self._pending_flush
        if previous is not None and not previous.done():
            task = loop.create_task(self._flush_after(previous, callback))
        else:
            # Nothing in flight: take the batch now, within this turn
            task = loop.create_task(self._deliver(self._take_batch(), callback))

        self._pending_flush = task
        self._track(task)
        return task

    async def _resolve_empty(self, callback: Optional[FlushCallback]) -> FlushResult:
        result = FlushResult()
        self._safe_call(callback, result)
        return result

    async def _flush_after(
        self, previous: asyncio.Task, callback: Optional[FlushCallback]
    ) -> FlushResult:
        await asyncio.wait([previous])

        items = self._take_batch()
        if not items:
            return await self._resolve_empty(callback)

        return await self._deliver(items, callback)

    def _take_batch(self) -> list[QueueItem]:
        count = min(self.config.flush_at, len(self._queue))
        items = [self._queue.popleft() for _ in range(count)]
        self._queue_bytes -= sum(item.size for item in items)
        self._update_pressure()
        return items

    async def _deliver(
        self, items: list[QueueItem], callback: Optional[FlushCallback]
    ) -> FlushResult:
        self._stats["flushes"] += 1

        # One send instant for the whole batch
        sent_at = format_timestamp(self._clock())
        batch = [{**item.message, "sent_at": sent_at} for item in items]

        try:
            chunks = partition(batch)
            logger.info("Flushing %d events in %d request(s)", len(batch), len(chunks))
            outcomes = await self.sender.send_chunks(chunks)
        except Exception as e:
            logger.exception("Unexpected error while flushing events")
            error = TerminalDeliveryError(f"Unexpected error while flushing: {e!r}")
            self._report(items, batch, [(len(batch), error)])
            return self._finish(batch, error, 0, callback)

        first_error = self._report(
            items, batch, [(len(chunk), error) for chunk, error in zip(chunks, outcomes)]
        )
        return self._finish(batch, first_error, len(chunks), callback)

    def _report(
        self,
        items: list[QueueItem],
        batch: list[dict],
        outcomes: list[tuple[int, Optional[DeliveryError]]],
    ) -> Optional[DeliveryError]:
        """
        Resolve item callbacks chunk by chunk. Chunks are contiguous slices of
        the batch, so items are walked in lockstep.
        """
        first_error: Optional[DeliveryError] = None
        offset = 0

        for count, error in outcomes:
            for item, payload in zip(
                items[offset:offset + count], batch[offset:offset + count]
            ):
                self._safe_call(
                    item.callback,
                    DeliveryResult(message=payload, batch=batch, error=error),
                )
            offset += count

            if error is None:
                self._stats["events_sent"] += count
                self._notify("batch_sent", count)
            else:
                first_error = first_error or error
                self._stats["events_failed"] += count
                self._notify("error", f"Failed to deliver {count} events", error)

        return first_error

    def _finish(
        self,
        batch: list[dict],
        error: Optional[DeliveryError],
        chunks: int,
        callback: Optional[FlushCallback],
    ) -> FlushResult:
        result = FlushResult(batch=batch, error=error, chunks=chunks)
        self._safe_call(callback, result)

        if error is not None and self.error_handler is not None:
            self._safe_call(self.error_handler, error)

        return result

    def _on_timer(self) -> None:
        self._timer = None
        logger.debug("Idle timer fired with %d queued events", len(self._queue))
        self._start_flush()

    def _on_leave(self, accessible: bool) -> None:
        # Last guaranteed chance to send before the host goes away
        if not accessible:
            self._start_flush()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _update_pressure(self) -> None:
        current = calculate_queue_pressure(self._queue_bytes, self.config.max_queue_size)
        if current != self._last_pressure:
            self._last_pressure = current
            self._notify(
                "queue_pressure", current, self._queue_bytes, self.config.max_queue_size
            )

    def _notify(self, name: str, *args) -> None:
        # Never let observer errors crash the queue
        try:
            getattr(self.callbacks, name)(*args)
        except Exception:
            logger.exception("Queue callback %s failed", name)

    @staticmethod
    def _safe_call(func: Optional[Callable[..., Any]], *args) -> None:
        if func is None:
            return

        try:
            func(*args)
        except Exception:
            logger.exception("Callback %r raised; ignoring", func)
