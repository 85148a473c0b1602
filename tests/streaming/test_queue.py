from __future__ import annotations

import asyncio
from unittest.mock import Mock

import pytest

from eventrelay.errors import ClientDeliveryError, DeliveryError
from eventrelay.models import DeliveryResult, FlushResult
from eventrelay.streaming import (
    Deduplicator,
    EventQueue,
    LifecycleNotifier,
    QueueConfig,
    QueuePressure,
)
from tests.helpers import FakeTransport, make_event, make_recording_sleep

SENT_AT = "2024-05-01T12:30:00.123Z"


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def delays() -> list:
    return []


@pytest.fixture
def make_queue(transport, delays, clock):
    """
    Build an EventQueue wired to the fake transport and a fixed clock.
    """

    def factory(**kwargs) -> EventQueue:
        options = {
            "transport": transport,
            "clock": clock,
            "sleep": make_recording_sleep(delays),
        }
        for name in ("lifecycle", "error_handler", "callbacks", "deduplicator"):
            if name in kwargs:
                options[name] = kwargs.pop(name)

        return EventQueue(QueueConfig(write_key="wk_test", **kwargs), **options)

    return factory


def numbered(count: int, start: int = 0) -> list:
    return [make_event(event=f"event_{i}") for i in range(start, start + count)]


@pytest.mark.unit
class TestEnqueue:
    """
    Test buffering, flush triggers and the idle timer.
    """

    @pytest.mark.asyncio
    async def test_flush_at_triggers_flush(self, make_queue, transport) -> None:
        queue = make_queue()

        for event in numbered(25):
            assert queue.enqueue(event) is True

        # The first 20 left the queue synchronously
        assert queue.size == 5
        assert queue.pending is True
        assert queue.timer_armed is True

        await queue._pending_flush

        assert len(transport.requests) == 1
        assert [e["event"] for e in transport.bodies[0]] == [
            f"event_{i}" for i in range(20)
        ]
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_byte_size_triggers_flush(self, make_queue, transport) -> None:
        queue = make_queue(max_queue_size=200)

        queue.enqueue(make_event())

        assert queue.size == 0
        assert queue.byte_size == 0
        await queue._pending_flush
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_below_thresholds_arms_timer(self, make_queue, transport) -> None:
        queue = make_queue(flush_interval=30)
        loop = asyncio.get_running_loop()

        queue.enqueue(make_event())

        assert queue.timer_armed is True
        assert 29 < queue._timer.when() - loop.time() <= 30
        assert transport.requests == []
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_timer_is_not_rearmed_per_event(self, make_queue) -> None:
        queue = make_queue()

        queue.enqueue(make_event(event="a"))
        timer = queue._timer
        queue.enqueue(make_event(event="b"))

        assert queue._timer is timer
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_timer_fires_flush(self, make_queue, transport) -> None:
        queue = make_queue()
        queue.enqueue(make_event())

        queue._on_timer()

        assert queue.timer_armed is False
        await queue._pending_flush
        assert len(transport.requests) == 1
        assert queue.size == 0

    @pytest.mark.asyncio
    async def test_duplicate_is_rejected(self, make_queue) -> None:
        queue = make_queue()

        assert queue.enqueue(make_event()) is True
        assert queue.enqueue(make_event()) is False

        assert queue.size == 1
        assert queue.stats["duplicates"] == 1
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_duplicate_rejected_across_flush(self, make_queue) -> None:
        queue = make_queue()

        queue.enqueue(make_event())
        await queue.flush()

        assert queue.enqueue(make_event()) is False

    def test_enqueue_without_loop_leaves_no_trace(self, make_queue) -> None:
        """
        A call outside the event loop fails before recording anything.
        """
        queue = make_queue()

        with pytest.raises(RuntimeError):
            queue.enqueue(make_event())

        assert queue.size == 0
        assert queue.byte_size == 0
        assert len(queue.deduplicator) == 0
        assert queue.stats["enqueued"] == 0

        async def enqueue_again() -> bool:
            accepted = queue.enqueue(make_event())
            queue.cleanup()
            return accepted

        assert asyncio.run(enqueue_again()) is True
        assert queue.size == 1

    @pytest.mark.asyncio
    async def test_message_id_is_the_fingerprint(self, make_queue) -> None:
        results = []
        queue = make_queue()
        event = make_event()

        queue.enqueue(event, results.append)
        await queue.flush()

        assert results[0].message["message_id"] == Deduplicator().fingerprint(event)


@pytest.mark.unit
class TestFlush:
    """
    Test flush results, ordering and callbacks.
    """

    @pytest.mark.asyncio
    async def test_empty_flush_resolves(self, make_queue, transport) -> None:
        flushed = []
        queue = make_queue()

        result = await queue.flush(flushed.append)

        assert isinstance(result, FlushResult)
        assert result.batch == []
        assert result.ok
        assert flushed == [result]
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_batch_shares_sent_at(self, make_queue, transport) -> None:
        queue = make_queue()
        for event in numbered(3):
            queue.enqueue(event)

        result = await queue.flush()

        assert result.ok
        assert result.chunks == 1
        assert [e["sent_at"] for e in result.batch] == [SENT_AT] * 3
        assert transport.bodies[0] == result.batch

    @pytest.mark.asyncio
    async def test_flush_takes_at_most_flush_at(self, make_queue, transport) -> None:
        queue = make_queue(flush_at=2)
        for event in numbered(5):
            queue.enqueue(event)

        await queue.drain()

        assert queue.size == 0
        assert [len(body) for body in transport.bodies] == [2, 2, 1]

    @pytest.mark.asyncio
    async def test_flushes_run_one_at_a_time(self, make_queue) -> None:
        gate = asyncio.Event()
        transport = FakeTransport(gate=gate)
        queue = make_queue(flush_at=2)
        queue.sender.transport = transport

        for event in numbered(4):
            queue.enqueue(event)

        for _ in range(5):
            await asyncio.sleep(0)

        # The second batch waits in the queue until the first settles
        assert len(transport.requests) == 1
        assert queue.size == 2

        gate.set()
        await queue.drain()

        assert [[e["event"] for e in body] for body in transport.bodies] == [
            ["event_0", "event_1"],
            ["event_2", "event_3"],
        ]

    @pytest.mark.asyncio
    async def test_flush_callback_receives_result(self, make_queue) -> None:
        flushed = []
        queue = make_queue()
        queue.enqueue(make_event())

        result = await queue.flush(flushed.append)

        assert flushed == [result]
        assert len(result.batch) == 1

    @pytest.mark.asyncio
    async def test_retries_use_injected_sleep(self, make_queue, delays) -> None:
        queue = make_queue()
        queue.sender.transport = FakeTransport([500, 200])
        queue.enqueue(make_event())

        result = await queue.flush()

        assert result.ok
        assert delays == [1]

    @pytest.mark.asyncio
    async def test_item_callbacks_get_their_chunk_outcome(self, make_queue) -> None:
        """
        Three ~40kB events are sent as three requests; only the middle one fails.
        """
        results: list[DeliveryResult] = []
        queue = make_queue()
        queue.sender.transport = FakeTransport([200, 400, 200])

        for i in range(3):
            queue.enqueue(
                make_event(event=f"big_{i}", properties={"blob": "x" * 40_000}),
                results.append,
            )

        flushed = await queue.flush()

        assert flushed.chunks == 3
        assert isinstance(flushed.error, ClientDeliveryError)
        assert [r.message["event"] for r in results] == ["big_0", "big_1", "big_2"]
        assert [r.ok for r in results] == [True, False, True]
        assert all(r.batch == flushed.batch for r in results)
        assert queue.stats["events_sent"] == 2
        assert queue.stats["events_failed"] == 1

    @pytest.mark.asyncio
    async def test_failed_flush_drops_batch(self, make_queue) -> None:
        queue = make_queue()
        queue.sender.transport = FakeTransport([400])
        queue.enqueue(make_event())

        result = await queue.flush()

        assert not result.ok
        assert queue.size == 0

    @pytest.mark.asyncio
    async def test_error_handler_receives_first_error(self, make_queue) -> None:
        errors = []
        queue = make_queue(error_handler=errors.append)
        queue.sender.transport = FakeTransport([400])
        queue.enqueue(make_event())

        await queue.flush()

        assert len(errors) == 1
        assert isinstance(errors[0], DeliveryError)
        assert errors[0].status_code == 400

    @pytest.mark.asyncio
    async def test_raising_callbacks_are_contained(self, make_queue) -> None:
        def explode(*args):
            raise RuntimeError("callback failed")

        queue = make_queue(error_handler=explode)
        queue.sender.transport = FakeTransport([400])
        queue.enqueue(make_event(), explode)

        result = await queue.flush(explode)

        assert isinstance(result.error, ClientDeliveryError)

    @pytest.mark.asyncio
    async def test_success_does_not_call_error_handler(self, make_queue) -> None:
        errors = []
        queue = make_queue(error_handler=errors.append)
        queue.enqueue(make_event())

        await queue.flush()

        assert errors == []


@pytest.mark.unit
class TestLifecycleIntegration:
    @pytest.mark.asyncio
    async def test_unload_flushes(self, make_queue, transport) -> None:
        notifier = LifecycleNotifier()
        queue = make_queue(lifecycle=notifier)
        queue.enqueue(make_event())

        notifier.unload()

        assert queue.size == 0
        await queue._pending_flush
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_unload_right_after_blur_flushes(self, make_queue, transport) -> None:
        notifier = LifecycleNotifier()
        queue = make_queue(lifecycle=notifier)
        queue.enqueue(make_event())

        notifier.blur()
        notifier.unload()

        assert queue.size == 0
        await queue._pending_flush
        assert len(transport.requests) == 1

    @pytest.mark.asyncio
    async def test_blur_does_not_flush(self, make_queue, transport) -> None:
        notifier = LifecycleNotifier()
        queue = make_queue(lifecycle=notifier)
        queue.enqueue(make_event())

        notifier.blur()
        await asyncio.sleep(0)

        assert queue.size == 1
        assert transport.requests == []
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_cleanup_detaches_and_cancels_timer(self, make_queue, transport) -> None:
        notifier = LifecycleNotifier()
        queue = make_queue(lifecycle=notifier)
        queue.enqueue(make_event())

        queue.cleanup()
        notifier.unload()

        assert notifier.listener_count == 0
        assert queue.timer_armed is False
        assert queue.size == 1
        assert transport.requests == []


@pytest.mark.unit
class TestObservability:
    @pytest.mark.asyncio
    async def test_callbacks_are_notified(self, make_queue) -> None:
        callbacks = Mock()
        queue = make_queue(callbacks=callbacks)

        queue.enqueue(make_event())
        queue.enqueue(make_event())
        await queue.flush()

        callbacks.event_queued.assert_called_once_with(1)
        callbacks.duplicate_rejected.assert_called_once()
        assert callbacks.duplicate_rejected.call_args.args[1] == 0.0
        callbacks.batch_sent.assert_called_once_with(1)
        callbacks.error.assert_not_called()

    @pytest.mark.asyncio
    async def test_pressure_changes_are_reported(self, make_queue) -> None:
        callbacks = Mock()
        queue = make_queue(callbacks=callbacks, max_queue_size=1_000)

        queue.enqueue(make_event(properties={"blob": "x" * 300}))

        pressure = callbacks.queue_pressure.call_args_list[0].args[0]
        assert pressure is not QueuePressure.LOW
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_break_enqueue(self, make_queue) -> None:
        callbacks = Mock()
        callbacks.event_queued.side_effect = RuntimeError("observer failed")
        queue = make_queue(callbacks=callbacks)

        assert queue.enqueue(make_event()) is True
        assert queue.size == 1
        queue.cleanup()

    @pytest.mark.asyncio
    async def test_stats(self, make_queue) -> None:
        queue = make_queue()
        queue.sender.transport = FakeTransport([200, 400])

        queue.enqueue(make_event(event="a"))
        await queue.flush()
        queue.enqueue(make_event(event="b"))
        queue.enqueue(make_event(event="b"))
        await queue.flush()

        stats = queue.stats
        assert stats["enqueued"] == 2
        assert stats["duplicates"] == 1
        assert stats["flushes"] == 2
        assert stats["events_sent"] == 1
        assert stats["events_failed"] == 1
        assert stats["queue_size"] == 0
        assert stats["queue_bytes"] == 0
        assert stats["dedup_entries"] == 2


@pytest.mark.unit
class TestOwnedTransport:
    @pytest.mark.asyncio
    async def test_context_manager_closes_owned_client(self) -> None:
        async with EventQueue(QueueConfig(write_key="wk_test")) as queue:
            client = queue._owned_transport.client

        assert client.is_closed is True

    @pytest.mark.asyncio
    async def test_injected_transport_is_kept(self, make_queue, transport) -> None:
        queue = make_queue()

        await queue.aclose()

        assert queue._owned_transport is None
        assert queue.sender.transport is transport
