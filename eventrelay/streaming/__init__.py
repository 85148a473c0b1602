from .config import QueueConfig
from .dedup import Deduplicator
from .splitter import partition
from .http import EventSender, HttpxTransport, Transport, TransportRequest
from .lifecycle import (
    LifecycleNotifier,
    LifecycleSignal,
    LifecycleSource,
    LifecycleState,
    LifecycleTrigger,
)
from .callbacks import QueueCallbacks, NullQueueCallbacks, QueuePressure
from .queue import EventQueue

__all__ = [
    "QueueConfig",
    "Deduplicator",
    "partition",
    "EventSender",
    "HttpxTransport",
    "Transport",
    "TransportRequest",
    "LifecycleNotifier",
    "LifecycleSignal",
    "LifecycleSource",
    "LifecycleState",
    "LifecycleTrigger",
    "QueueCallbacks",
    "NullQueueCallbacks",
    "QueuePressure",
    "EventQueue",
]
