"""Observer interface for queue activity."""

from enum import Enum
from typing import Protocol


class QueuePressure(Enum):
    """Byte fill level of the queue relative to max_queue_size."""

    LOW = "low"  # 0-30% full
    MEDIUM = "medium"  # 30-70% full
    HIGH = "high"  # 70-90% full
    CRITICAL = "critical"  # 90%+ full


class QueueCallbacks(Protocol):
    def event_queued(self, current_queue_size: int) -> None: ...
    def duplicate_rejected(self, message_id: str, age_seconds: float) -> None: ...
    def batch_sent(self, count: int) -> None: ...
    def error(self, message: str, exc: Exception) -> None: ...
    def queue_pressure(
        self, pressure: QueuePressure, current_bytes: int, max_bytes: int
    ) -> None: ...


class NullQueueCallbacks:
    def event_queued(self, current_queue_size: int) -> None:
        pass

    def duplicate_rejected(self, message_id: str, age_seconds: float) -> None:
        pass

    def batch_sent(self, count: int) -> None:
        pass

    def error(self, message: str, exc: Exception) -> None:
        pass

    def queue_pressure(
        self, pressure: QueuePressure, current_bytes: int, max_bytes: int
    ) -> None:
        pass


def calculate_queue_pressure(current_bytes: int, max_bytes: int) -> QueuePressure:
    """Calculate pressure level based on fill percentage."""
    if max_bytes == 0:
        return QueuePressure.LOW

    fill_percentage = (current_bytes / max_bytes) * 100

    if fill_percentage >= 90:
        return QueuePressure.CRITICAL
    elif fill_percentage >= 70:
        return QueuePressure.HIGH
    elif fill_percentage >= 30:
        return QueuePressure.MEDIUM
    else:
        return QueuePressure.LOW
