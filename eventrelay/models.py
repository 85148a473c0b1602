from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from eventrelay.errors import DeliveryError
from eventrelay.utils import parse_timestamp


class EventType(str, Enum):
    """
    Discriminator for the records produced by the enrichment layer.
    """

    PAGE = "page"
    DETECT = "detect"
    IDENTIFY = "identify"
    CHAIN = "chain"
    TRANSACTION = "transaction"
    SIGNATURE = "signature"
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    TRACK = "track"


class EventRecord(BaseModel):
    """
    A fully enriched event, ready to be queued.

    Records are validated once, where they are built. The queue treats them
    as read-only and derives its wire payload from ``to_payload``.
    """

    model_config = ConfigDict(frozen=True, extra="allow", use_enum_values=True)

    type: EventType
    channel: str = "web"
    version: str = "1"
    anonymous_id: str
    user_id: Optional[str] = None
    address: Optional[str] = None
    event: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    context: Dict[str, Any] = Field(default_factory=dict)
    original_timestamp: str

    @field_validator("original_timestamp")
    @classmethod
    def _check_timestamp(cls, value: str) -> str:
        parse_timestamp(value)
        return value

    @property
    def timestamp(self) -> datetime:
        return parse_timestamp(self.original_timestamp)

    def to_payload(self) -> Dict[str, Any]:
        """
        JSON ready copy of the record, extra fields included.
        """
        return self.model_dump(mode="json")


QueueCallback = Callable[["DeliveryResult"], Any]
FlushCallback = Callable[["FlushResult"], Any]


@dataclass
class QueueItem:
    message: Dict[str, Any]
    size: int
    callback: Optional[QueueCallback] = None


@dataclass(frozen=True)
class Chunk:
    """
    Ordered slice of a batch sent as a single request.

    ``keepalive`` is False only for a lone event too large for the keepalive
    payload limit.
    """

    events: List[Dict[str, Any]]
    keepalive: bool = True

    def __len__(self) -> int:
        return len(self.events)


@dataclass(frozen=True)
class DeliveryResult:
    """
    Outcome reported to the callback of a single queued event.
    """

    message: Dict[str, Any]
    batch: List[Dict[str, Any]]
    error: Optional[DeliveryError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class FlushResult:
    """
    Outcome of one flush. ``error`` is the first failure across its chunks.
    """

    batch: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[DeliveryError] = None
    chunks: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None
