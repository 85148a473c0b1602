from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional, Protocol, Sequence

import httpx
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from eventrelay.constants import (
    DEFAULT_RETRY,
    KEEPALIVE_REQUEST_TIMEOUT,
    REQUEST_TIMEOUT,
)
from eventrelay.errors import (
    ClientDeliveryError,
    DeliveryError,
    NetworkDeliveryError,
    RetriesExhaustedError,
    RetryableDeliveryError,
    ServerDeliveryError,
    TerminalDeliveryError,
    TooManyRequestsError,
)
from eventrelay.meta import get_meta_http_headers
from eventrelay.models import Chunk
from eventrelay.utils import serialize

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransportRequest:
    method: str
    headers: dict[str, str]
    body: str
    keepalive: bool = True


class Transport(Protocol):
    async def send(self, endpoint: str, request: TransportRequest) -> httpx.Response: ...


@dataclass
class HttpxTransport:
    """
    Transport backed by ``httpx.AsyncClient``.

    Keepalive requests may still be running while the host is shutting down,
    so they get the shorter ``keepalive_timeout``.
    """

    client: Optional[httpx.AsyncClient] = None
    timeout: float = REQUEST_TIMEOUT
    keepalive_timeout: float = KEEPALIVE_REQUEST_TIMEOUT
    _owns_client: bool = field(default=False, init=False)

    def __post_init__(self):
        if self.client is None:
            self.client = httpx.AsyncClient()
            self._owns_client = True

    async def send(self, endpoint: str, request: TransportRequest) -> httpx.Response:
        assert self.client is not None

        return await self.client.request(
            request.method,
            endpoint,
            headers=request.headers,
            content=request.body.encode("utf-8"),
            timeout=self.keepalive_timeout if request.keepalive else self.timeout,
        )

    async def aclose(self) -> None:
        # Don't close an injected client - let caller manage lifecycle
        if self._owns_client and self.client is not None:
            await self.client.aclose()
            self.client = None


def extract_detail(response: httpx.Response) -> Optional[str]:
    """
    Extract error detail from an HTTP response body, if there is one.
    """
    try:
        data = response.json()
    except (json.JSONDecodeError, ValueError, UnicodeDecodeError):
        return response.text or None

    if isinstance(data, dict):
        detail = data.get("detail") or data.get("message") or data.get("error")
        return str(detail) if detail else None

    return None


def classify_response(response: httpx.Response) -> Optional[DeliveryError]:
    """
    Map a non-success response to its delivery error, None on success.
    """
    if response.is_success:
        return None

    status = response.status_code
    detail = extract_detail(response)

    if status == 429:
        return TooManyRequestsError(reason=detail)
    if response.is_server_error:
        return ServerDeliveryError(status, reason=detail)
    if response.is_client_error:
        return ClientDeliveryError(status, reason=detail)

    return TerminalDeliveryError(
        f"Unexpected status {status} while delivering events.", status_code=status
    )


class EventSender:
    """
    Delivers chunks to the collection endpoint with retry logic.

    Network failures, 5xx and 429 responses are retried up to
    ``retry_count`` times with a 1s, 2s, 4s... backoff. Anything else fails
    the chunk immediately.
    """

    def __init__(
        self,
        endpoint: str,
        write_key: str,
        transport: Transport,
        retry_count: int = DEFAULT_RETRY,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.endpoint = endpoint
        self.write_key = write_key
        self.transport = transport
        self.retry_count = retry_count
        self._sleep = sleep or asyncio.sleep

    def build_headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.write_key}",
        }
        headers.update(get_meta_http_headers())
        return headers

    async def send_chunk(self, chunk: Chunk) -> Optional[DeliveryError]:
        """
        Send one chunk, retrying transient failures.

        Returns:
            None on success, otherwise a terminal error. A transient failure
            that outlasts the retries comes back as RetriesExhaustedError
            wrapping the last attempt's error.
        """
        request = TransportRequest(
            method="POST",
            headers=self.build_headers(),
            body=serialize(chunk.events),
            keepalive=chunk.keepalive,
        )

        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(self.retry_count + 1),
            wait=wait_exponential(multiplier=1, exp_base=2),
            retry=retry_if_exception_type(RetryableDeliveryError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    await self._send_once(request)
        except DeliveryError as e:
            error = e
            if e.retryable:
                error = RetriesExhaustedError(e, attempts=self.retry_count + 1)

            logger.error(
                "Failed to deliver %d events to %s: %s",
                len(chunk),
                self.endpoint,
                error.message,
            )
            return error

        logger.debug("Delivered %d events (keepalive=%s)", len(chunk), chunk.keepalive)
        return None

    async def send_chunks(
        self, chunks: Sequence[Chunk]
    ) -> list[Optional[DeliveryError]]:
        """
        Send chunks one after the other.

        Keepalive bodies share one size budget, so chunks are never sent
        concurrently. A failed chunk does not stop the ones after it.
        """
        outcomes: list[Optional[DeliveryError]] = []

        for chunk in chunks:
            outcomes.append(await self.send_chunk(chunk))

        return outcomes

    async def _send_once(self, request: TransportRequest) -> None:
        try:
            response = await self.transport.send(self.endpoint, request)
        except httpx.TransportError as e:
            raise NetworkDeliveryError(reason=str(e) or e.__class__.__name__) from e
        except DeliveryError:
            raise
        except Exception as e:
            raise TerminalDeliveryError(
                f"Unexpected error while delivering events: {e!r}"
            ) from e

        error = classify_response(response)
        if error is not None:
            raise error
