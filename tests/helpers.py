from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any

import httpx

from eventrelay.models import EventRecord

FIXED_NOW = datetime(2024, 5, 1, 12, 30, 0, 123000, tzinfo=timezone.utc)
ANONYMOUS_ID = "8d1f5f9e-1d1c-4c3a-9d55-0b3f1c1b7b11"


def make_event(**overrides: Any) -> EventRecord:
    fields: dict[str, Any] = {
        "type": "track",
        "event": "button_clicked",
        "anonymous_id": ANONYMOUS_ID,
        "properties": {"button": "signup"},
        "context": {"locale": "en-US"},
        "original_timestamp": "2024-05-01T12:00:05.000Z",
    }
    fields.update(overrides)
    return EventRecord(**fields)


def make_recording_sleep(delays: list):
    async def sleep(delay: float) -> None:
        delays.append(delay)

    return sleep


class FakeTransport:
    """
    Records requests and replays scripted responses.

    Scripted items may be ints (status codes), httpx.Response objects or
    exceptions to raise. Once the script runs out every request gets a 200.
    An optional gate holds every request until it is set.
    """

    def __init__(self, script: list | None = None, gate: asyncio.Event | None = None):
        self.script = list(script or [])
        self.gate = gate
        self.requests: list = []

    async def send(self, endpoint, request):
        self.requests.append((endpoint, request))

        if self.gate is not None:
            await self.gate.wait()

        if not self.script:
            return httpx.Response(200)

        outcome = self.script.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, int):
            return httpx.Response(outcome)
        return outcome

    @property
    def bodies(self) -> list:
        return [json.loads(request.body) for _, request in self.requests]
