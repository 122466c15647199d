"""Conftest: scripted transport and a recording sleep for executor tests.

Nothing here touches the network. ``FakeTransport`` replays a fixed list
of responses (or raises the exceptions in that list) and records every
request it was asked to send.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

import pytest

from xgate_api._transport import Request, Response

NOW = 1_700_000_000.0


class FakeTransport:
    """Replays scripted outcomes in order; the last one repeats."""

    def __init__(self, *outcomes: Response | BaseException) -> None:
        self._outcomes = list(outcomes)
        self.requests: list[Request] = []

    async def __call__(self, request: Request) -> Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self._outcomes)) - 1
        outcome = self._outcomes[index]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    @property
    def calls(self) -> int:
        return len(self.requests)


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that only records the delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def json_response(status: int, data: Any, headers: Mapping[str, str] | None = None) -> Response:
    return Response.build(status, json.dumps(data), headers)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def clock():
    return lambda: NOW
