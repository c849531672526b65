"""Shared test fixtures: a scripted aiohttp session, clock and sleep."""

import json
from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest

from octoshift.config.config import ClientSettings
from octoshift.utils.logging import OctoLogger


class FakeResponse:
    """Stand-in for ``aiohttp.ClientResponse``."""

    def __init__(
        self,
        status: int = 200,
        body: Any = '',
        headers: Optional[Dict[str, str]] = None,
        charset: Optional[str] = None,
    ):
        self.status = status
        if isinstance(body, bytes):
            self.raw = body
        else:
            text = body if isinstance(body, str) else json.dumps(body)
            self.raw = text.encode('utf-8')
        self.headers = headers or {}
        self.charset = charset

    async def read(self) -> bytes:
        return self.raw


class RecordedRequest:
    """One request seen by ``FakeSession``."""

    def __init__(self, method: str, url: str, headers: Dict[str, str], data: Any):
        self.method = method
        self.url = url
        self.headers = headers
        self.data = data

    @property
    def json(self) -> Any:
        return json.loads(self.data)


class _RequestContext:
    def __init__(self, result):
        self.result = result

    async def __aenter__(self):
        if isinstance(self.result, BaseException):
            raise self.result
        return self.result

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return False


class FakeSession:
    """Replays queued responses (or exceptions) in order and records requests."""

    def __init__(self, *responses):
        self.responses: List[Any] = list(responses)
        self.requests: List[RecordedRequest] = []
        self.closed = False

    def queue(self, *responses) -> None:
        self.responses.extend(responses)

    def request(self, method, url, headers=None, data=None, **kwargs):
        # Bodies are snapshotted as sent; later mutation must not show up here
        self.requests.append(RecordedRequest(method, url, dict(headers or {}), data))
        if not self.responses:
            raise AssertionError(f'Unexpected request: {method} {url}')
        return _RequestContext(self.responses.pop(0))

    async def close(self) -> None:
        self.closed = True


class FakeClock:
    """Unix clock that only moves when a test (or a sleep) advances it."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Awaitable sleep that records delays and advances the fake clock."""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        if self.clock is not None:
            self.clock.advance(delay)


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper(clock):
    return SleepRecorder(clock)


@pytest.fixture
def logger():
    return Mock(spec=OctoLogger)


@pytest.fixture
def settings():
    """Settings with no transient retry delay."""
    return ClientSettings(retry_delay=0)


@pytest.fixture
def client_kwargs(session, logger, settings, sleeper, clock) -> Dict[str, Any]:
    """Keyword arguments wiring a client to the fakes above."""
    return {
        'session': session,
        'logger': logger,
        'settings': settings,
        'sleep': sleeper,
        'clock': clock,
    }
