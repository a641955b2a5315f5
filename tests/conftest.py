"""Shared fixtures: scripted HTTP transports, instant sleeps and sample requests."""

import asyncio
import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from ai_tagger.models import AnalysisRequest, ProviderConfig


class FakeClock:
    """Monotonic clock advanced only by FakeClock.sleep."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(0)
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingSleep:
    """Awaitable sleep stand-in that only records the requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class ScriptedTransport:
    """
    httpx.MockTransport wrapper replaying canned responses in order.

    The last response repeats once the script runs out. A response may also be an exception
    instance, which is raised instead of answering.
    """

    def __init__(self, *responses: httpx.Response | Exception) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        index = min(len(self.requests), len(self._responses)) - 1
        response = self._responses[index]
        if isinstance(response, Exception):
            raise response
        return httpx.Response(
            response.status_code,
            headers=response.headers,
            content=response.content,
        )

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int = -1) -> Any:  # noqa: ANN401
        return json.loads(self.requests[index].content)


@pytest.fixture
def scripted() -> Callable[..., ScriptedTransport]:
    return ScriptedTransport


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def gemini_config() -> ProviderConfig:
    return ProviderConfig(
        base_url="https://gemini.test/v1beta",
        model="gemini-2.5-flash",
        api_key_name="GEMINI_API_KEY",
        max_retries=2,
        backoff_cap=10.0,
    )


@pytest.fixture
def request_factory() -> Callable[..., AnalysisRequest]:
    def make(file_name: str = "IMG_0001.jpg", **overrides: Any) -> AnalysisRequest:  # noqa: ANN401
        values: dict[str, Any] = {
            "image_bytes": b"\xff\xd8stubjpeg",
            "file_name": file_name,
            "prompt_text": "Describe the photograph",
        }
        values.update(overrides)
        return AnalysisRequest(**values)

    return make

