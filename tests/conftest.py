"""Shared fixtures: an in-memory stand-in for Moodle's REST endpoint."""

import asyncio
from collections.abc import Callable
from typing import Any
from urllib.parse import parse_qsl

import httpx
import pytest

from moodle_actions.config.models import AppSettings, MoodleSettings
from moodle_actions.moodle.api import MoodleGateway

BASE_URL = "https://moodle.example.edu"
TOKEN = "secret-token"


class FakeMoodle:
    """
    Answers web service calls by `wsfunction`.

    A handler is either a JSON-able value, an httpx.Response, an exception
    to raise (e.g. httpx.ReadTimeout), or a callable taking the flattened
    form parameters and returning any of those.
    """

    def __init__(self, delay: float = 0.0):
        self.handlers: dict[str, Any] = {}
        self.calls: list[tuple[str, dict[str, str]]] = []
        self.delay = delay
        self.in_flight = 0
        self.max_in_flight = 0

    def on(self, wsfunction: str, handler: Any) -> None:
        self.handlers[wsfunction] = handler

    def calls_to(self, wsfunction: str) -> list[dict[str, str]]:
        return [params for name, params in self.calls if name == wsfunction]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        await request.aread()
        params = dict(parse_qsl(request.content.decode()))
        wsfunction = params.get("wsfunction", "")
        self.calls.append((wsfunction, params))

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)

            if wsfunction not in self.handlers:
                return httpx.Response(
                    200,
                    json={
                        "exception": "invalid_parameter_exception",
                        "errorcode": "invalidfunction",
                        "message": f"No handler for {wsfunction}",
                    },
                )

            result = self.handlers[wsfunction]
            if callable(result) and not isinstance(result, type):
                result = result(params)
            if isinstance(result, Exception):
                if isinstance(result, httpx.RequestError):
                    result.request = request
                raise result
            if isinstance(result, httpx.Response):
                return result
            return httpx.Response(200, json=result)
        finally:
            self.in_flight -= 1


def run(coro):
    """Drive a coroutine to completion from a synchronous test."""
    return asyncio.run(coro)


async def stream_bytes(data: bytes, chunk_size: int = 4):
    """Yield `data` in chunks, like a body arriving over a socket."""
    for start in range(0, len(data), chunk_size):
        yield data[start:start + chunk_size]


@pytest.fixture
def moodle_settings() -> MoodleSettings:
    return MoodleSettings(base_url=BASE_URL, token=TOKEN)


@pytest.fixture
def app_settings(moodle_settings) -> AppSettings:
    return AppSettings(moodle=moodle_settings)


@pytest.fixture
def fake_moodle() -> FakeMoodle:
    return FakeMoodle()


@pytest.fixture
def gateway_factory(moodle_settings) -> Callable[[FakeMoodle], MoodleGateway]:
    def make(fake: FakeMoodle, settings: MoodleSettings | None = None) -> MoodleGateway:
        return MoodleGateway(settings or moodle_settings, transport=httpx.MockTransport(fake))

    return make


@pytest.fixture
def gateway(gateway_factory, fake_moodle) -> MoodleGateway:
    return gateway_factory(fake_moodle)
