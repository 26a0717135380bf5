"""Shared fixtures: a controllable clock, a scripted HTTP transport, and a seeded directory."""

import json
from collections.abc import Callable
from typing import Any

import httpx
import pytest

from sponsor_sync.cache import MemoryCacheStore
from sponsor_sync.sync.directory import GITHUB_PROVIDER, InMemoryDirectory, User

START = 1_700_000_000.0


class FakeClock:
    """Callable clock whose ``sleep`` advances time instead of blocking."""

    def __init__(self, start: float = START):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds

    def advance(self, seconds: float) -> None:
        self.now += seconds


Responder = Callable[[httpx.Request], httpx.Response]


def respond(
    status: int = 200,
    json_body: Any = None,
    headers: dict[str, str] | None = None,
    text: str | None = None,
) -> Responder:
    """Build a responder returning a fresh response per request."""

    def _respond(request: httpx.Request) -> httpx.Response:
        if text is not None:
            return httpx.Response(status, text=text, headers=headers)
        if json_body is None:
            return httpx.Response(status, headers=headers)
        return httpx.Response(status, json=json_body, headers=headers)

    return _respond


class ScriptedTransport:
    """
    Replays responders in order, recording every request.

    The last responder repeats once the script runs out.
    """

    def __init__(self, *responders: Responder):
        self.responders = list(responders)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if len(self.responders) > 1:
            responder = self.responders.pop(0)
        else:
            responder = self.responders[0]
        return responder(request)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)

    @property
    def calls(self) -> int:
        return len(self.requests)

    def body(self, index: int) -> dict[str, Any]:
        return json.loads(self.requests[index].content)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache() -> MemoryCacheStore:
    return MemoryCacheStore()


@pytest.fixture
def directory(clock) -> InMemoryDirectory:
    """Three users: alice and bob linked to GitHub, carol unlinked."""
    d = InMemoryDirectory(clock=clock)
    d.add_user(User(id=1, username="alice"))
    d.add_user(User(id=2, username="bob"))
    d.add_user(User(id=3, username="carol"))
    d.link_identity(1, GITHUB_PROVIDER, "Alice")
    d.link_identity(2, GITHUB_PROVIDER, "bob-gh")
    return d
