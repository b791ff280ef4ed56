"""Shared fixtures.

Learn: Nothing here touches the network. The webhook backend is an
httpx.MockTransport, browser rooms are a FakeRooms stand-in with a fixed
membership table, and the upstream socket is a FakeSocket that records
handler registrations.
"""

import json
from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import httpx
import pytest
import pytest_asyncio

from evobridge.config import Settings


def make_settings(**overrides: Any) -> Settings:
    """Settings isolated from any local .env file."""
    overrides.setdefault("forward_backoff", 0.0)
    return Settings(_env_file=None, **overrides)


class Backend:
    """Scripted webhook backend: returns the queued statuses in order."""

    def __init__(self, statuses: Optional[list] = None):
        self.statuses = list(statuses or [200])
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(status, Exception):
            raise status
        return httpx.Response(status, json={"ok": 200 <= status < 300})

    @property
    def bodies(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests]


class FakeRooms:
    """Room server stand-in: fixed membership, records emits."""

    def __init__(self, members: Optional[dict[str, int]] = None, fail_emit: bool = False):
        self.members = dict(members or {})
        self.fail_emit = fail_emit
        self.emitted: list[tuple[str, dict]] = []

    def member_count(self, room: str) -> int:
        return self.members.get(room, 0)

    async def emit_to_room(self, room: str, data: dict) -> None:
        if self.fail_emit:
            raise RuntimeError("fan-out server exploded")
        self.emitted.append((room, data))


class FakeSocket:
    """socketio.AsyncClient stand-in."""

    def __init__(self, connect: Optional[Callable] = None):
        self.handlers: dict[str, Callable] = {}
        self.connected = False
        self.sid = "fake-sid"
        self.connect = AsyncMock(side_effect=connect)
        self.disconnect = AsyncMock(side_effect=self._disconnect)

    def on(self, event: str, handler: Callable) -> None:
        self.handlers[event] = handler

    async def _disconnect(self) -> None:
        self.connected = False


@pytest.fixture()
def backend():
    return Backend()


@pytest_asyncio.fixture()
async def http_factory():
    """Build AsyncClients over a MockTransport; all closed after the test."""
    clients: list[httpx.AsyncClient] = []

    def build(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        clients.append(client)
        return client

    yield build

    for client in clients:
        await client.aclose()
