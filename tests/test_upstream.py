"""Upstream client tests — URL building, handler wiring, diagnostic probe."""

import asyncio

import pytest
import socketio

from conftest import FakeSocket, make_settings
from evobridge.upstream import (
    PROBE_CONNECT_ERROR,
    PROBE_CONNECTED,
    PROBE_TIMEOUT,
    PROBE_UNEXPECTED,
    UpstreamClient,
    build_connect_url,
    probe,
    transports_for,
)


@pytest.mark.parametrize(
    "base, instance, global_mode, expected",
    [
        ("https://evo.example", "acct1", False, "https://evo.example/acct1"),
        ("https://evo.example/", "acct1", False, "https://evo.example/acct1"),
        ("https://evo.example/socket/", "acct1", False, "https://evo.example/socket/acct1"),
        ("wss://evo.example", "my inst", False, "wss://evo.example/my%20inst"),
        ("evo.example/", "acct1", False, "evo.example/acct1"),
        ("https://evo.example", "acct1", True, "https://evo.example"),
        ("https://evo.example", "", False, "https://evo.example"),
    ],
)
def test_build_connect_url(base, instance, global_mode, expected):
    assert build_connect_url(base, instance, global_mode) == expected


def test_transports():
    assert transports_for(True) == ["polling"]
    assert transports_for(False) == ["websocket"]


def _client(sock, **overrides):
    settings = make_settings(
        evolution_api_url="https://evo.example",
        instance_name="acct1",
        websocket_global_events=False,
        **overrides,
    )
    return UpstreamClient(settings, sio=sock)


def test_lifecycle_handlers_registered():
    sock = FakeSocket()
    client = _client(sock)

    assert {"connect", "disconnect", "connect_error"} <= set(sock.handlers)
    assert client.url == "https://evo.example/acct1"


def test_on_any_uses_wildcard():
    sock = FakeSocket()
    client = _client(sock)

    async def handler(event, *args):
        pass

    client.on_any(handler)
    client.on("messages.upsert", handler)

    assert sock.handlers["*"] is handler
    assert sock.handlers["messages.upsert"] is handler


@pytest.mark.asyncio
async def test_run_connects_with_configured_transport():
    sock = FakeSocket()
    client = _client(sock, allow_polling=False, upstream_auth_token="t0k")

    await client.run()

    sock.connect.assert_awaited_once_with(
        "https://evo.example/acct1",
        transports=["websocket"],
        auth={"token": "t0k"},
        retry=True,
    )


@pytest.mark.asyncio
async def test_run_swallows_connection_failure():
    sock = FakeSocket(connect=socketio.exceptions.ConnectionError("refused"))
    client = _client(sock)

    await client.run()  # does not raise

    assert not client.connected


@pytest.mark.asyncio
async def test_close_disconnects_only_when_connected():
    sock = FakeSocket()
    client = _client(sock)

    await client.close()
    sock.disconnect.assert_not_awaited()

    sock.connected = True
    await client.close()
    sock.disconnect.assert_awaited_once()


# ─── Diagnostic probe ────────────────────────────────────


@pytest.mark.asyncio
async def test_probe_connected():
    async def connect(*args, **kwargs):
        sock.connected = True

    sock = FakeSocket(connect=connect)

    code = await probe("https://evo.example", transports=["websocket"], sio=sock)

    assert code == PROBE_CONNECTED
    sock.disconnect.assert_awaited_once()


@pytest.mark.asyncio
async def test_probe_connect_error():
    sock = FakeSocket(connect=socketio.exceptions.ConnectionError("401"))
    code = await probe("https://evo.example", transports=["websocket"], sio=sock)
    assert code == PROBE_CONNECT_ERROR


@pytest.mark.asyncio
async def test_probe_timeout():
    async def hang(*args, **kwargs):
        await asyncio.sleep(10)

    sock = FakeSocket(connect=hang)
    code = await probe(
        "https://evo.example", transports=["websocket"], timeout=0.05, sio=sock
    )
    assert code == PROBE_TIMEOUT


@pytest.mark.asyncio
async def test_probe_unexpected_error():
    sock = FakeSocket(connect=RuntimeError("weird"))
    code = await probe("https://evo.example", transports=["websocket"], sio=sock)
    assert code == PROBE_UNEXPECTED
