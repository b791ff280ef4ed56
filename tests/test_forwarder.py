"""Backend forwarder tests — headers, retry policy, failure absorption."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest

from conftest import Backend, make_settings
from evobridge.delivery.forwarder import BackendForwarder
from evobridge.events.normalizer import normalize

BACKEND_URL = "http://backend.test/webhook"


def _envelope():
    return normalize("qrcode.updated", {"qr": "abc", "instance": "acct1"})


def _forwarder(http_factory, backend, **overrides):
    settings = make_settings(backend_url=BACKEND_URL, **overrides)
    return BackendForwarder(settings, http_factory(backend))


@pytest.mark.asyncio
async def test_no_backend_url_is_a_noop(http_factory, backend):
    forwarder = BackendForwarder(make_settings(), http_factory(backend))

    outcome = await forwarder.forward(_envelope())

    assert outcome.delivered
    assert outcome.skipped
    assert outcome.attempts == 0
    assert backend.requests == []


@pytest.mark.asyncio
async def test_delivers_envelope_as_json(http_factory, backend):
    forwarder = _forwarder(http_factory, backend)
    envelope = _envelope()

    outcome = await forwarder.forward(envelope)

    assert outcome.delivered
    assert outcome.attempts == 1
    assert outcome.status_code == 200
    req = backend.requests[0]
    assert req.method == "POST"
    assert str(req.url) == BACKEND_URL
    assert req.headers["content-type"] == "application/json"
    assert req.headers["x-request-id"]
    assert backend.bodies[0] == envelope.to_wire()


@pytest.mark.asyncio
async def test_secret_headers_only_when_configured(http_factory):
    plain = Backend()
    await _forwarder(http_factory, plain).forward(_envelope())
    assert "x-webhook-secret" not in plain.requests[0].headers
    assert "x-evolution-api-key" not in plain.requests[0].headers

    secured = Backend()
    forwarder = _forwarder(
        http_factory, secured, backend_webhook_secret="s3cret", backend_api_key="k3y"
    )
    await forwarder.forward(_envelope())
    assert secured.requests[0].headers["x-webhook-secret"] == "s3cret"
    assert secured.requests[0].headers["x-evolution-api-key"] == "k3y"


@pytest.mark.asyncio
async def test_server_error_retried_up_to_limit(http_factory):
    backend = Backend([500])
    forwarder = _forwarder(http_factory, backend, forward_retries=3)

    outcome = await forwarder.forward(_envelope())

    assert not outcome.delivered
    assert not outcome.rejected
    assert outcome.attempts == 3
    assert outcome.status_code == 500
    assert len(backend.requests) == 3


@pytest.mark.asyncio
async def test_client_error_not_retried(http_factory):
    backend = Backend([400])
    forwarder = _forwarder(http_factory, backend, forward_retries=3)

    outcome = await forwarder.forward(_envelope())

    assert not outcome.delivered
    assert outcome.rejected
    assert outcome.attempts == 1
    assert len(backend.requests) == 1


@pytest.mark.asyncio
async def test_retry_then_success_reuses_request_id(http_factory):
    backend = Backend([503, 502, 201])
    forwarder = _forwarder(http_factory, backend, forward_retries=3)

    outcome = await forwarder.forward(_envelope())

    assert outcome.delivered
    assert outcome.attempts == 3
    ids = {r.headers["x-request-id"] for r in backend.requests}
    assert len(ids) == 1


@pytest.mark.asyncio
async def test_fresh_request_id_per_delivery(http_factory, backend):
    forwarder = _forwarder(http_factory, backend)
    await forwarder.forward(_envelope())
    await forwarder.forward(_envelope())
    assert backend.requests[0].headers["x-request-id"] != backend.requests[1].headers["x-request-id"]


@pytest.mark.asyncio
async def test_transport_errors_are_retried_and_absorbed(http_factory):
    backend = Backend([httpx.ConnectError("connection refused")])
    forwarder = _forwarder(http_factory, backend, forward_retries=2)

    outcome = await forwarder.forward(_envelope())

    assert not outcome.delivered
    assert outcome.attempts == 2
    assert outcome.status_code is None
    assert "ConnectError" in outcome.error


@pytest.mark.asyncio
async def test_linear_backoff_between_attempts(http_factory):
    backend = Backend([500])
    forwarder = _forwarder(http_factory, backend, forward_retries=3, forward_backoff=1.0)

    with patch("evobridge.delivery.forwarder.asyncio.sleep", new=AsyncMock()) as sleep:
        await forwarder.forward(_envelope())

    assert [c.args[0] for c in sleep.await_args_list] == [1.0, 2.0]
