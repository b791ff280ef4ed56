"""Upstream connection — the Evolution API socket.io stream.

Learn: Evolution API runs in one of two modes:
- global: one socket at EVOLUTION_API_URL carries every instance's events
- per-instance: the socket lives at EVOLUTION_API_URL/<INSTANCE_NAME>

Reconnection is left to the socket.io client (bounded attempts, fixed
delay). The bridge only logs lifecycle signals; it never acts on them.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote, urlsplit, urlunsplit

import socketio
import structlog

from evobridge.config import Settings

logger = structlog.get_logger()

# Diagnostic probe exit codes
PROBE_CONNECTED = 0
PROBE_CONNECT_ERROR = 2
PROBE_TIMEOUT = 3
PROBE_UNEXPECTED = 4


def build_connect_url(base_url: str, instance: str = "", global_mode: bool = False) -> str:
    """Upstream URL, with ``/<instance>`` appended in per-instance mode."""
    url = base_url.strip()
    if global_mode or not instance:
        return url
    segment = quote(instance, safe="")
    parts = urlsplit(url)
    if parts.scheme and parts.netloc:
        base_path = "" if parts.path in ("", "/") else parts.path.rstrip("/")
        return urlunsplit(parts._replace(path=f"{base_path}/{segment}"))
    return f"{url.rstrip('/')}/{segment}"


def transports_for(allow_polling: bool) -> list[str]:
    # Polling-only keeps working behind proxies that break the upgrade
    return ["polling"] if allow_polling else ["websocket"]


class UpstreamClient:
    """Thin wrapper over socketio.AsyncClient used as the dispatcher's event source."""

    def __init__(self, settings: Settings, sio: Optional[socketio.AsyncClient] = None):
        self.url = build_connect_url(
            settings.evolution_api_url,
            settings.instance_name,
            settings.websocket_global_events,
        )
        self.transports = transports_for(settings.allow_polling)
        token = settings.upstream_auth_token
        self.auth = {"token": token} if token else None
        self.sio = sio or socketio.AsyncClient(
            reconnection=True,
            reconnection_attempts=settings.upstream_reconnection_attempts,
            reconnection_delay=settings.upstream_reconnection_delay,
        )
        self.sio.on("connect", self._on_connect)
        self.sio.on("disconnect", self._on_disconnect)
        self.sio.on("connect_error", self._on_connect_error)

    @property
    def connected(self) -> bool:
        return bool(self.sio.connected)

    # ─── EventSource ──────────────────────────────────────

    def on(self, event: str, handler: Callable[..., Awaitable[None]]) -> None:
        self.sio.on(event, handler)

    def on_any(self, handler: Callable[..., Awaitable[None]]) -> None:
        self.sio.on("*", handler)

    # ─── Lifecycle ────────────────────────────────────────

    async def run(self) -> None:
        """Connect (retrying per client settings). Failure is logged, not raised."""
        logger.info("upstream.connecting", stage="evo_api", url=self.url,
                    transports=self.transports)
        try:
            await self.sio.connect(
                self.url, transports=self.transports, auth=self.auth, retry=True
            )
        except socketio.exceptions.ConnectionError as e:
            logger.error("upstream.connect_failed", stage="evo_api", url=self.url,
                         error=str(e))

    async def close(self) -> None:
        if self.sio.connected:
            await self.sio.disconnect()

    async def _on_connect(self) -> None:
        logger.info("upstream.connected", stage="evo_api", sid=self.sio.sid)

    async def _on_disconnect(self, reason: Any = None) -> None:
        logger.info("upstream.disconnected", stage="evo_api",
                    reason=str(reason) if reason is not None else None)

    async def _on_connect_error(self, data: Any = None) -> None:
        logger.error("upstream.connect_error", stage="evo_api", error=str(data))


async def probe(
    url: str,
    *,
    transports: list[str],
    auth: Optional[dict] = None,
    timeout: float = 15.0,
    sio: Optional[socketio.AsyncClient] = None,
) -> int:
    """One-shot connection attempt without reconnection. Returns an exit code."""
    client = sio or socketio.AsyncClient(reconnection=False)
    try:
        await asyncio.wait_for(
            client.connect(url, transports=transports, auth=auth, wait_timeout=timeout),
            timeout=timeout,
        )
    except socketio.exceptions.ConnectionError as e:
        logger.error("diag.connect_error", url=url, error=str(e))
        return PROBE_CONNECT_ERROR
    except asyncio.TimeoutError:
        logger.error("diag.timeout", url=url, timeout=timeout)
        return PROBE_TIMEOUT
    except Exception as e:
        logger.exception("diag.unexpected_error", url=url, error=str(e))
        return PROBE_UNEXPECTED
    else:
        logger.info("diag.connected", url=url, sid=client.sid)
        return PROBE_CONNECTED
    finally:
        if client.connected:
            await client.disconnect()
