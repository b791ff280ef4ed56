"""FastAPI application factory.

Learn: create_app() builds the Bridge (every pipeline component, wired
from one Settings object) and a FastAPI app around it. The lifespan starts
the upstream connection in the background and, on shutdown, tears things
down in reverse: stop listening upstream, disconnect browsers, drain
in-flight deliveries (bounded by SHUTDOWN_GRACE), close the HTTP client.

create_asgi_app() wraps the FastAPI app with the socket.io server so
browsers and HTTP probes share one port.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from evobridge import __version__
from evobridge.api import api_router
from evobridge.config import Settings
from evobridge.delivery.forwarder import BackendForwarder
from evobridge.dispatcher import EventDispatcher
from evobridge.realtime import FrontServer, RoomPublisher
from evobridge.upstream import UpstreamClient

logger = structlog.get_logger()


@dataclass
class Bridge:
    """All long-lived components of one bridge process."""

    settings: Settings
    http: httpx.AsyncClient
    front: FrontServer
    forwarder: BackendForwarder
    publisher: RoomPublisher
    dispatcher: EventDispatcher
    upstream: UpstreamClient
    _upstream_task: Optional[asyncio.Task] = field(default=None, repr=False)

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        http: Optional[httpx.AsyncClient] = None,
        upstream: Optional[UpstreamClient] = None,
    ) -> "Bridge":
        http = http or httpx.AsyncClient()
        front = FrontServer(settings)
        forwarder = BackendForwarder(settings, http)
        publisher = RoomPublisher(front)
        dispatcher = EventDispatcher(settings, forwarder, publisher)
        return cls(
            settings=settings,
            http=http,
            front=front,
            forwarder=forwarder,
            publisher=publisher,
            dispatcher=dispatcher,
            upstream=upstream or UpstreamClient(settings),
        )

    async def start(self) -> None:
        self.dispatcher.subscribe(self.upstream)
        if not self.forwarder.enabled:
            logger.info("bridge.backend_disabled", reason="BACKEND_URL not set")
        self._upstream_task = asyncio.create_task(self.upstream.run())

    async def stop(self) -> None:
        await self.upstream.close()
        if self._upstream_task and not self._upstream_task.done():
            self._upstream_task.cancel()
            try:
                await self._upstream_task
            except asyncio.CancelledError:
                pass
        await self.front.shutdown()
        await self.dispatcher.drain(timeout=self.settings.shutdown_grace)
        await self.http.aclose()


def create_app(settings: Optional[Settings] = None, bridge: Optional[Bridge] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or Settings()
    bridge = bridge or Bridge.build(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "evobridge.starting",
            version=__version__,
            port=settings.front_ws_port,
            path=settings.front_ws_path,
            origins=settings.front_origin,
            mode="catch_all" if settings.catch_all else "filtered",
        )
        await bridge.start()

        yield

        logger.info("evobridge.shutdown")
        await bridge.stop()

    app = FastAPI(
        title="evobridge",
        description="Evolution API event relay",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.bridge = bridge

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.front_origin,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )
    app.include_router(api_router)
    return app


def create_asgi_app(settings: Optional[Settings] = None):
    """FastAPI app with the browser socket.io server mounted at FRONT_WS_PATH."""
    settings = settings or Settings()
    app = create_app(settings)
    return app.state.bridge.front.asgi_app(app)
