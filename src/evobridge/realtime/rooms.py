"""Front socket server — browsers subscribe to instance rooms.

Learn: Browsers connect over socket.io (mounted on the FastAPI app at
FRONT_WS_PATH) and emit ``join_instance`` with ``{instance}`` plus an ack
callback. The handler's return value becomes the ack:

    {"ok": true,  "room": "inst:acct1"}
    {"ok": false, "error": "missing_instance"}

Room membership lives entirely in the socket.io manager. The bridge only
reads its size and emits into it; it never adds or removes members except
through the join request above.
"""

from typing import Any

import socketio
import structlog

from evobridge.config import Settings
from evobridge.events.envelope import room_for
from evobridge.events.types import FRONT_EVENT, JOIN_INSTANCE

logger = structlog.get_logger()

NAMESPACE = "/"


class FrontServer:
    """Owns the browser-facing socket.io server and its rooms."""

    def __init__(self, settings: Settings):
        origins = settings.front_origin
        self.path = settings.front_ws_path
        self.sio = socketio.AsyncServer(
            async_mode="asgi",
            cors_allowed_origins="*" if "*" in origins else origins,
            cors_credentials=True,
        )
        self.sio.on("connect", self.on_connect)
        self.sio.on(JOIN_INSTANCE, self.on_join_instance)
        self.sio.on("disconnect", self.on_disconnect)

    def asgi_app(self, other_app) -> socketio.ASGIApp:
        """Wrap ``other_app`` so socket.io traffic on ``path`` is handled here."""
        return socketio.ASGIApp(
            self.sio, other_asgi_app=other_app, socketio_path=self.path
        )

    # ─── Client events ────────────────────────────────────

    async def on_connect(self, sid: str, environ: dict, auth: Any = None) -> None:
        logger.info("front.connected", stage="front_ws", sid=sid)

    async def on_join_instance(self, sid: str, data: Any = None) -> dict:
        instance = data.get("instance") if isinstance(data, dict) else None
        if not instance:
            logger.warning("front.join_rejected", stage="front_ws", sid=sid,
                           error="missing_instance")
            return {"ok": False, "error": "missing_instance"}
        try:
            room = room_for(str(instance))
            await self.sio.enter_room(sid, room)
        except Exception as e:
            logger.exception("front.join_failed", stage="front_ws", sid=sid,
                             instance=instance)
            return {"ok": False, "error": str(e)}
        logger.info("front.joined", stage="front_ws", sid=sid, room=room)
        return {"ok": True, "room": room}

    async def on_disconnect(self, sid: str, reason: Any = None) -> None:
        logger.info("front.disconnected", stage="front_ws", sid=sid,
                    reason=str(reason) if reason is not None else None)

    # ─── Used by the publisher ────────────────────────────

    def member_count(self, room: str) -> int:
        """Active subscribers of ``room`` (0 when the room doesn't exist)."""
        return sum(1 for _ in self.sio.manager.get_participants(NAMESPACE, room))

    async def emit_to_room(self, room: str, data: dict) -> None:
        await self.sio.emit(FRONT_EVENT, data, to=room, namespace=NAMESPACE)

    async def shutdown(self) -> None:
        """Disconnect browsers and stop socket.io background tasks."""
        try:
            await self.sio.shutdown()
        except Exception:
            logger.exception("front.shutdown_failed")
