"""Room publisher — emit envelopes to the instance's browser room.

Learn: Fan-out is at-most-once and best-effort. If nobody is in the room
right now the envelope is dropped: there is no backlog for browsers that
join later (they can re-sync from the backend). Errors are logged and
swallowed; publishing never retries and never raises.
"""

from typing import Protocol

import structlog

from evobridge.events.envelope import Envelope

logger = structlog.get_logger()


class RoomServer(Protocol):
    def member_count(self, room: str) -> int: ...

    async def emit_to_room(self, room: str, data: dict) -> None: ...


class RoomPublisher:
    def __init__(self, server: RoomServer):
        self.server = server

    async def publish(self, envelope: Envelope) -> int:
        """Emit to ``inst:<instance>``. Returns the number of listeners reached."""
        room = envelope.room
        log = logger.bind(
            stage="publish", event=envelope.event, instance=envelope.instance, room=room
        )
        try:
            listeners = self.server.member_count(room)
            if listeners == 0:
                log.info("publish.dropped", reason="no_listeners")
                return 0
            await self.server.emit_to_room(room, envelope.to_wire())
        except Exception:
            log.exception("publish.failed")
            return 0
        log.info("publish.sent", listeners=listeners)
        return listeners
