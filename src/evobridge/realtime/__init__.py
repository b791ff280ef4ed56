"""Browser fan-out: socket.io rooms keyed by instance."""

from evobridge.realtime.publisher import RoomPublisher
from evobridge.realtime.rooms import FrontServer

__all__ = ["FrontServer", "RoomPublisher"]
