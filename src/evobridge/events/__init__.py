"""Envelope model and the pure normalization step."""

from evobridge.events.envelope import Envelope, room_for
from evobridge.events.normalizer import normalize, pick_instance

__all__ = ["Envelope", "normalize", "pick_instance", "room_for"]
