"""Envelope — the normalized, versioned event record.

Learn: The envelope is the only thing that leaves the bridge. Both the
webhook body and the browser payload are ``envelope.to_wire()``, so the
two consumers always see the same shape. Wire names are camelCase
(``receivedAt``) to stay compatible with existing consumers.
"""

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

ENVELOPE_VERSION = "1.0"
UNKNOWN_INSTANCE = "unknown"


def utc_timestamp() -> str:
    """Current UTC time as ISO-8601 with millisecond precision and a Z suffix."""
    now = datetime.now(timezone.utc)
    return now.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def room_for(instance: str) -> str:
    """Fan-out room key for an instance."""
    return f"inst:{instance or UNKNOWN_INSTANCE}"


class Envelope(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    version: str = ENVELOPE_VERSION
    event: str
    received_at: str = Field(default_factory=utc_timestamp, alias="receivedAt")
    instance: str = UNKNOWN_INSTANCE
    id: Optional[str] = None
    type: Optional[str] = None
    actor: Optional[str] = None
    body: Any = None
    meta: dict[str, Any] = Field(default_factory=dict)
    raw: Optional[str] = None

    @property
    def room(self) -> str:
        return room_for(self.instance)

    @property
    def degraded(self) -> bool:
        """True when normalization failed and only the minimal fields are set."""
        return "error" in self.meta

    def to_wire(self) -> dict[str, Any]:
        """JSON-ready dict. ``raw`` is omitted unless it was populated."""
        data = self.model_dump(mode="json", by_alias=True)
        if self.raw is None:
            data.pop("raw", None)
        return data

    def copy_for_delivery(self) -> "Envelope":
        """Independent deep copy handed to each downstream consumer."""
        return self.model_copy(deep=True)
