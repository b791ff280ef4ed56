"""Envelope normalizer — raw upstream event → canonical Envelope.

Learn: Upstream payloads are loosely structured JSON with inconsistent
field names. Each known event name maps to an extractor that projects the
payload onto a small, bounded ``Classified`` record; every other name goes
through the generic extractor, which keeps at most a handful of top-level
keys and caps each one.

Exact-match rules always win over the generic fallback. Extractors may
raise on strange input; ``normalize`` catches that and returns a degraded
envelope instead, so a malformed payload is still delivered (with
``meta.error``) rather than silently lost.

Everything here is pure: no I/O, no logging, and the input payload is
never mutated (verbatim bodies are deep copies).
"""

import copy
import json
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional

from evobridge.events.envelope import UNKNOWN_INSTANCE, Envelope
from evobridge.events.types import (
    CHATS_UPDATE,
    CONNECTION_UPDATE,
    CONTACTS_UPDATE,
    MESSAGES_UPSERT,
    QRCODE_UPDATED,
)

NORMALIZATION_FAILED = "normalization_failed"
UNSERIALIZABLE = "<unserializable>"
TRUNCATED_MARKER = "...<truncated>"

SNIPPET_MAX = 256
MAX_PHONES = 3
MAX_EMAILS = 2

# Generic fallback limits
GENERIC_MAX_KEYS = 6
GENERIC_LONG_STRING = 512
GENERIC_STRING_KEEP = 128
GENERIC_LIST_KEEP = 3
ELLIPSIS = "..."
OBJECT_PLACEHOLDER = "[object]"


@dataclass(frozen=True)
class Classified:
    """Per-event-type projection of a payload."""

    type: str
    body: Any
    id: Optional[str] = None
    actor: Optional[str] = None


# ─── Field helpers ───────────────────────────────────────


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _first(source: Any, *keys: str) -> Any:
    """First present value among ``keys`` of a mapping, else None."""
    if not isinstance(source, Mapping):
        return None
    for key in keys:
        value = source.get(key)
        if _present(value):
            return value
    return None


def _first_str(source: Any, *keys: str) -> Optional[str]:
    """Like _first, but skips values that are not strings."""
    if not isinstance(source, Mapping):
        return None
    for key in keys:
        value = source.get(key)
        if isinstance(value, str) and _present(value):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    return None if value is None else str(value)


def _sub(payload: Any, key: str) -> Any:
    """``payload[key]`` when it is a mapping, else the payload itself."""
    if isinstance(payload, Mapping):
        nested = payload.get(key)
        if isinstance(nested, Mapping):
            return nested
    return payload


def _list(value: Any) -> list:
    return list(value) if isinstance(value, (list, tuple)) else []


def pick_instance(payload: Any) -> str:
    """Tenant id of a payload.

    Explicit top-level fields outrank the nested one:
    ``instance`` → ``instanceName`` → ``data.instance`` → ``"unknown"``.
    """
    if not isinstance(payload, Mapping):
        return UNKNOWN_INSTANCE
    value = _first(payload, "instance", "instanceName")
    if value is None:
        value = _first(payload.get("data"), "instance")
    if value is None:
        return UNKNOWN_INSTANCE
    return str(value).strip() or UNKNOWN_INSTANCE


# ─── Extractors ──────────────────────────────────────────


def _message(payload: Any) -> Classified:
    msg = _sub(payload, "message")
    msg_id = _first(msg, "id", "_id", "messageId")
    sender = _first(msg, "from", "author", "sender")

    text = _first(msg, "text", "body")
    if text is None:
        text = _first(msg.get("content") if isinstance(msg, Mapping) else None, "text", "body")
    snippet = str(text)[:SNIPPET_MAX] if text is not None else None

    attachments = msg.get("attachments") if isinstance(msg, Mapping) else None
    return Classified(
        type="message",
        id=_text(msg_id),
        actor=_text(sender),
        body={
            "id": msg_id,
            "from": sender,
            "snippet": snippet,
            "timestamp": _first(msg, "timestamp", "ts", "createdAt"),
            "attachmentsCount": len(attachments) if isinstance(attachments, list) else 0,
        },
    )


def _contact(payload: Any) -> Classified:
    contact = _sub(payload, "contact")
    contact_id = _first(contact, "id", "_id", "contactId", "jid")
    phones = _first(contact, "phones", "phoneNumbers")
    emails = _first(contact, "emails")
    return Classified(
        type="contact",
        id=_text(contact_id),
        body={
            "id": contact_id,
            "name": _first(contact, "name", "pushName", "displayName"),
            "phones": _list(phones)[:MAX_PHONES],
            "emails": _list(emails)[:MAX_EMAILS],
        },
    )


def _chat(payload: Any) -> Classified:
    chat = _sub(payload, "chat")
    chat_id = _first(chat, "id", "_id", "chatId", "remoteJid")
    participants = chat.get("participants") if isinstance(chat, Mapping) else None
    return Classified(
        type="chat",
        id=_text(chat_id),
        body={
            "id": chat_id,
            "title": _first(chat, "title", "name", "subject"),
            "participantsCount": len(participants) if isinstance(participants, list) else 0,
        },
    )


def _verbatim(kind: str) -> Callable[[Any], Classified]:
    def extract(payload: Any) -> Classified:
        return Classified(type=kind, body=copy.deepcopy(payload))

    return extract


def _cap_scalar(value: Any) -> Any:
    if isinstance(value, str) and len(value) > GENERIC_LONG_STRING:
        return value[:GENERIC_STRING_KEEP] + ELLIPSIS
    if isinstance(value, Mapping):
        return OBJECT_PLACEHOLDER
    if isinstance(value, (list, tuple)):
        return OBJECT_PLACEHOLDER
    return value


def _cap(value: Any) -> Any:
    """Size-cap one generic value."""
    if isinstance(value, (list, tuple)):
        return [_cap_scalar(item) for item in list(value)[:GENERIC_LIST_KEEP]]
    return _cap_scalar(value)


def _generic(payload: Any) -> Classified:
    kind = _first_str(payload, "type", "eventType")
    if isinstance(payload, Mapping):
        body = {
            key: _cap(value)
            for key, value in list(payload.items())[:GENERIC_MAX_KEYS]
        }
    else:
        body = _cap(payload)
    return Classified(type=kind or "generic", body=body)


_EXTRACTORS: dict[str, Callable[[Any], Classified]] = {
    MESSAGES_UPSERT: _message,
    CONTACTS_UPDATE: _contact,
    CHATS_UPDATE: _chat,
    QRCODE_UPDATED: _verbatim("qrcode"),
    CONNECTION_UPDATE: _verbatim("connection"),
}


def extractor_for(event_name: str) -> Callable[[Any], Classified]:
    """Exact-match rule for ``event_name``, or the generic fallback."""
    return _EXTRACTORS.get(event_name, _generic)


# ─── Raw payload ─────────────────────────────────────────


def _truncate_bytes(text: str, max_bytes: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore") + TRUNCATED_MARKER


def serialize_raw(payload: Any, max_bytes: int = 512) -> str:
    """JSON copy of ``payload`` capped at ``max_bytes``. Never raises."""
    try:
        text = json.dumps(payload, ensure_ascii=False)
    except Exception:
        try:
            text = str(payload)
        except Exception:
            return UNSERIALIZABLE
    try:
        return _truncate_bytes(text, max_bytes)
    except Exception:
        return UNSERIALIZABLE


# ─── Entry point ─────────────────────────────────────────


def normalize(
    event_name: str,
    payload: Any,
    *,
    include_raw: bool = False,
    raw_max: int = 512,
) -> Envelope:
    """Build the envelope for one upstream event. Never raises."""
    event = str(event_name)
    try:
        instance = pick_instance(payload)
    except Exception:
        instance = UNKNOWN_INSTANCE
    raw = serialize_raw(payload, raw_max) if include_raw else None

    try:
        classified = extractor_for(event)(payload)
        return Envelope(
            event=event,
            instance=instance,
            id=classified.id,
            type=classified.type,
            actor=classified.actor,
            body=classified.body,
            raw=raw,
        )
    except Exception as e:
        return Envelope(
            event=event,
            instance=instance,
            meta={
                "error": NORMALIZATION_FAILED,
                "detail": f"{type(e).__name__}: {e}",
            },
            raw=raw,
        )
