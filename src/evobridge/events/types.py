"""Event name constants.

Learn: Upstream names are whatever Evolution API emits; only the ones the
normalizer classifies specially live here. Everything else falls through
to the generic rule.
"""

# ─── Upstream (Evolution API) events with dedicated rules ──

MESSAGES_UPSERT = "messages.upsert"
CONTACTS_UPDATE = "contacts.update"
CHATS_UPDATE = "chats.update"
QRCODE_UPDATED = "qrcode.updated"
CONNECTION_UPDATE = "connection.update"

# ─── Downstream ──────────────────────────────────────────

# Emitted to browser rooms
FRONT_EVENT = "evolution:event"

# Sent by browsers to subscribe to an instance
JOIN_INSTANCE = "join_instance"

# socket.io client lifecycle names; never valid as forwarded events
LIFECYCLE_EVENTS = frozenset({"connect", "disconnect", "connect_error"})
