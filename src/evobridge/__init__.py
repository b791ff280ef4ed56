"""evobridge — Evolution API event relay.

Listens to one Evolution API socket.io stream, normalizes every event into
a versioned envelope, forwards it to a webhook backend and republishes it
to browser clients subscribed to the event's instance room.
"""

__version__ = "0.1.0"
