"""Event dispatcher — upstream events into the normalize/forward/publish pipeline."""

from evobridge.dispatcher.event_dispatcher import (
    DispatcherStats,
    EventDispatcher,
    EventSource,
)

__all__ = ["DispatcherStats", "EventDispatcher", "EventSource"]
