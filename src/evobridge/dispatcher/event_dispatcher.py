"""Event dispatcher — bridges the upstream stream to the pipeline.

Learn: Two subscription modes, picked from config:
- filtered: FORWARD_EVENTS lists names → one handler registered per name
- catch-all: FORWARD_EVENTS empty → one wildcard handler sees every name

For each event the dispatcher normalizes synchronously, then spawns two
independent tasks: forward (webhook) and publish (browser room). Each task
gets its own copy of the envelope. Neither waits for the other and a
failure in one never cancels the other, so a slow or broken backend can't
starve browsers and vice versa. A degraded envelope (normalization failed)
is still delivered to both so consumers can see the failure.

In-flight tasks are tracked only so shutdown can drain them best-effort.
No ordering is promised between events.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Protocol

import structlog

from evobridge.config import Settings
from evobridge.delivery.forwarder import BackendForwarder, ForwardOutcome
from evobridge.events.envelope import Envelope
from evobridge.events.normalizer import normalize
from evobridge.events.types import LIFECYCLE_EVENTS
from evobridge.realtime.publisher import RoomPublisher

logger = structlog.get_logger()


class EventSource(Protocol):
    """What the dispatcher needs from the upstream connection."""

    def on(self, event: str, handler: Callable[..., Awaitable[None]]) -> None: ...

    def on_any(self, handler: Callable[..., Awaitable[None]]) -> None: ...


@dataclass
class DispatcherStats:
    """Runtime counters for /health."""
    received: int = 0
    normalization_errors: int = 0
    forwarded: int = 0
    forward_failures: int = 0
    published: int = 0
    dropped: int = 0
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def as_dict(self) -> dict:
        return {
            "received": self.received,
            "normalization_errors": self.normalization_errors,
            "forwarded": self.forwarded,
            "forward_failures": self.forward_failures,
            "published": self.published,
            "dropped": self.dropped,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class Dispatch:
    """One handled event: its envelope and the two delivery tasks."""
    envelope: Envelope
    forward_task: "asyncio.Task[Optional[ForwardOutcome]]"
    publish_task: "asyncio.Task[int]"


def payload_from_args(args: tuple) -> Any:
    """socket.io events carry 0..n args; a single arg is the payload itself."""
    if len(args) == 1:
        return args[0]
    if not args:
        return None
    return list(args)


class EventDispatcher:
    def __init__(
        self,
        settings: Settings,
        forwarder: BackendForwarder,
        publisher: RoomPublisher,
    ):
        self.forward_events = list(settings.forward_events)
        self.include_raw = settings.include_raw
        self.raw_max = settings.raw_max
        self.forwarder = forwarder
        self.publisher = publisher
        self.stats = DispatcherStats()
        self._tasks: set[asyncio.Task] = set()

    @property
    def catch_all(self) -> bool:
        return not self.forward_events

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ─── Subscription ─────────────────────────────────────

    def subscribe(self, source: EventSource) -> None:
        """Register handlers on ``source`` for the configured mode."""
        if self.catch_all:
            source.on_any(self._on_any)
            logger.info("dispatcher.subscribed", mode="catch_all")
            return
        for name in self.forward_events:
            if name in LIFECYCLE_EVENTS:
                logger.warning("dispatcher.reserved_event_skipped", event=name)
                continue
            source.on(name, self._named_handler(name))
        logger.info("dispatcher.subscribed", mode="filtered", events=self.forward_events)

    def _named_handler(self, name: str) -> Callable[..., Awaitable[None]]:
        async def on_event(*args: Any) -> None:
            self.handle(name, payload_from_args(args))

        return on_event

    async def _on_any(self, event: str, *args: Any) -> None:
        self.handle(event, payload_from_args(args))

    # ─── Pipeline ─────────────────────────────────────────

    def handle(self, event_name: str, payload: Any) -> Dispatch:
        """Normalize one event and schedule its forward + publish tasks.

        Must be called from inside the running event loop.
        """
        envelope = normalize(
            event_name, payload, include_raw=self.include_raw, raw_max=self.raw_max
        )
        self.stats.received += 1

        # Tasks copy the current context, so these bindings follow them
        with structlog.contextvars.bound_contextvars(
            event=envelope.event, instance=envelope.instance
        ):
            if envelope.degraded:
                self.stats.normalization_errors += 1
                logger.warning(
                    "bridge.normalization_failed",
                    stage="normalize",
                    detail=envelope.meta.get("detail"),
                )
            logger.info("bridge.event_received", stage="flow")

            forward_task = self._spawn(self._forward(envelope.copy_for_delivery()))
            publish_task = self._spawn(self._publish(envelope.copy_for_delivery()))

        return Dispatch(envelope, forward_task, publish_task)

    async def process(self, event_name: str, payload: Any) -> tuple[Optional[ForwardOutcome], int]:
        """Handle one event and wait for both deliveries to finish."""
        dispatch = self.handle(event_name, payload)
        outcome, listeners = await asyncio.gather(
            dispatch.forward_task, dispatch.publish_task
        )
        return outcome, listeners

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _forward(self, envelope: Envelope) -> Optional[ForwardOutcome]:
        try:
            outcome = await self.forwarder.forward(envelope)
        except Exception:
            logger.exception("bridge.forward_crashed", stage="forward")
            self.stats.forward_failures += 1
            return None
        if outcome.skipped:
            return outcome
        if outcome.delivered:
            self.stats.forwarded += 1
        else:
            self.stats.forward_failures += 1
        return outcome

    async def _publish(self, envelope: Envelope) -> int:
        try:
            listeners = await self.publisher.publish(envelope)
        except Exception:
            logger.exception("bridge.publish_crashed", stage="publish")
            listeners = 0
        if listeners:
            self.stats.published += 1
        else:
            self.stats.dropped += 1
        return listeners

    # ─── Shutdown ─────────────────────────────────────────

    async def drain(self, timeout: Optional[float] = None) -> int:
        """Wait for in-flight deliveries, cancel what's left after ``timeout``.

        Returns the number of tasks that had to be cancelled.
        """
        pending = set(self._tasks)
        if not pending:
            return 0
        logger.info("dispatcher.draining", in_flight=len(pending), timeout=timeout)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            logger.warning("dispatcher.drain_cancelled", cancelled=len(still_running))
        return len(still_running)
