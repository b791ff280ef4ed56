"""Backend forwarder — POST envelopes to the webhook backend.

Learn: Delivery is at-least-once-ish with a small, bounded retry budget:
- transport errors, timeouts and 5xx responses are retried,
- 4xx responses are final (a malformed request won't get better),
- the delay between attempts grows linearly (attempt × base delay).

``forward`` never raises. Whatever happens is logged and summarized in a
ForwardOutcome; the dispatcher treats it as fire-and-forget and publishes
to browsers regardless.
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from evobridge.config import Settings
from evobridge.events.envelope import Envelope

logger = structlog.get_logger()


@dataclass
class ForwardOutcome:
    """Result of one delivery (all attempts included)."""

    delivered: bool
    attempts: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None
    skipped: bool = False  # no backend configured
    rejected: bool = False  # 4xx, not retried


class BackendForwarder:
    """Delivers envelopes to one HTTP endpoint with retry + linear backoff."""

    def __init__(self, settings: Settings, client: httpx.AsyncClient):
        self.url = settings.backend_url
        self.webhook_secret = settings.backend_webhook_secret
        self.api_key = settings.backend_api_key
        self.max_attempts = max(1, settings.forward_retries)
        self.timeout = settings.forward_timeout
        self.backoff = settings.forward_backoff
        self.client = client

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    def build_headers(self, request_id: str) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "x-request-id": request_id,
        }
        if self.webhook_secret:
            headers["x-webhook-secret"] = self.webhook_secret
        if self.api_key:
            headers["x-evolution-api-key"] = self.api_key
        return headers

    async def forward(self, envelope: Envelope) -> ForwardOutcome:
        """POST ``envelope`` to the backend. Never raises."""
        if not self.enabled:
            return ForwardOutcome(delivered=True, skipped=True)

        request_id = str(uuid.uuid4())
        log = logger.bind(
            stage="forward",
            event=envelope.event,
            instance=envelope.instance,
            request_id=request_id,
        )
        try:
            body = envelope.to_wire()
            headers = self.build_headers(request_id)
        except Exception as e:
            log.exception("forward.serialize_failed")
            return ForwardOutcome(delivered=False, error=str(e))

        outcome = ForwardOutcome(delivered=False)
        for attempt in range(1, self.max_attempts + 1):
            outcome.attempts = attempt
            try:
                resp = await self.client.post(
                    self.url, json=body, headers=headers, timeout=self.timeout
                )
            except httpx.HTTPError as e:
                outcome.error = f"{type(e).__name__}: {e}"
                outcome.status_code = None
                log.warning(
                    "forward.attempt_failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    error=outcome.error,
                )
            except Exception as e:
                # Anything else is a bug on our side; retrying won't help
                outcome.error = f"{type(e).__name__}: {e}"
                log.exception("forward.unexpected_error", attempt=attempt)
                return outcome
            else:
                outcome.status_code = resp.status_code
                if resp.is_success:
                    outcome.delivered = True
                    outcome.error = None
                    log.info(
                        "forward.delivered",
                        attempt=attempt,
                        status_code=resp.status_code,
                    )
                    return outcome
                if 400 <= resp.status_code < 500:
                    outcome.rejected = True
                    outcome.error = f"HTTP {resp.status_code}"
                    log.error(
                        "forward.rejected",
                        attempt=attempt,
                        status_code=resp.status_code,
                    )
                    return outcome
                outcome.error = f"HTTP {resp.status_code}"
                log.warning(
                    "forward.attempt_failed",
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    status_code=resp.status_code,
                )

            if attempt < self.max_attempts and self.backoff > 0:
                await asyncio.sleep(attempt * self.backoff)

        log.error(
            "forward.failed",
            attempts=outcome.attempts,
            status_code=outcome.status_code,
            error=outcome.error,
        )
        return outcome
