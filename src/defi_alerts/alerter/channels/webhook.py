"""Webhook delivery channel.

POSTs a chat-style JSON payload (Slack/Discord compatible ``text`` field)
to a configured URL.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

from defi_alerts.alerter.formatter import format_webhook_payload
from defi_alerts.alerter.models import DeliveryResult
from defi_alerts.evaluator.models import Clock, SystemClock

if TYPE_CHECKING:
    from defi_alerts.storage.repos import AlertDTO

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
MAX_RESPONSE_CHARS = 2000


class WebhookChannel:
    """HTTP webhook sink.

    Non-2xx responses yield a failed result with the status code and
    response body; transport errors (``httpx.HTTPError``) propagate to the
    dispatcher, which records them as failed attempts.
    """

    def __init__(
        self,
        url: str,
        *,
        name: str = "webhook",
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the channel.

        Args:
            url: Webhook endpoint.
            name: Channel key recorded on delivery rows.
            client: Shared HTTP client. One is created (and owned) if omitted.
            timeout: Request timeout in seconds for an owned client.
            clock: Time source for the payload footer and delivery metadata.
        """
        self.name = name
        self._url = url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._clock = clock or SystemClock()

    async def deliver(self, alert: AlertDTO) -> DeliveryResult:
        sent_at = self._clock.now()
        response = await self._client.post(
            self._url,
            json=format_webhook_payload(alert, sent_at=sent_at),
            headers={"content-type": "application/json"},
        )
        body = response.text[:MAX_RESPONSE_CHARS]
        if not response.is_success:
            logger.warning("Webhook %s returned %d for alert %s", self.name, response.status_code, alert.id)
            return DeliveryResult(
                success=False,
                metadata={
                    "status_code": response.status_code,
                    "response": body or "no body",
                    "attempted_at": sent_at.isoformat(),
                },
            )
        return DeliveryResult(
            success=True,
            metadata={
                "status_code": response.status_code,
                "response": body or "ok",
                "delivered_at": sent_at.isoformat(),
            },
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
