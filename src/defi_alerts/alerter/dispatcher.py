"""Delivery dispatcher for pending alerts.

Attempts every configured channel for each pending alert, skipping channels
that already delivered it, recording every attempt in the append-only
delivery log, and promoting the alert to dispatched once any channel has
delivered it.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING

from defi_alerts.alerter.channels import unique_channels
from defi_alerts.alerter.models import AlertChannel, DeliveryResult, DispatchResult
from defi_alerts.evaluator.models import Clock, SystemClock
from defi_alerts.storage.repos import AlertRepository, DeliveryRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from defi_alerts.storage.repos import AlertDTO

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 50
DEFAULT_TIMEOUT_SECONDS = 10.0


class DeliveryDispatcher:
    """Resumable, per-channel idempotent alert delivery.

    A channel that fails is retried on the next run; a channel that has
    succeeded for an alert is never invoked again for it. Each alert's
    attempts are committed before moving on, so an aborted dispatch leaves
    undelivered alerts pending.

    Example:
        ```python
        dispatcher = DeliveryDispatcher(session, [ConsoleChannel()])
        result = await dispatcher.dispatch_pending()
        print(result.alerts_dispatched)
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        channels: Sequence[AlertChannel],
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            session: Session used for alert and delivery writes.
            channels: Channels in delivery order. Names must be unique and
                must not be the acknowledgement channel.
            batch_limit: Maximum pending alerts handled per call.
            timeout_seconds: Per-channel delivery timeout.
            clock: Time source for audit timestamps.

        Raises:
            ValueError: If a channel is named after the acknowledgement channel.
        """
        self._session = session
        self._alerts = AlertRepository(session)
        self._deliveries = DeliveryRepository(session)
        self._channels = unique_channels(channels)
        self._batch_limit = batch_limit
        self._timeout = timeout_seconds
        self._clock = clock or SystemClock()

    async def dispatch_pending(self) -> DispatchResult:
        """Deliver the oldest pending alerts across all channels."""
        result = DispatchResult()
        for channel in self._channels:
            result.stats_for(channel.name)

        if not self._channels:
            logger.warning("No delivery channels configured; skipping dispatch")
            return result

        pending = await self._alerts.find_pending(self._batch_limit)
        for alert in pending:
            result.alerts_considered += 1
            if await self._dispatch_alert(alert, result):
                result.alerts_dispatched += 1
            await self._session.commit()

        logger.info(
            "Dispatch complete: considered=%d dispatched=%d delivered=%d failed=%d",
            result.alerts_considered,
            result.alerts_dispatched,
            result.success_count,
            result.failure_count,
        )
        return result

    async def _dispatch_alert(self, alert: AlertDTO, result: DispatchResult) -> bool:
        """Try every channel for one alert; return True if it was marked dispatched."""
        delivered = False
        for channel in self._channels:
            stats = result.stats_for(channel.name)
            if await self._deliveries.has_successful_delivery(alert.id, channel.name):
                logger.debug("Alert %s already delivered via %s", alert.id, channel.name)
                stats.skipped += 1
                delivered = True
                continue

            outcome = await self._attempt(channel, alert)
            await self._deliveries.append(
                alert.id,
                channel.name,
                success=outcome.success,
                metadata=outcome.metadata,
                now=self._clock.now(),
            )
            if outcome.success:
                stats.delivered += 1
                delivered = True
            else:
                stats.failed += 1

        if delivered:
            return await self._alerts.mark_dispatched(alert.id, now=self._clock.now())
        return False

    async def _attempt(self, channel: AlertChannel, alert: AlertDTO) -> DeliveryResult:
        try:
            return await asyncio.wait_for(channel.deliver(alert), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning("Delivery of alert %s via %s timed out", alert.id, channel.name)
            error = f"timed out after {self._timeout:g}s"
        except Exception as e:
            logger.warning("Delivery of alert %s via %s failed: %s", alert.id, channel.name, e)
            error = str(e) or type(e).__name__
        return DeliveryResult(
            success=False,
            metadata={"error": error, "attempted_at": self._clock.now().isoformat()},
        )
