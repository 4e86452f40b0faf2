"""Console/log delivery channel."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from defi_alerts.alerter.formatter import format_console_lines
from defi_alerts.alerter.models import DeliveryResult
from defi_alerts.evaluator.models import Clock, SystemClock

if TYPE_CHECKING:
    from defi_alerts.storage.repos import AlertDTO

logger = logging.getLogger(__name__)


class ConsoleChannel:
    """Writes alerts to the application log. Always succeeds."""

    def __init__(
        self,
        name: str = "console",
        *,
        log: logging.Logger | None = None,
        clock: Clock | None = None,
    ) -> None:
        self.name = name
        self._log = log or logger
        self._clock = clock or SystemClock()

    async def deliver(self, alert: AlertDTO) -> DeliveryResult:
        for line in format_console_lines(alert):
            self._log.info(line)
        return DeliveryResult(
            success=True,
            metadata={
                "delivered_at": self._clock.now().isoformat(),
                "severity": alert.severity.value,
            },
        )
