"""Governance epoch evaluator.

Warns about vote epochs starting within the warning window; epochs
starting within the critical window are critical.
"""

from __future__ import annotations

from datetime import timedelta

from defi_alerts.evaluator.base import ConditionEvaluator
from defi_alerts.evaluator.models import (
    AlertCandidate,
    AlertKind,
    AlertReferences,
    Clock,
    EpochSnapshot,
    Severity,
    as_utc,
)

DEFAULT_WARNING_HOURS = 24.0
DEFAULT_CRITICAL_HOURS = 12.0


class GovernanceEpochEvaluator(ConditionEvaluator[EpochSnapshot]):
    """Evaluator for upcoming governance epochs."""

    kind = AlertKind.GOVERNANCE_EPOCH

    def __init__(
        self,
        *,
        warning_hours: float = DEFAULT_WARNING_HOURS,
        critical_hours: float = DEFAULT_CRITICAL_HOURS,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(clock=clock)
        self._warning_hours = warning_hours
        self._critical_hours = critical_hours

    @property
    def warning_window(self) -> timedelta:
        return timedelta(hours=self._warning_hours)

    def entity_key(self, snapshot: EpochSnapshot) -> str:
        return snapshot.epoch_id

    def evaluate(self, snapshot: EpochSnapshot) -> AlertCandidate | None:
        now = as_utc(self._clock.now())
        starts_at = as_utc(snapshot.starts_at)
        ends_at = as_utc(snapshot.ends_at)

        if starts_at < now or starts_at > now + self.warning_window:
            return None

        if starts_at <= now + timedelta(hours=self._critical_hours):
            severity = Severity.CRITICAL
        else:
            severity = Severity.WARNING

        protocol_label = snapshot.protocol_name or snapshot.protocol_id
        return AlertCandidate(
            kind=self.kind,
            identity={
                "protocol_id": snapshot.protocol_id,
                "epoch_id": snapshot.epoch_id,
            },
            severity=severity,
            title=f"{protocol_label} epoch starts soon",
            description=f"Epoch starts at {starts_at.isoformat()}.",
            expires_at=starts_at,
            metadata={
                "epoch_id": snapshot.epoch_id,
                "starts_at": starts_at.isoformat(),
                "ends_at": ends_at.isoformat(),
            },
            references=AlertReferences(
                protocol_id=snapshot.protocol_id,
                epoch_id=snapshot.epoch_id,
            ),
        )
