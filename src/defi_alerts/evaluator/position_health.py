"""Leveraged position health evaluator.

Prefers the precomputed risk descriptor stored in position metadata
(``metadata["risk"] = {"level", "signals", "metrics"}``) and falls back to
the numeric health ratio when the descriptor is missing or inconclusive.
Only warning and critical positions produce alerts.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

from defi_alerts.evaluator.base import ConditionEvaluator
from defi_alerts.evaluator.models import (
    AlertCandidate,
    AlertKind,
    AlertReferences,
    Clock,
    KnownRisk,
    PositionSnapshot,
    RiskInfo,
    RiskLevel,
    Severity,
    UnknownRisk,
    parse_decimal,
)

# Default configuration
DEFAULT_WARNING_HEALTH = Decimal("1.2")
DEFAULT_CRITICAL_HEALTH = Decimal("1.05")

SIGNAL_SEPARATOR = " · "


def parse_risk_info(metadata: object) -> RiskInfo:
    """Parse the untrusted risk descriptor out of position metadata.

    Anything that is not a mapping under ``risk`` yields :class:`UnknownRisk`.
    Unrecognized levels are kept as ``RiskLevel.UNKNOWN``; non-string signals
    and non-mapping metrics are dropped.
    """
    if not isinstance(metadata, dict):
        return UnknownRisk()
    risk = metadata.get("risk")
    if not isinstance(risk, dict):
        return UnknownRisk()

    raw_level = risk.get("level")
    try:
        level = RiskLevel(raw_level) if isinstance(raw_level, str) else RiskLevel.UNKNOWN
    except ValueError:
        level = RiskLevel.UNKNOWN

    raw_signals = risk.get("signals")
    signals: tuple[str, ...] = ()
    if isinstance(raw_signals, list):
        signals = tuple(s for s in raw_signals if isinstance(s, str))

    raw_metrics = risk.get("metrics")
    metrics = dict(raw_metrics) if isinstance(raw_metrics, dict) else None

    return KnownRisk(level=level, signals=signals, metrics=metrics)


def flatten_metrics(metrics: dict[str, Any] | None) -> dict[str, Any] | None:
    """Keep scalar metric values and JSON-encode nested ones."""
    if metrics is None:
        return None
    flat: dict[str, Any] = {}
    for key, value in metrics.items():
        if value is None or isinstance(value, (bool, int, float, str)):
            flat[str(key)] = value
        else:
            flat[str(key)] = json.dumps(value, default=str, sort_keys=True)
    return flat


class PositionHealthEvaluator(ConditionEvaluator[PositionSnapshot]):
    """Evaluator for leveraged position health."""

    kind = AlertKind.POSITION_HEALTH

    def __init__(
        self,
        *,
        warning_health: Decimal = DEFAULT_WARNING_HEALTH,
        critical_health: Decimal = DEFAULT_CRITICAL_HEALTH,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            warning_health: Health ratio below which a position is at warning.
            critical_health: Health ratio below which a position is critical.
            clock: Time source.
        """
        super().__init__(clock=clock)
        self._warning_health = warning_health
        self._critical_health = critical_health

    def entity_key(self, snapshot: PositionSnapshot) -> str:
        return snapshot.position_id

    def severity_for_health(self, health: Decimal | None) -> Severity | None:
        """Map a health ratio to a severity, or None when healthy/unknown."""
        if health is None:
            return None
        if health < self._critical_health:
            return Severity.CRITICAL
        if health < self._warning_health:
            return Severity.WARNING
        return None

    def evaluate(self, snapshot: PositionSnapshot) -> AlertCandidate | None:
        health = parse_decimal(snapshot.health_ratio, field_name="health_ratio")
        risk = parse_risk_info(snapshot.metadata)

        if risk.level is RiskLevel.CRITICAL:
            severity: Severity | None = Severity.CRITICAL
        elif risk.level is RiskLevel.WARNING:
            severity = Severity.WARNING
        elif risk.level is RiskLevel.HEALTHY:
            severity = None
        else:
            severity = self.severity_for_health(health)

        if severity is None:
            return None

        signals = list(risk.signals) if isinstance(risk, KnownRisk) else []
        if signals:
            description = SIGNAL_SEPARATOR.join(signals)
        elif health is not None:
            description = f"Health ratio at {health:.2f}x"
        else:
            description = f"{snapshot.pool_label or snapshot.position_id} position requires review."

        position_label = snapshot.position_type or "Leveraged"
        if health is not None:
            title = f"{position_label} position health at {health:.2f}x"
        else:
            title = f"{position_label} position health unknown"

        return AlertCandidate(
            kind=self.kind,
            identity={
                "wallet_id": snapshot.wallet_id,
                "position_id": snapshot.position_id,
            },
            severity=severity,
            title=title,
            description=description,
            metadata={
                "health_ratio": str(health) if health is not None else None,
                "pool": snapshot.pool_label,
                "risk_level": risk.level.value,
                "risk_signals": signals,
                "risk_metrics": flatten_metrics(risk.metrics) if isinstance(risk, KnownRisk) else None,
            },
            references=AlertReferences(
                wallet_id=snapshot.wallet_id,
                protocol_id=snapshot.protocol_id,
                position_id=snapshot.position_id,
            ),
        )
