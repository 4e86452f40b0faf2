"""Reward-claim condition evaluator.

Surfaces reward opportunities whose net claimable value (USD value minus
the gas estimate) exceeds a threshold, escalating severity as the claim
deadline approaches.
"""

from __future__ import annotations

from decimal import Decimal

from defi_alerts.evaluator.base import ConditionEvaluator, hours_until
from defi_alerts.evaluator.models import (
    AlertCandidate,
    AlertKind,
    AlertReferences,
    Clock,
    RewardSnapshot,
    Severity,
    as_utc,
    parse_decimal,
)

# Default configuration
DEFAULT_NET_THRESHOLD_USD = Decimal("10")
DEFAULT_WARNING_HOURS = 24.0
DEFAULT_CRITICAL_HOURS = 12.0


class RewardClaimEvaluator(ConditionEvaluator[RewardSnapshot]):
    """Evaluator for claimable reward opportunities.

    Example:
        ```python
        evaluator = RewardClaimEvaluator(net_threshold_usd=Decimal("25"))
        candidate = evaluator.evaluate(snapshot)
        if candidate is not None:
            print(candidate.severity, candidate.title)
        ```
    """

    kind = AlertKind.REWARD_CLAIM

    def __init__(
        self,
        *,
        net_threshold_usd: Decimal = DEFAULT_NET_THRESHOLD_USD,
        warning_hours: float = DEFAULT_WARNING_HOURS,
        critical_hours: float = DEFAULT_CRITICAL_HOURS,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the evaluator.

        Args:
            net_threshold_usd: Net value (USD) that must be exceeded to alert.
            warning_hours: Deadline distance at or below which severity is warning.
            critical_hours: Deadline distance at or below which severity is critical.
            clock: Time source.
        """
        super().__init__(clock=clock)
        self._net_threshold = net_threshold_usd
        self._warning_hours = warning_hours
        self._critical_hours = critical_hours

    def entity_key(self, snapshot: RewardSnapshot) -> str:
        return snapshot.opportunity_id

    def evaluate(self, snapshot: RewardSnapshot) -> AlertCandidate | None:
        amount = parse_decimal(snapshot.amount, field_name="amount")
        usd_value = parse_decimal(snapshot.usd_value, field_name="usd_value")
        gas_estimate = parse_decimal(snapshot.gas_estimate_usd, field_name="gas_estimate_usd")

        net_value = usd_value - gas_estimate if usd_value is not None and gas_estimate is not None else usd_value
        if net_value is None or net_value <= self._net_threshold:
            return None

        severity = self.severity_for_deadline(snapshot)
        token_label = snapshot.token_symbol or snapshot.token_id
        gas_text = f"{gas_estimate:.2f}" if gas_estimate is not None else "n/a"

        return AlertCandidate(
            kind=self.kind,
            identity={
                "wallet_id": snapshot.wallet_id,
                "opportunity_id": snapshot.opportunity_id,
            },
            severity=severity,
            title=f"Claim {token_label} rewards",
            description=f"Net USD value ≈ {net_value:.2f}. Gas estimate {gas_text}.",
            expires_at=as_utc(snapshot.claim_deadline) if snapshot.claim_deadline else None,
            metadata={
                "amount": str(amount) if amount is not None else None,
                "usd_value": str(usd_value),
                "gas_estimate_usd": str(gas_estimate) if gas_estimate is not None else None,
                "net_value_usd": str(net_value),
            },
            references=AlertReferences(
                wallet_id=snapshot.wallet_id,
                protocol_id=snapshot.protocol_id,
                token_id=snapshot.token_id,
                reward_opportunity_id=snapshot.opportunity_id,
            ),
        )

    def severity_for_deadline(self, snapshot: RewardSnapshot) -> Severity:
        """Derive severity from the time left before the claim deadline.

        A deadline already in the past counts as critical.
        """
        if snapshot.claim_deadline is None:
            return Severity.INFO
        remaining = hours_until(snapshot.claim_deadline, self._clock.now())
        if remaining <= self._critical_hours:
            return Severity.CRITICAL
        if remaining <= self._warning_hours:
            return Severity.WARNING
        return Severity.INFO
