"""Condition evaluation layer - Snapshot entities to alert candidates."""

from defi_alerts.evaluator.governance import GovernanceEpochEvaluator
from defi_alerts.evaluator.models import (
    AlertCandidate,
    AlertKind,
    AlertStatus,
    EpochSnapshot,
    PositionSnapshot,
    RewardSnapshot,
    Severity,
)
from defi_alerts.evaluator.position_health import PositionHealthEvaluator
from defi_alerts.evaluator.reward import RewardClaimEvaluator

__all__ = [
    "AlertCandidate",
    "AlertKind",
    "AlertStatus",
    "EpochSnapshot",
    "GovernanceEpochEvaluator",
    "PositionHealthEvaluator",
    "PositionSnapshot",
    "RewardClaimEvaluator",
    "RewardSnapshot",
    "Severity",
]
