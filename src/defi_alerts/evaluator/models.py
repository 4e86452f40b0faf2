"""Data models for the evaluator module.

Snapshot inputs, the parsed risk descriptor, and the alert candidate each
evaluator produces. Severity, kind and status enums are shared by the
reconciler, the dispatcher and the storage layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Protocol


class Severity(str, Enum):
    """Alert severity, ordered from least to most urgent."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class AlertKind(str, Enum):
    """Triggering condition families."""

    REWARD_CLAIM = "reward_claim"
    POSITION_HEALTH = "position_health"
    GOVERNANCE_EPOCH = "governance_epoch"


class AlertStatus(str, Enum):
    """Alert lifecycle states."""

    PENDING = "pending"
    DISPATCHED = "dispatched"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


OPEN_STATUSES = (AlertStatus.PENDING, AlertStatus.DISPATCHED)


class RiskLevel(str, Enum):
    """Precomputed position risk level carried in position metadata."""

    CRITICAL = "critical"
    WARNING = "warning"
    HEALTHY = "healthy"
    UNKNOWN = "unknown"


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class SnapshotParseError(ValueError):
    """Raised when a snapshot field cannot be parsed."""


def parse_decimal(value: object, *, field_name: str) -> Decimal | None:
    """Parse an optional numeric snapshot field into a Decimal.

    Raises:
        SnapshotParseError: If the value is present but not a finite number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise SnapshotParseError(f"{field_name} must be numeric, got bool")
    if isinstance(value, Decimal):
        parsed = value
    elif isinstance(value, (int, float, str)):
        text = str(value).strip()
        if not text:
            return None
        try:
            parsed = Decimal(text)
        except InvalidOperation as e:
            raise SnapshotParseError(f"{field_name} is not a decimal: {value!r}") from e
    else:
        raise SnapshotParseError(f"{field_name} has unsupported type {type(value).__name__}")
    if not parsed.is_finite():
        raise SnapshotParseError(f"{field_name} is not finite: {value!r}")
    return parsed


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


@dataclass
class FixedClock:
    """Clock pinned to a settable instant (used by tests and replays)."""

    current: datetime

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


@dataclass(frozen=True)
class RewardSnapshot:
    """Claimable reward opportunity for a wallet.

    Numeric fields are kept as received so malformed upstream values are
    detected by the evaluator rather than at load time.
    """

    opportunity_id: str
    wallet_id: str
    protocol_id: str
    token_id: str
    amount: Decimal | str | None
    usd_value: Decimal | str | None = None
    gas_estimate_usd: Decimal | str | None = None
    claim_deadline: datetime | None = None
    token_symbol: str | None = None


@dataclass(frozen=True)
class PositionSnapshot:
    """Leveraged position with an optional health ratio and risk metadata."""

    position_id: str
    wallet_id: str
    protocol_id: str
    health_ratio: Decimal | str | None = None
    metadata: dict[str, Any] | None = None
    position_type: str | None = None
    pool_label: str | None = None


@dataclass(frozen=True)
class EpochSnapshot:
    """Governance vote epoch."""

    epoch_id: str
    protocol_id: str
    starts_at: datetime
    ends_at: datetime
    protocol_name: str | None = None


@dataclass(frozen=True)
class UnknownRisk:
    """No usable risk descriptor in the position metadata."""

    level: RiskLevel = RiskLevel.UNKNOWN


@dataclass(frozen=True)
class KnownRisk:
    """Risk descriptor parsed from position metadata."""

    level: RiskLevel
    signals: tuple[str, ...] = ()
    metrics: dict[str, Any] | None = None


RiskInfo = UnknownRisk | KnownRisk


@dataclass(frozen=True)
class AlertReferences:
    """Denormalized foreign keys shown alongside an alert."""

    wallet_id: str | None = None
    protocol_id: str | None = None
    token_id: str | None = None
    reward_opportunity_id: str | None = None
    position_id: str | None = None
    epoch_id: str | None = None


@dataclass(frozen=True)
class AlertCandidate:
    """Alert descriptor produced by an evaluator for one snapshot entity.

    Attributes:
        kind: Condition family.
        identity: Natural keys that define "the same condition". Only these
            and ``kind`` feed the fingerprint.
        severity: Derived severity.
        title: Human-readable title.
        description: Human-readable details.
        expires_at: Domain deadline (claim deadline, epoch start).
        metadata: Free-form payload for display and audit.
        references: Foreign keys of the entities involved.
    """

    kind: AlertKind
    identity: dict[str, str]
    severity: Severity
    title: str
    description: str | None = None
    expires_at: datetime | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    references: AlertReferences = field(default_factory=AlertReferences)


@dataclass
class EvaluationBatch:
    """Result of evaluating every snapshot entity of one domain."""

    kind: AlertKind
    candidates: list[AlertCandidate] = field(default_factory=list)
    evaluated: int = 0
    skipped: int = 0
