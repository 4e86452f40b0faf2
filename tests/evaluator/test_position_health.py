"""Tests for the position health evaluator and risk metadata parsing."""

import json
from decimal import Decimal

import pytest

from defi_alerts.evaluator.models import (
    AlertKind,
    FixedClock,
    KnownRisk,
    PositionSnapshot,
    RiskLevel,
    Severity,
    UnknownRisk,
)
from defi_alerts.evaluator.position_health import (
    SIGNAL_SEPARATOR,
    PositionHealthEvaluator,
    flatten_metrics,
    parse_risk_info,
)


@pytest.fixture
def evaluator(clock: FixedClock) -> PositionHealthEvaluator:
    return PositionHealthEvaluator(clock=clock)


def create_position(
    *,
    position_id: str = "pos-1",
    health_ratio: Decimal | str | None = None,
    metadata: dict | None = None,
    position_type: str | None = "LONG",
    pool_label: str | None = "WETH/USDC",
) -> PositionSnapshot:
    return PositionSnapshot(
        position_id=position_id,
        wallet_id="wallet-1",
        protocol_id="extra-finance",
        health_ratio=health_ratio,
        metadata=metadata,
        position_type=position_type,
        pool_label=pool_label,
    )


class TestParseRiskInfo:
    def test_missing_metadata(self) -> None:
        assert parse_risk_info(None) == UnknownRisk()
        assert parse_risk_info({}) == UnknownRisk()
        assert parse_risk_info({"risk": "high"}) == UnknownRisk()

    def test_known_descriptor(self) -> None:
        risk = parse_risk_info(
            {"risk": {"level": "warning", "signals": ["Price near lower bound", 7], "metrics": {"ltv": 0.8}}}
        )

        assert isinstance(risk, KnownRisk)
        assert risk.level is RiskLevel.WARNING
        assert risk.signals == ("Price near lower bound",)
        assert risk.metrics == {"ltv": 0.8}

    def test_unrecognized_level_is_unknown(self) -> None:
        risk = parse_risk_info({"risk": {"level": "SEVERE", "signals": "not-a-list", "metrics": [1]}})

        assert isinstance(risk, KnownRisk)
        assert risk.level is RiskLevel.UNKNOWN
        assert risk.signals == ()
        assert risk.metrics is None


class TestFlattenMetrics:
    def test_nested_values_are_json_encoded(self) -> None:
        flat = flatten_metrics({"ltv": 0.8, "label": "x", "bounds": {"lower": 1, "upper": 2}, "none": None})

        assert flat == {
            "ltv": 0.8,
            "label": "x",
            "bounds": json.dumps({"lower": 1, "upper": 2}, sort_keys=True),
            "none": None,
        }

    def test_none_passthrough(self) -> None:
        assert flatten_metrics(None) is None


class TestHealthFallback:
    def test_critical_health_without_risk(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(create_position(health_ratio=Decimal("1.03")))

        assert candidate is not None
        assert candidate.severity is Severity.CRITICAL
        assert candidate.description == "Health ratio at 1.03x"
        assert candidate.title == "LONG position health at 1.03x"

    def test_warning_health_without_risk(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(create_position(health_ratio="1.10"))
        assert candidate is not None
        assert candidate.severity is Severity.WARNING

    def test_healthy_ratio_is_silent(self, evaluator: PositionHealthEvaluator) -> None:
        assert evaluator.evaluate(create_position(health_ratio=Decimal("1.5"))) is None

    def test_boundaries_are_strict(self, evaluator: PositionHealthEvaluator) -> None:
        at_critical = evaluator.evaluate(create_position(health_ratio=Decimal("1.05")))
        at_warning = evaluator.evaluate(create_position(health_ratio=Decimal("1.2")))

        assert at_critical is not None
        assert at_critical.severity is Severity.WARNING
        assert at_warning is None

    def test_unknown_level_falls_back_to_ratio(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(
            create_position(health_ratio=Decimal("1.01"), metadata={"risk": {"level": "unknown"}})
        )
        assert candidate is not None
        assert candidate.severity is Severity.CRITICAL

    def test_no_ratio_and_no_risk_is_silent(self, evaluator: PositionHealthEvaluator) -> None:
        assert evaluator.evaluate(create_position()) is None


class TestRiskDescriptor:
    def test_risk_level_overrides_ratio(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(
            create_position(
                health_ratio=Decimal("2.0"),
                metadata={"risk": {"level": "critical", "signals": ["Out of range", "Low liquidity"]}},
            )
        )

        assert candidate is not None
        assert candidate.severity is Severity.CRITICAL
        assert candidate.description == SIGNAL_SEPARATOR.join(["Out of range", "Low liquidity"])
        assert candidate.metadata["risk_level"] == "critical"
        assert candidate.metadata["risk_signals"] == ["Out of range", "Low liquidity"]

    def test_healthy_level_suppresses_alert(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(
            create_position(health_ratio=Decimal("1.01"), metadata={"risk": {"level": "healthy"}})
        )
        assert candidate is None

    def test_warning_without_ratio_describes_pool(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(create_position(metadata={"risk": {"level": "warning"}}))

        assert candidate is not None
        assert candidate.severity is Severity.WARNING
        assert candidate.description == "WETH/USDC position requires review."
        assert candidate.title == "LONG position health unknown"
        assert candidate.metadata["health_ratio"] is None

    def test_metrics_are_flattened(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(
            create_position(
                metadata={"risk": {"level": "warning", "metrics": {"range": [1, 2], "ltv": 0.9}}},
            )
        )

        assert candidate is not None
        assert candidate.metadata["risk_metrics"] == {"range": "[1, 2]", "ltv": 0.9}


class TestPositionCandidateShape:
    def test_identity_and_references(self, evaluator: PositionHealthEvaluator) -> None:
        candidate = evaluator.evaluate(create_position(health_ratio=Decimal("1.0"), position_type=None))

        assert candidate is not None
        assert candidate.kind is AlertKind.POSITION_HEALTH
        assert candidate.identity == {"wallet_id": "wallet-1", "position_id": "pos-1"}
        assert candidate.references.position_id == "pos-1"
        assert candidate.references.protocol_id == "extra-finance"
        assert candidate.title.startswith("Leveraged position health")

    def test_batch_skips_malformed_ratio(self, evaluator: PositionHealthEvaluator) -> None:
        batch = evaluator.evaluate_batch(
            [
                create_position(position_id="bad", health_ratio="one point two"),
                create_position(position_id="ok", health_ratio=Decimal("1.0")),
            ]
        )

        assert batch.evaluated == 2
        assert batch.skipped == 1
        assert [c.identity["position_id"] for c in batch.candidates] == ["ok"]
