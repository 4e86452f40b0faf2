"""Pytest configuration and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from defi_alerts.alerter.models import DeliveryResult
from defi_alerts.evaluator.models import (
    AlertCandidate,
    AlertKind,
    AlertReferences,
    FixedClock,
    Severity,
)
from defi_alerts.storage.models import Base

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class FakeChannel:
    """Channel double recording every delivery attempt."""

    def __init__(
        self,
        name: str,
        *,
        succeed: bool = True,
        error: Exception | None = None,
        delay: float | None = None,
    ) -> None:
        self.name = name
        self.succeed = succeed
        self.error = error
        self.delay = delay
        self.calls: list[str] = []

    async def deliver(self, alert: Any) -> DeliveryResult:
        self.calls.append(alert.id)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return DeliveryResult(success=self.succeed, metadata={"attempt": len(self.calls)})


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> FixedClock:
    """Clock pinned to NOW; tests may advance it."""
    return FixedClock(NOW)


@pytest.fixture
async def async_engine():
    """In-memory SQLite engine shared by every session of a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory) -> AsyncSession:
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_channel() -> Callable[..., FakeChannel]:
    return FakeChannel


@pytest.fixture
def make_candidate() -> Callable[..., AlertCandidate]:
    """Factory for reward-claim candidates keyed by wallet/opportunity."""

    def _make(
        *,
        wallet_id: str = "wallet-1",
        opportunity_id: str = "opp-1",
        severity: Severity = Severity.WARNING,
        title: str = "Claim AERO rewards",
        metadata: dict[str, Any] | None = None,
    ) -> AlertCandidate:
        return AlertCandidate(
            kind=AlertKind.REWARD_CLAIM,
            identity={"wallet_id": wallet_id, "opportunity_id": opportunity_id},
            severity=severity,
            title=title,
            description="Net USD value ≈ 45.00. Gas estimate 5.00.",
            metadata=metadata or {"net_value_usd": "45"},
            references=AlertReferences(
                wallet_id=wallet_id,
                protocol_id="aerodrome",
                reward_opportunity_id=opportunity_id,
            ),
        )

    return _make
