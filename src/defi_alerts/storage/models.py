"""SQLAlchemy models for persistent storage.

This module defines the alert and delivery-audit tables written by the
engine, and the snapshot tables (reward opportunities, leveraged positions,
vote epochs) it reads.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class AlertModel(Base):
    """One alert per distinct triggering condition, keyed by fingerprint."""

    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # pending|dispatched|acknowledged|resolved
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    trigger_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    wallet_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    protocol_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    token_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    reward_opportunity_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    position_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    epoch_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_alerts_status_trigger", "status", "trigger_at"),
        Index("idx_alerts_severity", "severity"),
        Index("idx_alerts_wallet", "wallet_id"),
    )


class AlertDeliveryModel(Base):
    """Append-only record of one delivery attempt on one channel."""

    __tablename__ = "alert_deliveries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    alert_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("alerts.id", ondelete="CASCADE"), nullable=False
    )
    channel: Mapped[str] = mapped_column(String(32), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    metadata_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_alert_deliveries_alert_channel", "alert_id", "channel", "success"),
        Index("idx_alert_deliveries_created", "created_at"),
    )


class RewardOpportunityModel(Base):
    """Claimable reward snapshot, populated by the reward sync job."""

    __tablename__ = "reward_opportunities"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)
    protocol_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_id: Mapped[str] = mapped_column(String(64), nullable=False)
    token_symbol: Mapped[str | None] = mapped_column(String(32), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(38, 18), nullable=False)
    usd_value: Mapped[Decimal | None] = mapped_column(Numeric(30, 10), nullable=True)
    gas_estimate_usd: Mapped[Decimal | None] = mapped_column(Numeric(30, 10), nullable=True)
    claim_deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_reward_opportunities_wallet", "wallet_id"),)


class LeveragedPositionModel(Base):
    """Leveraged position snapshot, populated by the position sync job."""

    __tablename__ = "leveraged_positions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_id: Mapped[str] = mapped_column(String(64), nullable=False)
    protocol_id: Mapped[str] = mapped_column(String(64), nullable=False)
    position_type: Mapped[str | None] = mapped_column(String(32), nullable=True)  # LONG/SHORT/LP
    pool_label: Mapped[str | None] = mapped_column(String(64), nullable=True)

    health_ratio: Mapped[Decimal | None] = mapped_column(Numeric(20, 10), nullable=True)
    metadata_json: Mapped[str | None] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (Index("idx_leveraged_positions_wallet", "wallet_id"),)


class VoteEpochModel(Base):
    """Governance vote epoch, populated by the governance sync job."""

    __tablename__ = "vote_epochs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    protocol_id: Mapped[str] = mapped_column(String(64), nullable=False)
    protocol_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ends_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_vote_epochs_starts_at", "starts_at"),)
