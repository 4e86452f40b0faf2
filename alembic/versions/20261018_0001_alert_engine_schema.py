"""Alert engine schema: alerts, delivery audit log and domain snapshots.

Revision ID: 001_alert_engine
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_alert_engine"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Alerts (one row per fingerprint)
    op.create_table(
        "alerts",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("fingerprint", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(32), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("wallet_id", sa.String(64), nullable=True),
        sa.Column("protocol_id", sa.String(64), nullable=True),
        sa.Column("token_id", sa.String(64), nullable=True),
        sa.Column("reward_opportunity_id", sa.String(64), nullable=True),
        sa.Column("position_id", sa.String(64), nullable=True),
        sa.Column("epoch_id", sa.String(64), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("fingerprint"),
    )
    op.create_index("idx_alerts_status_trigger", "alerts", ["status", "trigger_at"])
    op.create_index("idx_alerts_severity", "alerts", ["severity"])
    op.create_index("idx_alerts_wallet", "alerts", ["wallet_id"])

    # Delivery audit log (append-only)
    op.create_table(
        "alert_deliveries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("alert_id", sa.String(36), nullable=False),
        sa.Column("channel", sa.String(32), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("metadata_json", sa.Text(), nullable=False, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["alert_id"], ["alerts.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "idx_alert_deliveries_alert_channel",
        "alert_deliveries",
        ["alert_id", "channel", "success"],
    )
    op.create_index("idx_alert_deliveries_created", "alert_deliveries", ["created_at"])

    # Snapshot tables (written by the sync jobs, read by the engine)
    op.create_table(
        "reward_opportunities",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("wallet_id", sa.String(64), nullable=False),
        sa.Column("protocol_id", sa.String(64), nullable=False),
        sa.Column("token_id", sa.String(64), nullable=False),
        sa.Column("token_symbol", sa.String(32), nullable=True),
        sa.Column("amount", sa.Numeric(38, 18), nullable=False),
        sa.Column("usd_value", sa.Numeric(30, 10), nullable=True),
        sa.Column("gas_estimate_usd", sa.Numeric(30, 10), nullable=True),
        sa.Column("claim_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_reward_opportunities_wallet", "reward_opportunities", ["wallet_id"])

    op.create_table(
        "leveraged_positions",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("wallet_id", sa.String(64), nullable=False),
        sa.Column("protocol_id", sa.String(64), nullable=False),
        sa.Column("position_type", sa.String(32), nullable=True),
        sa.Column("pool_label", sa.String(64), nullable=True),
        sa.Column("health_ratio", sa.Numeric(20, 10), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_leveraged_positions_wallet", "leveraged_positions", ["wallet_id"])

    op.create_table(
        "vote_epochs",
        sa.Column("id", sa.String(64), nullable=False),
        sa.Column("protocol_id", sa.String(64), nullable=False),
        sa.Column("protocol_name", sa.String(128), nullable=True),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("idx_vote_epochs_starts_at", "vote_epochs", ["starts_at"])


def downgrade() -> None:
    op.drop_index("idx_vote_epochs_starts_at", table_name="vote_epochs")
    op.drop_table("vote_epochs")
    op.drop_index("idx_leveraged_positions_wallet", table_name="leveraged_positions")
    op.drop_table("leveraged_positions")
    op.drop_index("idx_reward_opportunities_wallet", table_name="reward_opportunities")
    op.drop_table("reward_opportunities")
    op.drop_index("idx_alert_deliveries_created", table_name="alert_deliveries")
    op.drop_index("idx_alert_deliveries_alert_channel", table_name="alert_deliveries")
    op.drop_table("alert_deliveries")
    op.drop_index("idx_alerts_wallet", table_name="alerts")
    op.drop_index("idx_alerts_severity", table_name="alerts")
    op.drop_index("idx_alerts_status_trigger", table_name="alerts")
    op.drop_table("alerts")
