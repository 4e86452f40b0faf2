"""Repository pattern implementations for data access.

This module provides the alert store (fingerprint-keyed alerts), the
append-only delivery audit log, and read-only access to the domain
snapshot tables.
"""

from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Collection
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from sqlalchemy import select, update

from defi_alerts.evaluator.models import (
    OPEN_STATUSES,
    AlertCandidate,
    AlertKind,
    AlertReferences,
    AlertStatus,
    EpochSnapshot,
    PositionSnapshot,
    RewardSnapshot,
    Severity,
    as_utc,
)
from defi_alerts.storage.models import (
    AlertDeliveryModel,
    AlertModel,
    LeveragedPositionModel,
    RewardOpportunityModel,
    VoteEpochModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

ACK_CHANNEL = "ack"
DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 200


class AlertNotFoundError(LookupError):
    """Raised when an alert id does not exist."""


def _dump_json(value: dict[str, Any] | None) -> str:
    return json.dumps(value or {}, default=str, sort_keys=True)


def _load_json(value: str | None) -> dict[str, Any]:
    if not value:
        return {}
    loaded = json.loads(value)
    return loaded if isinstance(loaded, dict) else {}


def _optional_utc(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


@dataclass(frozen=True)
class AlertDeliveryDTO:
    """Immutable record of one delivery attempt."""

    id: int
    alert_id: str
    channel: str
    success: bool
    metadata: dict[str, Any]
    created_at: datetime

    @classmethod
    def from_model(cls, model: AlertDeliveryModel) -> AlertDeliveryDTO:
        return cls(
            id=model.id,
            alert_id=model.alert_id,
            channel=model.channel,
            success=model.success,
            metadata=_load_json(model.metadata_json),
            created_at=as_utc(model.created_at),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "channel": self.channel,
            "success": self.success,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }


@dataclass
class AlertDTO:
    """Data transfer object for alerts."""

    id: str
    fingerprint: str
    kind: AlertKind
    severity: Severity
    status: AlertStatus
    title: str
    description: str | None
    trigger_at: datetime
    expires_at: datetime | None
    references: AlertReferences
    metadata: dict[str, Any]
    created_at: datetime | None = None
    updated_at: datetime | None = None
    deliveries: list[AlertDeliveryDTO] = field(default_factory=list)

    @classmethod
    def from_model(
        cls,
        model: AlertModel,
        deliveries: list[AlertDeliveryDTO] | None = None,
    ) -> AlertDTO:
        """Create DTO from SQLAlchemy model."""
        return cls(
            id=model.id,
            fingerprint=model.fingerprint,
            kind=AlertKind(model.kind),
            severity=Severity(model.severity),
            status=AlertStatus(model.status),
            title=model.title,
            description=model.description,
            trigger_at=as_utc(model.trigger_at),
            expires_at=_optional_utc(model.expires_at),
            references=AlertReferences(
                wallet_id=model.wallet_id,
                protocol_id=model.protocol_id,
                token_id=model.token_id,
                reward_opportunity_id=model.reward_opportunity_id,
                position_id=model.position_id,
                epoch_id=model.epoch_id,
            ),
            metadata=_load_json(model.metadata_json),
            created_at=_optional_utc(model.created_at),
            updated_at=_optional_utc(model.updated_at),
            deliveries=deliveries or [],
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for the dashboard API (deliveries newest first)."""
        refs = self.references
        return {
            "id": self.id,
            "type": self.kind.value,
            "severity": self.severity.value,
            "status": self.status.value,
            "title": self.title,
            "description": self.description,
            "trigger_at": self.trigger_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "metadata": self.metadata,
            "wallet_id": refs.wallet_id,
            "protocol_id": refs.protocol_id,
            "token_id": refs.token_id,
            "reward_opportunity_id": refs.reward_opportunity_id,
            "position_id": refs.position_id,
            "epoch_id": refs.epoch_id,
            "deliveries": [
                d.to_dict() for d in sorted(self.deliveries, key=lambda d: d.created_at, reverse=True)
            ],
        }


class DeliveryRepository:
    """Append-only access to the delivery audit log.

    Records are never updated or deleted; the dispatcher only asks whether a
    successful attempt exists for an (alert, channel) pair.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(
        self,
        alert_id: str,
        channel: str,
        *,
        success: bool,
        metadata: dict[str, Any] | None = None,
        now: datetime,
    ) -> AlertDeliveryDTO:
        model = AlertDeliveryModel(
            alert_id=alert_id,
            channel=channel,
            success=success,
            metadata_json=_dump_json(metadata),
            created_at=now,
        )
        self.session.add(model)
        await self.session.flush()
        return AlertDeliveryDTO.from_model(model)

    async def has_successful_delivery(self, alert_id: str, channel: str) -> bool:
        result = await self.session.execute(
            select(AlertDeliveryModel.id)
            .where(
                AlertDeliveryModel.alert_id == alert_id,
                AlertDeliveryModel.channel == channel,
                AlertDeliveryModel.success.is_(True),
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def list_for_alerts(self, alert_ids: Collection[str]) -> dict[str, list[AlertDeliveryDTO]]:
        """Deliveries grouped by alert id, newest first."""
        grouped: dict[str, list[AlertDeliveryDTO]] = {alert_id: [] for alert_id in alert_ids}
        if not alert_ids:
            return grouped
        result = await self.session.execute(
            select(AlertDeliveryModel)
            .where(AlertDeliveryModel.alert_id.in_(list(alert_ids)))
            .order_by(AlertDeliveryModel.created_at.desc(), AlertDeliveryModel.id.desc())
        )
        for model in result.scalars().all():
            grouped[model.alert_id].append(AlertDeliveryDTO.from_model(model))
        return grouped


class AlertRepository:
    """Alert store keyed by fingerprint."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_id(self, alert_id: str) -> AlertDTO | None:
        model = await self.session.get(AlertModel, alert_id)
        return AlertDTO.from_model(model) if model else None

    async def _model_by_fingerprint(self, fingerprint: str) -> AlertModel | None:
        result = await self.session.execute(
            select(AlertModel).where(AlertModel.fingerprint == fingerprint)
        )
        return result.scalar_one_or_none()

    async def get_by_fingerprint(self, fingerprint: str) -> AlertDTO | None:
        model = await self._model_by_fingerprint(fingerprint)
        return AlertDTO.from_model(model) if model else None

    async def upsert_by_fingerprint(
        self,
        fingerprint: str,
        candidate: AlertCandidate,
        *,
        now: datetime,
    ) -> tuple[AlertDTO, bool]:
        """Create or refresh the alert for a fingerprint.

        Find-by-unique-key, else create. An existing alert gets the
        candidate's mutable fields, ``trigger_at = now`` and is forced back to
        pending whatever its previous status.

        Returns:
            The stored alert and whether it was newly created.
        """
        model = await self._model_by_fingerprint(fingerprint)
        created = model is None
        if model is None:
            model = AlertModel(id=str(uuid.uuid4()), fingerprint=fingerprint, created_at=now)
            self.session.add(model)

        refs = candidate.references
        model.kind = candidate.kind.value
        model.severity = candidate.severity.value
        model.status = AlertStatus.PENDING.value
        model.title = candidate.title
        model.description = candidate.description
        model.trigger_at = now
        model.expires_at = candidate.expires_at
        model.wallet_id = refs.wallet_id
        model.protocol_id = refs.protocol_id
        model.token_id = refs.token_id
        model.reward_opportunity_id = refs.reward_opportunity_id
        model.position_id = refs.position_id
        model.epoch_id = refs.epoch_id
        model.metadata_json = _dump_json(candidate.metadata)
        model.updated_at = now

        await self.session.flush()
        return AlertDTO.from_model(model), created

    async def find_open_excluding(self, fingerprints: Collection[str]) -> list[AlertDTO]:
        """Pending or dispatched alerts whose fingerprint is not in the given set."""
        stmt = select(AlertModel).where(AlertModel.status.in_([s.value for s in OPEN_STATUSES]))
        if fingerprints:
            stmt = stmt.where(AlertModel.fingerprint.not_in(list(fingerprints)))
        result = await self.session.execute(stmt.order_by(AlertModel.trigger_at.asc()))
        return [AlertDTO.from_model(m) for m in result.scalars().all()]

    async def mark_resolved(self, alert_ids: Collection[str], *, now: datetime) -> int:
        if not alert_ids:
            return 0
        result = await self.session.execute(
            update(AlertModel)
            .where(
                AlertModel.id.in_(list(alert_ids)),
                AlertModel.status.in_([s.value for s in OPEN_STATUSES]),
            )
            .values(status=AlertStatus.RESOLVED.value, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return int(result.rowcount or 0)

    async def find_pending(self, limit: int) -> list[AlertDTO]:
        """Oldest-triggered pending alerts first."""
        result = await self.session.execute(
            select(AlertModel)
            .where(AlertModel.status == AlertStatus.PENDING.value)
            .order_by(AlertModel.trigger_at.asc(), AlertModel.created_at.asc(), AlertModel.id.asc())
            .limit(limit)
        )
        return [AlertDTO.from_model(m) for m in result.scalars().all()]

    async def mark_dispatched(self, alert_id: str, *, now: datetime) -> bool:
        result = await self.session.execute(
            update(AlertModel)
            .where(
                AlertModel.id == alert_id,
                AlertModel.status == AlertStatus.PENDING.value,
            )
            .values(status=AlertStatus.DISPATCHED.value, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        await self.session.flush()
        return bool(result.rowcount)

    async def acknowledge(self, alert_id: str, *, now: datetime) -> AlertDTO:
        """Mark an alert acknowledged and record a synthetic ``ack`` delivery.

        Raises:
            AlertNotFoundError: If no alert has this id.
        """
        model = await self.session.get(AlertModel, alert_id)
        if model is None:
            raise AlertNotFoundError(alert_id)
        model.status = AlertStatus.ACKNOWLEDGED.value
        model.updated_at = now
        await self.session.flush()

        await DeliveryRepository(self.session).append(
            alert_id,
            ACK_CHANNEL,
            success=True,
            metadata={"acknowledged_at": now.isoformat()},
            now=now,
        )
        return AlertDTO.from_model(model)

    async def list_alerts(
        self,
        *,
        status: AlertStatus | None = None,
        severity: Severity | None = None,
        channel: str | None = None,
        delivered_since: datetime | None = None,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[AlertDTO]:
        """List alerts newest-triggered first with their deliveries.

        ``channel`` and ``delivered_since`` restrict the result to alerts with
        a successful delivery matching them.
        """
        stmt = select(AlertModel)
        if status is not None:
            stmt = stmt.where(AlertModel.status == status.value)
        if severity is not None:
            stmt = stmt.where(AlertModel.severity == severity.value)
        if channel or delivered_since:
            delivered = select(AlertDeliveryModel.alert_id).where(AlertDeliveryModel.success.is_(True))
            if channel:
                delivered = delivered.where(AlertDeliveryModel.channel == channel.strip())
            if delivered_since:
                delivered = delivered.where(AlertDeliveryModel.created_at >= delivered_since)
            stmt = stmt.where(AlertModel.id.in_(delivered))

        limit = max(1, min(limit, MAX_LIST_LIMIT))
        result = await self.session.execute(
            stmt.order_by(AlertModel.trigger_at.desc(), AlertModel.id.asc()).limit(limit)
        )
        models = result.scalars().all()
        deliveries = await DeliveryRepository(self.session).list_for_alerts([m.id for m in models])
        return [AlertDTO.from_model(m, deliveries[m.id]) for m in models]


class SnapshotRepository:
    """Read-only access to the domain snapshot tables."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def list_reward_opportunities(self) -> list[RewardSnapshot]:
        result = await self.session.execute(
            select(RewardOpportunityModel).order_by(RewardOpportunityModel.id)
        )
        return [
            RewardSnapshot(
                opportunity_id=m.id,
                wallet_id=m.wallet_id,
                protocol_id=m.protocol_id,
                token_id=m.token_id,
                token_symbol=m.token_symbol,
                amount=m.amount,
                usd_value=m.usd_value,
                gas_estimate_usd=m.gas_estimate_usd,
                claim_deadline=_optional_utc(m.claim_deadline),
            )
            for m in result.scalars().all()
        ]

    async def list_positions(self) -> list[PositionSnapshot]:
        result = await self.session.execute(
            select(LeveragedPositionModel).order_by(LeveragedPositionModel.id)
        )
        snapshots = []
        for m in result.scalars().all():
            metadata: dict[str, Any] | None = None
            if m.metadata_json:
                try:
                    metadata = json.loads(m.metadata_json)
                except json.JSONDecodeError as e:
                    logger.warning("Ignoring unreadable metadata for position %s: %s", m.id, e)
            snapshots.append(
                PositionSnapshot(
                    position_id=m.id,
                    wallet_id=m.wallet_id,
                    protocol_id=m.protocol_id,
                    health_ratio=m.health_ratio,
                    metadata=metadata,
                    position_type=m.position_type,
                    pool_label=m.pool_label,
                )
            )
        return snapshots

    async def list_upcoming_epochs(self, *, now: datetime, window: timedelta) -> list[EpochSnapshot]:
        """Epochs starting within ``[now, now + window]``."""
        result = await self.session.execute(
            select(VoteEpochModel)
            .where(
                VoteEpochModel.starts_at >= now,
                VoteEpochModel.starts_at <= now + window,
            )
            .order_by(VoteEpochModel.starts_at)
        )
        return [
            EpochSnapshot(
                epoch_id=m.id,
                protocol_id=m.protocol_id,
                protocol_name=m.protocol_name,
                starts_at=as_utc(m.starts_at),
                ends_at=as_utc(m.ends_at),
            )
            for m in result.scalars().all()
        ]
