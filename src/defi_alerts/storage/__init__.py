"""Storage layer - Database schemas and repositories."""

from defi_alerts.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from defi_alerts.storage.models import (
    AlertDeliveryModel,
    AlertModel,
    Base,
    LeveragedPositionModel,
    RewardOpportunityModel,
    VoteEpochModel,
)
from defi_alerts.storage.repos import (
    ACK_CHANNEL,
    AlertDeliveryDTO,
    AlertDTO,
    AlertNotFoundError,
    AlertRepository,
    DeliveryRepository,
    SnapshotRepository,
)

__all__ = [
    "ACK_CHANNEL",
    "AlertDTO",
    "AlertDeliveryDTO",
    "AlertDeliveryModel",
    "AlertModel",
    "AlertNotFoundError",
    "AlertRepository",
    "Base",
    "DatabaseManager",
    "DeliveryRepository",
    "LeveragedPositionModel",
    "RewardOpportunityModel",
    "SnapshotRepository",
    "VoteEpochModel",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
