"""Alert scan orchestrator.

One :meth:`AlertEngine.run_once` call is one scan: evaluate every domain
(reward claims, position health, governance epochs) and upsert the
candidates, dispatch pending alerts, then resolve alerts whose condition was
not produced this run.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from defi_alerts.alerter.dispatcher import DeliveryDispatcher
from defi_alerts.alerter.models import AlertChannel, DispatchResult
from defi_alerts.evaluator.base import ConditionEvaluator
from defi_alerts.evaluator.governance import GovernanceEpochEvaluator
from defi_alerts.evaluator.models import (
    AlertKind,
    Clock,
    EpochSnapshot,
    PositionSnapshot,
    RewardSnapshot,
    SystemClock,
)
from defi_alerts.evaluator.position_health import PositionHealthEvaluator
from defi_alerts.evaluator.reward import RewardClaimEvaluator
from defi_alerts.reconciler import AlertReconciler
from defi_alerts.storage.repos import AlertRepository, SnapshotRepository

if TYPE_CHECKING:
    from datetime import timedelta

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from defi_alerts.config import Settings

logger = logging.getLogger(__name__)


class SnapshotReader(Protocol):
    """Source of domain snapshots for one run."""

    async def list_reward_opportunities(self) -> list[RewardSnapshot]: ...

    async def list_positions(self) -> list[PositionSnapshot]: ...

    async def list_upcoming_epochs(self, *, now: datetime, window: timedelta) -> list[EpochSnapshot]: ...


@dataclass(frozen=True)
class EngineConfig:
    """Thresholds and dispatch limits for one engine instance."""

    reward_net_threshold_usd: Decimal = Decimal("10")
    reward_warning_hours: float = 24.0
    reward_critical_hours: float = 12.0
    position_warning_health: Decimal = Decimal("1.2")
    position_critical_health: Decimal = Decimal("1.05")
    governance_warning_hours: float = 24.0
    governance_critical_hours: float = 12.0
    batch_limit: int = 50
    timeout_seconds: float = 10.0
    dry_run: bool = False

    @classmethod
    def from_settings(cls, settings: Settings) -> EngineConfig:
        return cls(
            reward_net_threshold_usd=settings.reward.net_threshold_usd,
            reward_warning_hours=settings.reward.warning_hours,
            reward_critical_hours=settings.reward.critical_hours,
            position_warning_health=settings.position.warning_health,
            position_critical_health=settings.position.critical_health,
            governance_warning_hours=settings.governance.warning_hours,
            governance_critical_hours=settings.governance.critical_hours,
            batch_limit=settings.delivery.batch_limit,
            timeout_seconds=settings.delivery.timeout_seconds,
            dry_run=settings.dry_run,
        )


@dataclass
class DomainStats:
    """Per-domain counters for one run."""

    evaluated: int = 0
    skipped: int = 0
    created: int = 0
    updated: int = 0
    failed: bool = False
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "evaluated": self.evaluated,
            "skipped": self.skipped,
            "created": self.created,
            "updated": self.updated,
            "failed": self.failed,
            "error": self.error,
        }


@dataclass
class RunSummary:
    """Outcome of one scan run, for operators and logs."""

    started_at: datetime
    finished_at: datetime | None = None
    domains: dict[str, DomainStats] = field(default_factory=dict)
    dispatch: DispatchResult | None = None
    resolved: int = 0
    dry_run: bool = False

    @property
    def failed_domains(self) -> list[str]:
        return [name for name, stats in self.domains.items() if stats.failed]

    def to_dict(self) -> dict[str, Any]:
        dispatch = self.dispatch
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "dry_run": self.dry_run,
            "domains": {name: stats.to_dict() for name, stats in self.domains.items()},
            "dispatch": {
                "alerts_considered": dispatch.alerts_considered,
                "alerts_dispatched": dispatch.alerts_dispatched,
                "channels": {name: stats.to_dict() for name, stats in dispatch.channels.items()},
            }
            if dispatch
            else None,
            "resolved": self.resolved,
        }


class AlertEngine:
    """Runs evaluate, dispatch and close-stale over one session per run.

    Example:
        ```python
        db = DatabaseManager(settings.database.url)
        engine = AlertEngine(
            db.session_factory,
            build_channels(settings),
            config=EngineConfig.from_settings(settings),
        )
        summary = await engine.run_once()
        ```
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        channels: Sequence[AlertChannel],
        *,
        config: EngineConfig | None = None,
        clock: Clock | None = None,
        snapshot_reader_factory: Callable[[AsyncSession], SnapshotReader] = SnapshotRepository,
    ) -> None:
        """Initialize the engine.

        Args:
            session_factory: Factory for the per-run database session.
            channels: Delivery channels in configured order.
            config: Thresholds and dispatch limits.
            clock: Time source shared by evaluators, reconciler and dispatcher.
            snapshot_reader_factory: Builds the snapshot source for a session.
        """
        self._session_factory = session_factory
        self._channels = list(channels)
        self._config = config or EngineConfig()
        self._clock = clock or SystemClock()
        self._reader_factory = snapshot_reader_factory

        self._reward = RewardClaimEvaluator(
            net_threshold_usd=self._config.reward_net_threshold_usd,
            warning_hours=self._config.reward_warning_hours,
            critical_hours=self._config.reward_critical_hours,
            clock=self._clock,
        )
        self._position = PositionHealthEvaluator(
            warning_health=self._config.position_warning_health,
            critical_health=self._config.position_critical_health,
            clock=self._clock,
        )
        self._governance = GovernanceEpochEvaluator(
            warning_hours=self._config.governance_warning_hours,
            critical_hours=self._config.governance_critical_hours,
            clock=self._clock,
        )

    async def run_once(self) -> RunSummary:
        """Execute one scan.

        Returns:
            Counts per domain and per channel.

        Raises:
            SQLAlchemyError: On store failure while writing alerts. Domains
                already committed stay committed.
        """
        summary = RunSummary(started_at=self._clock.now(), dry_run=self._config.dry_run)
        logger.info("Starting alert scan run (dry_run=%s)", self._config.dry_run)

        async with self._session_factory() as session:
            try:
                await self._run(session, summary)
            except SQLAlchemyError as e:
                logger.error("Alert scan aborted by store error: %s", e)
                await session.rollback()
                raise

        summary.finished_at = self._clock.now()
        logger.info(
            "Alert scan complete: domains=%s resolved=%d failed_domains=%s",
            {name: (s.created, s.updated) for name, s in summary.domains.items()},
            summary.resolved,
            summary.failed_domains or "none",
        )
        return summary

    async def _run(self, session: AsyncSession, summary: RunSummary) -> None:
        reconciler = AlertReconciler(AlertRepository(session), clock=self._clock)
        reader = self._reader_factory(session)

        domains: list[tuple[AlertKind, ConditionEvaluator[Any], Callable[[], Awaitable[list[Any]]]]] = [
            (AlertKind.REWARD_CLAIM, self._reward, reader.list_reward_opportunities),
            (AlertKind.POSITION_HEALTH, self._position, reader.list_positions),
            (
                AlertKind.GOVERNANCE_EPOCH,
                self._governance,
                lambda: reader.list_upcoming_epochs(
                    now=self._clock.now(),
                    window=self._governance.warning_window,
                ),
            ),
        ]
        for kind, evaluator, load in domains:
            summary.domains[kind.value] = await self._run_domain(session, reconciler, kind, evaluator, load)

        if self._config.dry_run:
            logger.info("Dry run: skipping dispatch of pending alerts")
        else:
            dispatcher = DeliveryDispatcher(
                session,
                self._channels,
                batch_limit=self._config.batch_limit,
                timeout_seconds=self._config.timeout_seconds,
                clock=self._clock,
            )
            summary.dispatch = await dispatcher.dispatch_pending()

        summary.resolved = await reconciler.close_stale()
        await session.commit()

    async def _run_domain(
        self,
        session: AsyncSession,
        reconciler: AlertReconciler,
        kind: AlertKind,
        evaluator: ConditionEvaluator[Any],
        load: Callable[[], Awaitable[list[Any]]],
    ) -> DomainStats:
        stats = DomainStats()
        try:
            snapshots = await load()
        except Exception as e:
            logger.warning("Snapshot source for %s failed: %s", kind.value, e)
            await session.rollback()
            stats.failed = True
            stats.error = str(e) or type(e).__name__
            return stats

        batch = evaluator.evaluate_batch(snapshots)
        stats.evaluated = batch.evaluated
        stats.skipped = batch.skipped
        for candidate in batch.candidates:
            _, created = await reconciler.upsert(candidate)
            if created:
                stats.created += 1
            else:
                stats.updated += 1
        await session.commit()

        logger.info(
            "%s: evaluated=%d created=%d updated=%d skipped=%d",
            kind.value,
            stats.evaluated,
            stats.created,
            stats.updated,
            stats.skipped,
        )
        return stats
