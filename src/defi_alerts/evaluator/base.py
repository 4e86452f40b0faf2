"""Shared evaluation loop for condition evaluators."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime
from decimal import InvalidOperation
from typing import Generic, TypeVar

from defi_alerts.evaluator.models import (
    AlertCandidate,
    AlertKind,
    Clock,
    EvaluationBatch,
    SystemClock,
    as_utc,
)

logger = logging.getLogger(__name__)

SnapshotT = TypeVar("SnapshotT")


def hours_until(deadline: datetime, now: datetime) -> float:
    return (as_utc(deadline) - as_utc(now)).total_seconds() / 3600


class ConditionEvaluator(ABC, Generic[SnapshotT]):
    """Maps one snapshot entity to zero or one alert candidate.

    Subclasses implement :meth:`evaluate`, which may raise on malformed
    input. :meth:`evaluate_batch` isolates those failures per entity so one
    bad record never blocks the rest of its domain.
    """

    kind: AlertKind

    def __init__(self, *, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()

    @abstractmethod
    def evaluate(self, snapshot: SnapshotT) -> AlertCandidate | None:
        """Evaluate a single entity."""

    @abstractmethod
    def entity_key(self, snapshot: SnapshotT) -> str:
        """Identifier used in log messages."""

    def evaluate_batch(self, snapshots: Iterable[SnapshotT]) -> EvaluationBatch:
        batch = EvaluationBatch(kind=self.kind)
        for snapshot in snapshots:
            batch.evaluated += 1
            try:
                candidate = self.evaluate(snapshot)
            except (InvalidOperation, TypeError, ValueError) as e:
                batch.skipped += 1
                logger.warning(
                    "Skipping malformed %s entity %s: %s",
                    self.kind.value,
                    self.entity_key(snapshot),
                    e,
                )
                continue
            if candidate is not None:
                batch.candidates.append(candidate)
        logger.debug(
            "%s evaluation: evaluated=%d candidates=%d skipped=%d",
            self.kind.value,
            batch.evaluated,
            len(batch.candidates),
            batch.skipped,
        )
        return batch
