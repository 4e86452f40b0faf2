"""Alert reconciliation: fingerprinting, upsert and stale-alert closing.

Each run builds an active set of fingerprints from the candidates its
evaluators produce. Once every domain has been evaluated, open alerts whose
fingerprint is not in that set are resolved.
"""

from __future__ import annotations

import hashlib
import json
import logging
from typing import TYPE_CHECKING

from defi_alerts.evaluator.models import AlertCandidate, AlertKind, Clock, SystemClock

if TYPE_CHECKING:
    from defi_alerts.storage.repos import AlertDTO, AlertRepository

logger = logging.getLogger(__name__)


def fingerprint(kind: AlertKind, identity: dict[str, str]) -> str:
    """Deterministic digest over the identity fields of a condition.

    The payload is canonical JSON (sorted keys, no whitespace) of ``kind``
    plus the natural keys, hashed with SHA-256.
    """
    if "kind" in identity:
        raise ValueError("identity fields must not contain 'kind'")
    payload = {"kind": kind.value, **{k: str(v) for k, v in identity.items()}}
    serialized = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


class AlertReconciler:
    """Sole writer of alert content and status during evaluation.

    One instance covers one run: it accumulates the active set across all
    domains, so :meth:`close_stale` must be called only after every
    evaluator has been upserted.

    Example:
        ```python
        reconciler = AlertReconciler(AlertRepository(session), clock=clock)
        for candidate in batch.candidates:
            await reconciler.upsert(candidate)
        await reconciler.close_stale()
        ```
    """

    def __init__(self, repository: AlertRepository, *, clock: Clock | None = None) -> None:
        self._repo = repository
        self._clock = clock or SystemClock()
        self._active: set[str] = set()

    @property
    def active_fingerprints(self) -> frozenset[str]:
        return frozenset(self._active)

    async def upsert(self, candidate: AlertCandidate) -> tuple[AlertDTO, bool]:
        """Create or refresh the alert for a candidate and mark it active.

        Returns:
            The stored alert and whether it was newly created.
        """
        fp = fingerprint(candidate.kind, candidate.identity)
        alert, created = await self._repo.upsert_by_fingerprint(fp, candidate, now=self._clock.now())
        self._active.add(fp)
        logger.debug(
            "%s alert %s (%s, %s)",
            "Created" if created else "Refreshed",
            alert.id,
            candidate.kind.value,
            candidate.severity.value,
        )
        return alert, created

    async def close_stale(self) -> int:
        """Resolve every pending/dispatched alert not produced this run.

        Runs even when the active set is empty, in which case every open
        alert is resolved.

        Returns:
            Number of alerts resolved.
        """
        stale = await self._repo.find_open_excluding(self._active)
        if not stale:
            return 0
        resolved = await self._repo.mark_resolved([a.id for a in stale], now=self._clock.now())
        logger.info("Resolved %d stale alerts", resolved)
        return resolved
