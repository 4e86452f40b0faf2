"""Data models for the alerter module."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from defi_alerts.storage.repos import AlertDTO


@dataclass(frozen=True)
class DeliveryResult:
    """Outcome reported by a channel for one delivery attempt."""

    success: bool
    metadata: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class AlertChannel(Protocol):
    """Pluggable delivery sink.

    ``name`` is the channel key recorded on delivery rows and matched by the
    channel filter. Implementations may raise; the dispatcher records the
    exception as a failed attempt.
    """

    name: str

    async def deliver(self, alert: AlertDTO) -> DeliveryResult: ...


@dataclass
class ChannelStats:
    """Per-channel delivery counters for one run."""

    delivered: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"delivered": self.delivered, "skipped": self.skipped, "failed": self.failed}


@dataclass
class DispatchResult:
    """Outcome of a dispatch pass over pending alerts."""

    alerts_considered: int = 0
    alerts_dispatched: int = 0
    channels: dict[str, ChannelStats] = field(default_factory=dict)

    def stats_for(self, channel: str) -> ChannelStats:
        return self.channels.setdefault(channel, ChannelStats())

    @property
    def failure_count(self) -> int:
        return sum(s.failed for s in self.channels.values())

    @property
    def success_count(self) -> int:
        return sum(s.delivered for s in self.channels.values())
