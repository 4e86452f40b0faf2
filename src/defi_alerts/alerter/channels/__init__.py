"""Delivery channel implementations and the configured-channel factory."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from typing import TYPE_CHECKING

from defi_alerts.alerter.channels.console import ConsoleChannel
from defi_alerts.alerter.channels.webhook import WebhookChannel
from defi_alerts.alerter.models import AlertChannel
from defi_alerts.storage.repos import ACK_CHANNEL

if TYPE_CHECKING:
    import httpx

    from defi_alerts.config import Settings
    from defi_alerts.evaluator.models import Clock

logger = logging.getLogger(__name__)


def filter_channels(channels: Sequence[AlertChannel], allowed: Iterable[str]) -> list[AlertChannel]:
    """Keep channels named in ``allowed`` (order preserved); empty keeps all."""
    names = {name.strip() for name in allowed if name.strip()}
    if not names:
        return list(channels)
    kept = [c for c in channels if c.name in names]
    unknown = names - {c.name for c in channels}
    if unknown:
        logger.warning("Channel filter names unconfigured channels: %s", ", ".join(sorted(unknown)))
    return kept


def unique_channels(channels: Sequence[AlertChannel]) -> list[AlertChannel]:
    """Drop channels whose name is already taken.

    The name is the delivery-log key, so two channels sharing one would
    suppress each other after the first success.

    Raises:
        ValueError: If a channel uses the name reserved for acknowledgements.
    """
    kept: list[AlertChannel] = []
    seen: set[str] = set()
    for channel in channels:
        if channel.name == ACK_CHANNEL:
            raise ValueError(f"Channel name '{ACK_CHANNEL}' is reserved for acknowledgements")
        if channel.name in seen:
            logger.warning("Dropping duplicate channel '%s' (%s)", channel.name, type(channel).__name__)
            continue
        seen.add(channel.name)
        kept.append(channel)
    return kept


def build_channels(
    settings: Settings,
    *,
    client: httpx.AsyncClient | None = None,
    clock: Clock | None = None,
) -> list[AlertChannel]:
    """Build the enabled channels in delivery order.

    Channels whose credentials are missing are left out rather than treated
    as an error.
    """
    channels: list[AlertChannel] = []

    if settings.delivery.console_enabled:
        channels.append(ConsoleChannel(clock=clock))
        logger.info("Console channel enabled")

    if settings.webhook.enabled and settings.webhook.url:
        channels.append(
            WebhookChannel(
                settings.webhook.url.get_secret_value(),
                name=settings.webhook.channel_name,
                client=client,
                timeout=settings.delivery.timeout_seconds,
                clock=clock,
            )
        )
        logger.info("Webhook channel '%s' enabled", settings.webhook.channel_name)
    else:
        logger.info("Webhook channel not configured (WEBHOOK_URL unset)")

    channels = filter_channels(unique_channels(channels), settings.delivery.channels)
    if not channels:
        logger.warning("No alert channels configured")
    return channels


__all__ = [
    "ConsoleChannel",
    "WebhookChannel",
    "build_channels",
    "filter_channels",
    "unique_channels",
]
