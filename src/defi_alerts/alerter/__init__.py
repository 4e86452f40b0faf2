"""Alert delivery - channels, formatting and the pending-alert dispatcher."""

from defi_alerts.alerter.channels import ConsoleChannel, WebhookChannel, build_channels, filter_channels
from defi_alerts.alerter.dispatcher import DeliveryDispatcher
from defi_alerts.alerter.models import AlertChannel, ChannelStats, DeliveryResult, DispatchResult

__all__ = [
    "AlertChannel",
    "ChannelStats",
    "ConsoleChannel",
    "DeliveryDispatcher",
    "DeliveryResult",
    "DispatchResult",
    "WebhookChannel",
    "build_channels",
    "filter_channels",
]
