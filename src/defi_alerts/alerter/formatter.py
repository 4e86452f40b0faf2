"""Alert message formatter for multi-channel delivery.

This module renders stored alerts as plain log lines for the console sink
and as a chat-style JSON payload for webhook sinks.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from defi_alerts.evaluator.models import Severity

if TYPE_CHECKING:
    from datetime import datetime

    from defi_alerts.storage.repos import AlertDTO

SEVERITY_EMOJI = {
    Severity.CRITICAL: "🚨",
    Severity.WARNING: "⚠️",
    Severity.INFO: "ℹ️",
}

# Webhook attachment colors
SEVERITY_COLOR = {
    Severity.CRITICAL: "#dc2626",
    Severity.WARNING: "#f59e0b",
    Severity.INFO: "#3b82f6",
}

FOOTER_LABEL = "DeFi Alerts"


def truncate_id(value: str, chars: int = 8) -> str:
    """Shorten long identifiers (wallet addresses) for display."""
    if len(value) <= chars + 1:
        return value
    return f"{value[:chars]}…"


def kind_label(alert: AlertDTO) -> str:
    return alert.kind.value.replace("_", " ").upper()


def format_console_lines(alert: AlertDTO) -> list[str]:
    """Render an alert as indented log lines."""
    refs = alert.references
    lines = [f"{SEVERITY_EMOJI[alert.severity]} {kind_label(alert)}: {alert.title}"]
    if alert.description:
        lines.append(f"   Description: {alert.description}")
    if refs.wallet_id:
        lines.append(f"   Wallet: {truncate_id(refs.wallet_id)}")
    if refs.protocol_id:
        lines.append(f"   Protocol: {refs.protocol_id}")
    lines.append(f"   Triggered at: {alert.trigger_at.isoformat()}")
    if alert.expires_at:
        lines.append(f"   Expires at: {alert.expires_at.isoformat()}")
    return lines


def format_webhook_text(alert: AlertDTO) -> str:
    refs = alert.references
    lines = [f"*{SEVERITY_EMOJI[alert.severity]} {kind_label(alert)}:* {alert.title}"]
    if alert.description:
        lines.append(alert.description)
    if refs.wallet_id:
        lines.append(f"*Wallet:* {truncate_id(refs.wallet_id)}")
    if refs.protocol_id:
        lines.append(f"*Protocol:* {refs.protocol_id}")
    lines.append(f"*Triggered:* {alert.trigger_at.isoformat()}")
    if alert.expires_at:
        lines.append(f"*Expires:* {alert.expires_at.isoformat()}")
    return "\n".join(lines)


def format_webhook_payload(alert: AlertDTO, *, sent_at: datetime) -> dict[str, Any]:
    """Build the JSON body POSTed by the webhook channel."""
    return {
        "text": format_webhook_text(alert),
        "attachments": [
            {
                "color": SEVERITY_COLOR[alert.severity],
                "footer": f"{FOOTER_LABEL} · {sent_at.isoformat()}",
            }
        ],
        "alert": {
            "id": alert.id,
            "type": alert.kind.value,
            "severity": alert.severity.value,
        },
    }
