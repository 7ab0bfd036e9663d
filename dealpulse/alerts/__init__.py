"""
DealPulse Alerts

Deduplicated stall alerts and their delivery channels.
"""

from .alert_service import AlertGenerator, priority_for
from .channels import (
    DeliveryChannel,
    WebhookChannel,
    SlackChannel,
    EmailChannel,
    CrmTaskChannel,
    build_channels,
    build_webhook_payload,
)

__all__ = [
    "AlertGenerator",
    "priority_for",
    "DeliveryChannel",
    "WebhookChannel",
    "SlackChannel",
    "EmailChannel",
    "CrmTaskChannel",
    "build_channels",
    "build_webhook_payload",
]
