"""
Webhook handlers
"""

from .base import BaseHandler
from .call_webhook import CallWebhookHandler, PROCESSED_EVENTS

__all__ = ["BaseHandler", "CallWebhookHandler", "PROCESSED_EVENTS"]
