"""
Call Webhook Handler

Verifies and parses call-recorder webhooks carrying structured transcripts.
Only call.completed and call.analyzed events drive stage mapping;
call.transcribed is acknowledged and ignored.
"""

import hmac
import hashlib
import logging
from typing import Any, Dict, Optional

from ...common.errors import parse_document
from ...common.schemas import CallWebhookPayload
from .base import BaseHandler

logger = logging.getLogger("dealpulse.pipeline.handlers.call_webhook")

PROCESSED_EVENTS = ("call.completed", "call.analyzed")


class CallWebhookHandler(BaseHandler):
    """Handler for call-recorder webhook events"""

    def __init__(self, signing_secret: str = ""):
        """
        Initialize call webhook handler.

        Args:
            signing_secret: Shared secret for HMAC-SHA256 verification
        """
        super().__init__("call_recorder")
        self._signing_secret = signing_secret

    def parse_event(self, raw_data: Dict[str, Any]) -> CallWebhookPayload:
        return parse_document(CallWebhookPayload, raw_data)

    def verify_signature(self, body: bytes, signature: Optional[str]) -> bool:
        """
        Verify the hex HMAC-SHA256 of the raw body.

        Verification is skipped when no signing secret is configured.
        """
        if not self._signing_secret:
            return True

        if not signature:
            logger.warning("Missing call webhook signature")
            return False

        expected_sig = hmac.new(
            self._signing_secret.encode("utf-8"),
            body,
            hashlib.sha256,
        ).hexdigest()

        return hmac.compare_digest(expected_sig.encode("utf-8"), signature.encode("utf-8"))

    def should_process(self, event: CallWebhookPayload) -> bool:
        return event.event in PROCESSED_EVENTS
