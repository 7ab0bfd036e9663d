"""
Alert Delivery Channels

Each channel exposes ``deliver(alert) -> bool``. A channel that is not
configured returns False; a configured channel that fails raises
``DeliveryError``. Retries are left to the transport.
"""

import hmac
import json
import hashlib
import logging
import smtplib
from abc import ABC, abstractmethod
from datetime import datetime
from email.message import EmailMessage
from typing import TYPE_CHECKING, Any, Dict, Optional

import httpx

from ..common.config import AlertConfig
from ..common.errors import DeliveryError, DownstreamUnavailable
from ..common.schemas import AlertChannel, StallAlert, render_alert_text, utcnow

if TYPE_CHECKING:
    from ..pipeline.crm import CrmAdapter

logger = logging.getLogger("dealpulse.alerts.channels")

SIGNATURE_HEADER = "X-DealPulse-Signature"


def build_webhook_payload(alert: StallAlert, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Outbound ``stall_alert`` event body"""
    status = alert.stall_status
    return {
        "event": "stall_alert",
        "timestamp": (now or utcnow()).isoformat(),
        "alert": {
            "id": alert.id,
            "priority": alert.priority.value,
            "title": alert.title,
            "summary": alert.summary,
            "detected_phrase": alert.detected_phrase,
            "confidence_score": alert.confidence_score,
            "recommended_action": alert.recommended_action,
            "action_url": alert.action_url,
        },
        "deal": {
            "id": alert.deal_id,
            "account_id": alert.account_id,
            "account_name": alert.account_name,
            "stage": status.deal_stage.value,
            "value": status.deal_value,
            "owner_rep_id": status.owner_rep_id,
            "owner_rep_name": status.owner_rep_name,
        },
        "timing": {
            "hours_since_stall_signal": alert.hours_since_stall_signal,
            "days_since_positive_engagement": alert.days_since_positive_engagement,
        },
        "recipients": [r.model_dump(mode="json") for r in alert.recipients],
    }


def sign_body(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the request body"""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class DeliveryChannel(ABC):
    """Base class for alert delivery channels"""

    channel: AlertChannel

    @abstractmethod
    def deliver(self, alert: StallAlert) -> bool:
        """
        Deliver one alert.

        Returns:
            True if delivered, False if the channel is not configured

        Raises:
            DeliveryError: if a configured channel failed
        """
        pass


class _HttpChannel(DeliveryChannel):
    def __init__(self, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        self._client = client
        self._timeout = timeout

    def _post(self, url: str, content: bytes, headers: Dict[str, str]) -> None:
        try:
            if self._client is not None:
                response = self._client.post(url, content=content, headers=headers)
            else:
                with httpx.Client(timeout=httpx.Timeout(self._timeout)) as client:
                    response = client.post(url, content=content, headers=headers)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise DeliveryError(f"{self.channel.value} delivery to {url} failed: {e}") from e


class WebhookChannel(_HttpChannel):
    """POSTs the JSON alert payload, signed when a secret is configured"""

    channel = AlertChannel.WEBHOOK

    def __init__(self, url: str, secret: str = "", client: Optional[httpx.Client] = None, timeout: float = 10.0):
        super().__init__(client, timeout)
        self._url = url
        self._secret = secret

    def deliver(self, alert: StallAlert) -> bool:
        if not self._url:
            logger.debug("Webhook URL not configured, skipping alert %s", alert.id)
            return False

        body = json.dumps(build_webhook_payload(alert)).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if self._secret:
            headers[SIGNATURE_HEADER] = sign_body(self._secret, body)

        self._post(self._url, body, headers)
        logger.info("Delivered alert %s to webhook", alert.id)
        return True


class SlackChannel(_HttpChannel):
    """Posts the alert text to a Slack incoming webhook"""

    channel = AlertChannel.SLACK

    def __init__(self, webhook_url: str, client: Optional[httpx.Client] = None, timeout: float = 10.0):
        super().__init__(client, timeout)
        self._webhook_url = webhook_url

    def deliver(self, alert: StallAlert) -> bool:
        if not self._webhook_url:
            logger.debug("Slack webhook not configured, skipping alert %s", alert.id)
            return False

        body = json.dumps({"text": render_alert_text(alert)}).encode("utf-8")
        self._post(self._webhook_url, body, {"Content-Type": "application/json"})
        logger.info("Delivered alert %s to Slack", alert.id)
        return True


class EmailChannel(DeliveryChannel):
    """Sends the alert text to every recipient over SMTP"""

    channel = AlertChannel.EMAIL

    def __init__(self, smtp_host: str, smtp_port: int = 25, from_address: str = "", timeout: float = 10.0):
        self._smtp_host = smtp_host
        self._smtp_port = smtp_port
        self._from_address = from_address
        self._timeout = timeout

    def build_message(self, alert: StallAlert) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = alert.title
        message["From"] = self._from_address
        message["To"] = ", ".join(r.email for r in alert.recipients)
        message.set_content(render_alert_text(alert))
        return message

    def deliver(self, alert: StallAlert) -> bool:
        if not self._smtp_host or not self._from_address:
            logger.debug("SMTP not configured, skipping alert %s", alert.id)
            return False
        if not alert.recipients:
            return False

        try:
            with smtplib.SMTP(self._smtp_host, self._smtp_port, timeout=self._timeout) as smtp:
                smtp.send_message(self.build_message(alert))
        except (smtplib.SMTPException, OSError) as e:
            raise DeliveryError(f"Email delivery for alert {alert.id} failed: {e}") from e

        logger.info("Emailed alert %s to %d recipients", alert.id, len(alert.recipients))
        return True


class CrmTaskChannel(DeliveryChannel):
    """Creates a follow-up task on the deal's CRM record"""

    channel = AlertChannel.CRM_TASK

    def __init__(self, crm: Optional["CrmAdapter"]):
        self._crm = crm

    def deliver(self, alert: StallAlert) -> bool:
        if self._crm is None:
            logger.debug("No CRM adapter, skipping task for alert %s", alert.id)
            return False

        task = f"{alert.title}: {alert.recommended_action}"
        try:
            result = self._crm.create_task(alert.deal_id, task)
        except DownstreamUnavailable as e:
            raise DeliveryError(f"CRM task for alert {alert.id} failed: {e}") from e
        if not result.success:
            raise DeliveryError(f"CRM task for alert {alert.id} failed: {result.error}")

        logger.info("Created CRM task for alert %s on %s", alert.id, alert.deal_id)
        return True


def build_channels(config: AlertConfig, crm: Optional["CrmAdapter"] = None) -> Dict[AlertChannel, DeliveryChannel]:
    """Instantiate every channel; which ones are used is decided by ``enabled_channels``"""
    return {
        AlertChannel.WEBHOOK: WebhookChannel(config.webhook_url, config.webhook_secret),
        AlertChannel.SLACK: SlackChannel(config.slack_webhook_url),
        AlertChannel.EMAIL: EmailChannel(config.smtp_host, config.smtp_port, config.email_from_address),
        AlertChannel.CRM_TASK: CrmTaskChannel(crm),
    }
