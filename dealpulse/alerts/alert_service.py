"""
Alert Generator

Turns stalled deal statuses into deduplicated, expiring alerts, fans them out
to the configured channels and tracks acknowledgement.
"""

import uuid
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple

from ..common.config import AlertConfig
from ..common.errors import DealPulseError, NotFoundError
from ..common.repository import AlertStore, InMemoryAlertStore
from ..common.schemas import (
    PRIORITY_ORDER,
    AlertChannel,
    AlertPriority,
    AlertRecipient,
    RecipientType,
    SignalSource,
    StallAlert,
    StallSeverity,
    StallSignal,
    StallStatus,
    render_alert_action,
    render_alert_summary,
    render_alert_title,
    utcnow,
)
from ..engine.scoring import hours_between
from .channels import DeliveryChannel

logger = logging.getLogger("dealpulse.alerts.alert_service")

_PRIORITY_BY_SEVERITY = {
    StallSeverity.CRITICAL: AlertPriority.URGENT,
    StallSeverity.HIGH: AlertPriority.HIGH,
    StallSeverity.MEDIUM: AlertPriority.MEDIUM,
    StallSeverity.LOW: AlertPriority.LOW,
}

_SOURCE_DESCRIPTIONS = {
    SignalSource.CALL_TRANSCRIPT: "a recent call",
    SignalSource.EMAIL: "an email",
}

DEFAULT_PHRASE = "deal stall detected"


def priority_for(severity: StallSeverity) -> AlertPriority:
    return _PRIORITY_BY_SEVERITY.get(severity, AlertPriority.LOW)


class AlertGenerator:
    """
    Alert lifecycle: generate, deliver, acknowledge, expire.

    At most one live alert exists per deal within the suppression window;
    a live alert is unacknowledged, unexpired and younger than
    ``alert_within_hours``.
    """

    def __init__(
        self,
        config: Optional[AlertConfig] = None,
        store: Optional[AlertStore] = None,
        channels: Optional[Dict[AlertChannel, DeliveryChannel]] = None,
    ):
        self.config = config or AlertConfig()
        self._store = store or InMemoryAlertStore()
        self._channels = channels or {}

    @property
    def store(self) -> AlertStore:
        return self._store

    @property
    def enabled_channels(self) -> List[AlertChannel]:
        channels = []
        for name in self.config.enabled_channels:
            try:
                channels.append(AlertChannel(name))
            except ValueError:
                logger.warning("Skipping unknown alert channel %s", name)
        return channels

    # -------------------------------------------------------------------------
    # Generation
    # -------------------------------------------------------------------------

    def generate_alert(self, status: StallStatus, now: Optional[datetime] = None) -> Optional[StallAlert]:
        """
        Create an alert for a stalled deal.

        Returns:
            The new alert, or None if the deal is not stalled or a live
            alert already exists for it
        """
        if not status.is_stalled:
            return None

        now = now or utcnow()

        with self._store.lock:
            existing = self._live_alert(status.deal_id, now)
            if existing is not None:
                logger.info(
                    "Suppressing alert for deal %s, alert %s still live",
                    status.deal_id, existing.id,
                )
                return None

            alert = self._build_alert(status, now)
            self._store.save(alert)

        logger.info(
            "Generated %s alert %s for deal %s (score %.1f)",
            alert.priority.value, alert.id, status.deal_id, status.stall_score,
        )
        return alert

    def _live_alert(self, deal_id: str, now: datetime) -> Optional[StallAlert]:
        for alert_id in self._store.ids_for_deal(deal_id):
            alert = self._store.get(alert_id)
            if alert is None or alert.acknowledged or alert.is_expired(now):
                continue
            if hours_between(alert.created_at, now) < self.config.alert_within_hours:
                return alert
        return None

    def _build_alert(self, status: StallStatus, now: datetime) -> StallAlert:
        priority = priority_for(status.severity)
        recipient_type, recipients = self._recipients(status, priority)

        latest = self._latest_signal(status.signals)
        top_phrase = DEFAULT_PHRASE
        signal_source = "recent interaction"
        if latest is not None:
            if latest.phrase_matches:
                top_phrase = latest.phrase_matches[0].matched_text
            signal_source = _SOURCE_DESCRIPTIONS.get(latest.source, signal_source)

        hours_since = 0.0
        if status.latest_signal_at is not None:
            hours_since = round(hours_between(status.latest_signal_at, now), 1)

        key = priority.value
        return StallAlert(
            id=str(uuid.uuid4()),
            deal_id=status.deal_id,
            account_id=status.account_id,
            account_name=status.account_name,
            title=render_alert_title(key, status),
            summary=render_alert_summary(
                key, status, top_phrase, signal_source,
                status.days_since_last_positive_engagement,
            ),
            detected_phrase=top_phrase,
            confidence_score=max((s.base_confidence for s in status.signals), default=0.0),
            hours_since_stall_signal=hours_since,
            days_since_positive_engagement=status.days_since_last_positive_engagement,
            priority=priority,
            recipient_type=recipient_type,
            recipients=recipients,
            channels=self.enabled_channels,
            recommended_action=render_alert_action(key, status),
            action_url=self.config.action_url_template.format(deal_id=status.deal_id),
            created_at=now,
            expires_at=now + timedelta(hours=self.config.alert_expiration_hours),
            stall_status=status,
        )

    def _recipients(
        self, status: StallStatus, priority: AlertPriority
    ) -> Tuple[RecipientType, List[AlertRecipient]]:
        escalate = (
            (priority == AlertPriority.URGENT and self.config.escalate_to_both_on_critical)
            or (priority == AlertPriority.HIGH and status.manager_id)
        )

        recipients = [AlertRecipient(
            id=status.owner_rep_id,
            name=status.owner_rep_name,
            email=status.owner_rep_email or self._default_email(status.owner_rep_id),
            type=RecipientType.REP,
        )]

        if escalate and status.manager_id:
            recipients.append(AlertRecipient(
                id=status.manager_id,
                name=status.manager_name or "Manager",
                email=status.manager_email or self._default_email(status.manager_id),
                type=RecipientType.MANAGER,
            ))

        return (RecipientType.BOTH if escalate else RecipientType.REP), recipients

    def _default_email(self, user_id: str) -> str:
        return f"{user_id}@{self.config.recipient_email_domain}"

    @staticmethod
    def _latest_signal(signals: List[StallSignal]) -> Optional[StallSignal]:
        if not signals:
            return None
        return max(signals, key=lambda s: s.source_timestamp)

    # -------------------------------------------------------------------------
    # Delivery and acknowledgement
    # -------------------------------------------------------------------------

    def deliver_alert(self, alert_id: str) -> bool:
        """
        Send an alert through every enabled channel.

        A failing channel is logged and skipped; the others still run.
        Acknowledged alerts are not redelivered.

        Returns:
            True if at least one channel delivered (or the alert was already
            acknowledged)

        Raises:
            NotFoundError: if the alert id is unknown
        """
        alert = self._store.get(alert_id)
        if alert is None:
            raise NotFoundError(f"Alert not found: {alert_id}")
        if alert.acknowledged:
            logger.info("Alert %s already acknowledged, not redelivering", alert_id)
            return True

        delivered: List[AlertChannel] = []
        for channel in alert.channels:
            sender = self._channels.get(channel)
            if sender is None:
                logger.warning("No sender registered for channel %s", channel.value)
                continue
            try:
                if sender.deliver(alert):
                    delivered.append(channel)
            except DealPulseError as e:
                logger.error("Alert %s delivery via %s failed: %s", alert_id, channel.value, e)

        if delivered:
            with self._store.lock:
                current = self._store.get(alert_id) or alert
                via = list(current.delivered_via)
                for channel in delivered:
                    if channel not in via:
                        via.append(channel)
                self._store.save(current.model_copy(update={
                    "delivered_via": via,
                    "delivered_at": utcnow(),
                }))

        logger.info(
            "Alert %s delivered via %s",
            alert_id, ", ".join(c.value for c in delivered) or "no channels",
        )
        return bool(delivered)

    def acknowledge_alert(self, alert_id: str, acknowledged_by: str, notes: Optional[str] = None) -> StallAlert:
        """
        Raises:
            NotFoundError: if the alert id is unknown
        """
        with self._store.lock:
            alert = self._store.get(alert_id)
            if alert is None:
                raise NotFoundError(f"Alert not found: {alert_id}")
            updated = alert.model_copy(update={
                "acknowledged": True,
                "acknowledged_at": utcnow(),
                "acknowledged_by": acknowledged_by,
                "acknowledgment_notes": notes,
            })
            self._store.save(updated)

        logger.info("Alert %s acknowledged by %s", alert_id, acknowledged_by)
        return updated

    def process_stall_statuses(
        self, statuses: List[StallStatus], now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Generate and deliver alerts for a batch of statuses"""
        counts = {"generated": 0, "delivered": 0, "skipped": 0}
        for status in statuses:
            alert = self.generate_alert(status, now)
            if alert is None:
                counts["skipped"] += 1
                continue
            counts["generated"] += 1
            if self.deliver_alert(alert.id):
                counts["delivered"] += 1
        return counts

    # -------------------------------------------------------------------------
    # Queries and cleanup
    # -------------------------------------------------------------------------

    def get_alert(self, alert_id: str) -> Optional[StallAlert]:
        return self._store.get(alert_id)

    def get_alerts_for_deal(self, deal_id: str) -> List[StallAlert]:
        alerts = [self._store.get(i) for i in self._store.ids_for_deal(deal_id)]
        return sorted((a for a in alerts if a is not None), key=lambda a: a.created_at, reverse=True)

    def get_pending_alerts(
        self,
        deal_id: Optional[str] = None,
        rep_id: Optional[str] = None,
        priority: Optional[AlertPriority] = None,
        now: Optional[datetime] = None,
    ) -> List[StallAlert]:
        """Unacknowledged, unexpired alerts; most urgent first, then newest"""
        now = now or utcnow()
        alerts = [a for a in self._store.all() if not a.acknowledged and not a.is_expired(now)]

        if deal_id:
            alerts = [a for a in alerts if a.deal_id == deal_id]
        if rep_id:
            alerts = [a for a in alerts if any(r.id == rep_id for r in a.recipients)]
        if priority:
            alerts = [a for a in alerts if a.priority == priority]

        alerts.sort(key=lambda a: a.created_at, reverse=True)
        alerts.sort(key=lambda a: PRIORITY_ORDER.index(a.priority))
        return alerts

    def cleanup_expired_alerts(self, now: Optional[datetime] = None) -> int:
        now = now or utcnow()
        with self._store.lock:
            expired = [a.id for a in self._store.all() if a.is_expired(now)]
            removed = sum(1 for alert_id in expired if self._store.remove(alert_id))
        if removed:
            logger.info("Removed %d expired alerts", removed)
        return removed
