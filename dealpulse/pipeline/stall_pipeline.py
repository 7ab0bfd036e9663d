"""
Stall Pipeline

Detection -> status recomputation -> alert generation and delivery, for
transcripts, emails and on-demand recalculation.
"""

import logging
from datetime import datetime
from typing import List, Optional

from ..alerts import AlertGenerator
from ..common.errors import DealPulseError, ValidationError, parse_document
from ..common.schemas import (
    CallTranscript,
    DealContext,
    EmailContent,
    PhraseMatch,
    StallAnalysisResult,
    StallSignal,
    StallStatus,
    utcnow,
)
from ..detector import StallDetector
from ..engine import StallTracker

logger = logging.getLogger("dealpulse.pipeline.stall_pipeline")


class StallPipeline:
    """Stall detection facade returning tagged results"""

    def __init__(self, detector: StallDetector, tracker: StallTracker, alerts: AlertGenerator):
        self.detector = detector
        self.tracker = tracker
        self.alerts = alerts

    def detect(self, text: str) -> List[PhraseMatch]:
        return self.detector.detect_phrases(text)

    def analyze_transcript(
        self,
        transcript,
        deal=None,
        last_positive_engagement=None,
        now: Optional[datetime] = None,
    ) -> StallAnalysisResult:
        """
        Detect stall signals in a call transcript and, when the deal context
        is supplied, recompute its status and alert on it.
        """
        try:
            transcript = parse_document(CallTranscript, transcript)
            deal = parse_document(DealContext, deal) if deal is not None else None
            if deal is not None and not transcript.deal_id:
                transcript = transcript.model_copy(update={"deal_id": deal.deal_id})
            signals = self.detector.analyze_transcript(transcript, now)
        except ValidationError as e:
            return StallAnalysisResult(success=False, error=str(e), error_code="validation")

        return self._evaluate(signals, deal, last_positive_engagement, now)

    def analyze_email(
        self,
        email,
        deal=None,
        last_positive_engagement=None,
        now: Optional[datetime] = None,
    ) -> StallAnalysisResult:
        try:
            email = parse_document(EmailContent, email)
            deal = parse_document(DealContext, deal) if deal is not None else None
            if deal is not None and not email.deal_id:
                email = email.model_copy(update={"deal_id": deal.deal_id})
            signals = self.detector.analyze_email(email, now)
        except ValidationError as e:
            return StallAnalysisResult(success=False, error=str(e), error_code="validation")

        return self._evaluate(signals, deal, last_positive_engagement, now)

    def recalculate(
        self,
        deal,
        last_positive_engagement=None,
        now: Optional[datetime] = None,
    ) -> StallAnalysisResult:
        """Recompute a deal's status from its stored signals"""
        return self._evaluate([], deal, last_positive_engagement, now)

    def recalculate_existing(self, deal_id: str, now: Optional[datetime] = None) -> StallAnalysisResult:
        """Recompute a tracked deal using the context of its last status"""
        status = self.tracker.get_deal_status(deal_id)
        if status is None:
            return StallAnalysisResult(
                success=False, error=f"Deal not tracked: {deal_id}", error_code="not_found",
            )

        deal = DealContext.model_validate(status.model_dump(include=set(DealContext.model_fields)))
        engagement = None
        if status.last_positive_engagement_date is not None:
            engagement = {
                "date": status.last_positive_engagement_date,
                "type": status.last_positive_engagement_type or "",
            }
        return self._evaluate([], deal, engagement, now)

    def _evaluate(
        self,
        signals: List[StallSignal],
        deal,
        last_positive_engagement,
        now: Optional[datetime],
    ) -> StallAnalysisResult:
        if deal is None:
            return StallAnalysisResult(success=True, signals=signals)

        now = now or utcnow()
        try:
            status = self.tracker.calculate_deal_status(deal, last_positive_engagement, now)
        except ValidationError as e:
            return StallAnalysisResult(success=False, signals=signals, error=str(e), error_code="validation")

        alert = None
        delivered = False
        if status.is_stalled:
            alert, delivered = self._alert(status, now)
            if alert is not None:
                status = self.tracker.get_deal_status(status.deal_id) or status

        return StallAnalysisResult(
            success=True,
            signals=signals,
            status=status,
            alert=alert,
            alert_delivered=delivered,
        )

    def _alert(self, status: StallStatus, now: datetime):
        alert = self.alerts.generate_alert(status, now)
        if alert is None:
            return None, False

        try:
            delivered = self.alerts.deliver_alert(alert.id)
        except DealPulseError as e:
            logger.error("Deal %s: delivery of alert %s failed: %s", status.deal_id, alert.id, e)
            delivered = False
        self.tracker.mark_alert_sent(status.deal_id, now)
        logger.info(
            "Deal %s: %s alert %s %s",
            status.deal_id, alert.priority.value, alert.id,
            "delivered" if delivered else "not delivered",
        )
        return self.alerts.get_alert(alert.id) or alert, delivered
