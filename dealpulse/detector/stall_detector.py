"""
Stall Detector

Scans call transcripts and inbound email for stall phrases and turns the
matches into persisted stall signals, one per (document, category).
"""

import uuid
import logging
from datetime import datetime
from typing import Dict, List, Optional

from ..common.errors import parse_document
from ..common.repository import InMemorySignalRepository, SignalRepository
from ..common.schemas import (
    CallTranscript,
    EmailContent,
    EmailDirection,
    PhraseMatch,
    SignalSource,
    StallPhraseCategory,
    StallSignal,
    utcnow,
)
from ..engine.scoring import ConfidenceScorer
from .matcher import Matcher, RegexMatcher, extract_context

logger = logging.getLogger("dealpulse.detector.stall_detector")

RAW_CONTENT_RADIUS = 200


def group_by_category(matches: List[PhraseMatch]) -> Dict[StallPhraseCategory, List[PhraseMatch]]:
    """Group matches by category, keeping first-appearance order"""
    groups: Dict[StallPhraseCategory, List[PhraseMatch]] = {}
    for match in matches:
        groups.setdefault(match.category, []).append(match)
    return groups


def best_match(matches: List[PhraseMatch]) -> PhraseMatch:
    """Highest confidence match; ties go to the earliest position"""
    best = matches[0]
    for current in matches[1:]:
        if current.confidence > best.confidence:
            best = current
    return best


class StallDetector:
    """
    Stall phrase detection for free text.

    Detection itself is pure; ``analyze_*`` methods additionally save the
    resulting signals to the injected repository.
    """

    def __init__(
        self,
        signal_repository: Optional[SignalRepository] = None,
        scorer: Optional[ConfidenceScorer] = None,
        matcher: Optional[Matcher] = None,
    ):
        self._signals = signal_repository or InMemorySignalRepository()
        self._scorer = scorer or ConfidenceScorer()
        self._matcher = matcher or RegexMatcher(context_radius=self._scorer.config.context_radius)

    @property
    def signal_repository(self) -> SignalRepository:
        return self._signals

    @property
    def matcher(self) -> Matcher:
        return self._matcher

    def detect_phrases(self, text: str) -> List[PhraseMatch]:
        """All stall phrase matches in ``text``, sorted by position"""
        return self._matcher.match(text or "")

    def analyze_transcript(self, transcript, now: Optional[datetime] = None) -> List[StallSignal]:
        """
        Analyze a plain-text call transcript.

        Args:
            transcript: CallTranscript or an equivalent dict
            now: Reference time for decay (defaults to current UTC time)

        Returns:
            New signals, one per detected category (empty when nothing matched)

        Raises:
            ValidationError: if the transcript is malformed
        """
        transcript = parse_document(CallTranscript, transcript)
        logger.info("Analyzing transcript %s (%s) for stall signals", transcript.id, transcript.account_name)

        signals = self._create_signals(
            content=transcript.transcript,
            source=SignalSource.CALL_TRANSCRIPT,
            source_id=transcript.id,
            source_timestamp=transcript.call_date,
            deal_id=transcript.deal_id or "",
            account_id=transcript.account_id,
            account_name=transcript.account_name,
            now=now,
        )

        if not signals:
            logger.debug("No stall phrases detected in transcript %s", transcript.id)
        else:
            logger.info("Detected %d stall signals in transcript %s", len(signals), transcript.id)
        return signals

    def analyze_email(self, email, now: Optional[datetime] = None) -> List[StallSignal]:
        """
        Analyze an email. Only inbound (prospect-sent) mail is scanned;
        subject and body are searched together.

        Raises:
            ValidationError: if the email is malformed
        """
        email = parse_document(EmailContent, email)

        if email.direction != EmailDirection.INBOUND:
            logger.debug("Skipping outbound email %s", email.id)
            return []

        logger.info("Analyzing email %s (%s) for stall signals", email.id, email.account_name)

        return self._create_signals(
            content=f"{email.subject} {email.body}",
            source=SignalSource.EMAIL,
            source_id=email.id,
            source_timestamp=email.sent_date,
            deal_id=email.deal_id or "",
            account_id=email.account_id,
            account_name=email.account_name,
            now=now,
        )

    def _create_signals(
        self,
        content: str,
        source: SignalSource,
        source_id: str,
        source_timestamp: datetime,
        deal_id: str,
        account_id: str,
        account_name: str,
        now: Optional[datetime],
    ) -> List[StallSignal]:
        matches = self.detect_phrases(content)
        if not matches:
            return []

        now = now or utcnow()
        signals = []

        for category, category_matches in group_by_category(matches).items():
            best = best_match(category_matches)
            signal = StallSignal(
                id=str(uuid.uuid4()),
                deal_id=deal_id,
                account_id=account_id,
                account_name=account_name,
                source=source,
                source_id=source_id,
                source_timestamp=source_timestamp,
                phrase_matches=[best],
                match_count=len(category_matches),
                raw_content=extract_context(content, best.position, RAW_CONTENT_RADIUS),
                base_confidence=best.confidence,
                time_decayed_confidence=self._scorer.decayed_confidence(
                    best.confidence, source_timestamp, now
                ),
                aggregate_strength=self._scorer.aggregate_strength(category_matches),
                detected_at=now,
            )
            self._signals.save(signal)
            signals.append(signal)
            logger.debug(
                "Signal %s: %s '%s' (%.2f) for deal %s",
                signal.id, category.value, best.matched_text, best.confidence, deal_id or "-",
            )

        return signals
