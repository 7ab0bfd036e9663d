"""
Confidence Scorer

Time decay, per-document aggregate strength and the deal-level stall score.

Scoring policy: decayed confidences are summed across signals without
normalizing by signal count, so several weak corroborating signals can
outscore a single strong one.
"""

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

from ..common.config import ScoringConfig
from ..common.schemas import (
    PhraseMatch,
    StallPhraseCategory,
    StallSeverity,
    StallSignal,
    utcnow,
)

logger = logging.getLogger("dealpulse.engine.scoring")

_C = StallPhraseCategory

RECOMMENDED_ACTIONS: Dict[StallPhraseCategory, List[str]] = {
    _C.PRICING_REQUEST: [
        "Schedule a pricing review call to discuss value, not just cost",
        "Send ROI calculator with the pricing to justify investment",
        "Ask what specific budget constraints they are working within",
    ],
    _C.APPROVAL_NEEDED: [
        "Offer to join the approval conversation to address concerns directly",
        "Provide executive summary document for the approver",
        "Ask to understand the approval process and timeline",
    ],
    _C.THINKING: [
        "Set a specific follow-up date and time",
        "Ask what specific aspects they need to think about",
        "Offer additional resources or references to help evaluation",
    ],
    _C.TEAM_CHECK: [
        "Offer to present to the full team",
        "Provide team-ready materials and ROI documentation",
        "Identify potential champions and blockers within the team",
    ],
    _C.DECISION_MAKER: [
        "Request introduction to the decision maker",
        "Offer executive-to-executive conversation",
        "Provide materials specifically designed for executive review",
    ],
    _C.CALLBACK_REQUEST: [
        "Book a specific calendar slot before ending the call",
        "Understand what will change by the requested callback time",
        "Offer a shorter check-in call to maintain momentum",
    ],
    _C.FOLLOWUP_PROMISE: [
        "Establish specific next steps with dates",
        "Send calendar invite for follow-up immediately",
        "Ask what information they need to move forward",
    ],
    _C.INTERNAL_DISCUSSION: [
        "Offer to provide materials for internal presentation",
        "Ask to understand what questions may come up internally",
        "Request to be included in internal discussions as a resource",
    ],
}


CRITICAL_ACTIONS = [
    "Escalate to manager for immediate coaching session",
    "Consider offering limited-time incentive to create urgency",
]
HIGH_ACTIONS = [
    "Schedule manager call review within 24 hours",
]
REQUALIFY_ACTION = "Multiple stall patterns detected - consider requalification of opportunity"
MAX_RECOMMENDED_ACTIONS = 5

SIGNAL_WEIGHT = 30
RECENT_BONUS = 10     # latest signal < 24h old
RECENT_BONUS_48H = 5  # latest signal < 48h old


def hours_between(earlier: datetime, later: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


class ConfidenceScorer:
    """
    Stateless scoring functions parameterized by ``ScoringConfig``.

    All time-dependent methods take an explicit ``now`` so results are
    reproducible; it defaults to the current UTC time.
    """

    def __init__(self, config: Optional[ScoringConfig] = None):
        self._config = config or ScoringConfig()
        if self._config.time_decay_half_life_hours <= 0:
            raise ValueError("time_decay_half_life_hours must be positive")

    @property
    def config(self) -> ScoringConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Per-signal
    # -------------------------------------------------------------------------

    def time_decay(self, base: float, age_hours: float) -> float:
        """base * 0.5 ^ (age / half_life); future timestamps count as age 0"""
        age = max(0.0, age_hours)
        return base * 0.5 ** (age / self._config.time_decay_half_life_hours)

    def decayed_confidence(self, base: float, timestamp: datetime, now: Optional[datetime] = None) -> float:
        return self.time_decay(base, hours_between(timestamp, now or utcnow()))

    def aggregate_strength(self, matches: List[PhraseMatch]) -> float:
        """
        Strength of one source document on a 0-10 scale.

        The strongest match sets the base; each corroborating match adds 0.5,
        up to three of them.
        """
        if not matches:
            return 0.0
        max_confidence = max(m.confidence for m in matches)
        count_bonus = min(len(matches) - 1, 3) * 0.5
        return min(10.0, max_confidence * 8 + count_bonus)

    def is_expired(self, signal: StallSignal, now: Optional[datetime] = None) -> bool:
        age = hours_between(signal.source_timestamp, now or utcnow())
        return age > self._config.max_signal_age_hours

    def valid_signals(self, signals: Iterable[StallSignal], now: Optional[datetime] = None) -> List[StallSignal]:
        now = now or utcnow()
        return [s for s in signals if not self.is_expired(s, now)]

    # -------------------------------------------------------------------------
    # Deal-level
    # -------------------------------------------------------------------------

    def stall_score(self, signals: List[StallSignal], now: Optional[datetime] = None) -> float:
        """
        Deal stall score in [0, 100].

        Expects signals already filtered by ``valid_signals``. Decay is
        recomputed from ``base_confidence`` against ``now``.
        """
        if not signals:
            return 0.0
        now = now or utcnow()

        total = sum(
            self.decayed_confidence(s.base_confidence, s.source_timestamp, now) * SIGNAL_WEIGHT
            for s in signals
        )

        latest = max(s.source_timestamp for s in signals)
        hours_since_latest = hours_between(latest, now)
        if hours_since_latest < 24:
            total += RECENT_BONUS
        elif hours_since_latest < 48:
            total += RECENT_BONUS_48H

        return max(0.0, min(100.0, total))

    def severity(self, score: float) -> StallSeverity:
        if score >= self._config.critical_threshold:
            return StallSeverity.CRITICAL
        if score >= self._config.high_threshold:
            return StallSeverity.HIGH
        if score >= self._config.medium_threshold:
            return StallSeverity.MEDIUM
        return StallSeverity.LOW

    def is_stalled(self, score: float) -> bool:
        return score >= self._config.medium_threshold

    def primary_category(self, signals: List[StallSignal]) -> Optional[StallPhraseCategory]:
        """Category with the highest summed raw match confidence; ties keep the first seen"""
        scores: Dict[StallPhraseCategory, float] = {}
        for signal in signals:
            for match in signal.phrase_matches:
                scores[match.category] = scores.get(match.category, 0.0) + match.confidence

        primary = None
        best = 0.0
        for category, score in scores.items():
            if score > best:
                best = score
                primary = category
        return primary

    def recommended_actions(
        self,
        primary: Optional[StallPhraseCategory],
        severity: StallSeverity,
        signals: List[StallSignal],
    ) -> List[str]:
        actions: List[str] = []

        if primary is not None:
            actions.extend(RECOMMENDED_ACTIONS.get(primary, [])[:2])

        if severity == StallSeverity.CRITICAL:
            actions.extend(CRITICAL_ACTIONS)
        elif severity == StallSeverity.HIGH:
            actions.extend(HIGH_ACTIONS)

        categories = {m.category for s in signals for m in s.phrase_matches}
        if len(categories) >= 3:
            actions.append(REQUALIFY_ACTION)

        return actions[:MAX_RECOMMENDED_ACTIONS]
