"""
Stall Tracker

Recomputes per-deal stall status from stored signals and serves the
stalled-deal list and manager dashboard views.
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from ..common.errors import parse_document
from ..common.repository import (
    InMemorySignalRepository,
    InMemoryStatusRepository,
    SignalRepository,
    StatusRepository,
)
from ..common.schemas import (
    SEVERITY_ORDER,
    DashboardSummary,
    DealContext,
    ManagerDashboard,
    PositiveEngagement,
    RepBreakdown,
    StageBreakdown,
    StallPhraseCategory,
    StalledDealFilters,
    StallSeverity,
    StallStatus,
    utcnow,
)
from .scoring import ConfidenceScorer

logger = logging.getLogger("dealpulse.engine.stall_tracker")


class StallTracker:
    """
    Deal-level stall aggregation.

    A status is recomputed from scratch on every call and replaces the
    previous one for the deal; there is no history.
    """

    def __init__(
        self,
        signal_repository: Optional[SignalRepository] = None,
        status_repository: Optional[StatusRepository] = None,
        scorer: Optional[ConfidenceScorer] = None,
    ):
        self._signals = signal_repository or InMemorySignalRepository()
        self._statuses = status_repository or InMemoryStatusRepository()
        self._scorer = scorer or ConfidenceScorer()

    @property
    def status_repository(self) -> StatusRepository:
        return self._statuses

    def calculate_deal_status(
        self,
        deal,
        last_positive_engagement: Optional[PositiveEngagement] = None,
        now: Optional[datetime] = None,
    ) -> StallStatus:
        """
        Recompute and store the stall status of one deal.

        Args:
            deal: DealContext or an equivalent dict
            last_positive_engagement: Most recent positive touchpoint, if known
            now: Reference time (defaults to current UTC time)

        Raises:
            ValidationError: if the deal context is malformed
        """
        deal = parse_document(DealContext, deal)
        if last_positive_engagement is not None:
            last_positive_engagement = parse_document(PositiveEngagement, last_positive_engagement)
        now = now or utcnow()

        valid = self._scorer.valid_signals(self._signals.list_for_deal(deal.deal_id), now)
        valid.sort(key=lambda s: s.source_timestamp)

        score = self._scorer.stall_score(valid, now)
        severity = self._scorer.severity(score)
        primary = self._scorer.primary_category(valid)

        days_since_positive = None
        if last_positive_engagement is not None:
            elapsed = (now - last_positive_engagement.date).total_seconds()
            days_since_positive = int(elapsed // 86400)

        previous = self._statuses.get(deal.deal_id)

        status = StallStatus(
            **deal.model_dump(),
            is_stalled=self._scorer.is_stalled(score),
            severity=severity,
            stall_score=score,
            primary_category=primary,
            signal_count=len(valid),
            latest_signal_at=valid[-1].source_timestamp if valid else None,
            signals=valid,
            days_since_last_positive_engagement=days_since_positive,
            last_positive_engagement_date=last_positive_engagement.date if last_positive_engagement else None,
            last_positive_engagement_type=last_positive_engagement.type if last_positive_engagement else None,
            recommended_actions=self._scorer.recommended_actions(primary, severity, valid),
            calculated_at=now,
            alert_sent_at=previous.alert_sent_at if previous else None,
        )
        self._statuses.save(status)

        logger.info(
            "Deal %s: score=%.1f severity=%s stalled=%s signals=%d",
            deal.deal_id, score, severity.value, status.is_stalled, len(valid),
        )
        return status

    def get_deal_status(self, deal_id: str) -> Optional[StallStatus]:
        return self._statuses.get(deal_id)

    def mark_alert_sent(self, deal_id: str, sent_at: Optional[datetime] = None) -> None:
        with self._statuses.lock:
            status = self._statuses.get(deal_id)
            if status is not None:
                self._statuses.save(status.model_copy(update={"alert_sent_at": sent_at or utcnow()}))

    def get_stalled_deals(
        self,
        filters: Optional[StalledDealFilters] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[StallStatus], int]:
        """Stalled deals sorted by score descending, with the unpaginated total"""
        filters = filters or StalledDealFilters()
        deals = [s for s in self._statuses.all() if s.is_stalled]

        if filters.rep_id:
            deals = [d for d in deals if d.owner_rep_id == filters.rep_id]
        if filters.manager_id:
            deals = [d for d in deals if d.manager_id == filters.manager_id]
        if filters.stage:
            deals = [d for d in deals if d.deal_stage == filters.stage]
        if filters.min_severity:
            min_index = SEVERITY_ORDER.index(filters.min_severity)
            deals = [d for d in deals if SEVERITY_ORDER.index(d.severity) >= min_index]

        deals.sort(key=lambda d: d.stall_score, reverse=True)
        return deals[offset:offset + limit], len(deals)

    def get_manager_dashboard(
        self,
        manager_id: str,
        manager_name: str,
        rep_ids: List[str],
    ) -> ManagerDashboard:
        """Summary, per-rep and per-stage breakdowns for a manager's team"""
        team = set(rep_ids)
        all_deals = [d for d in self._statuses.all() if d.owner_rep_id in team]
        stalled = [d for d in all_deals if d.is_stalled]

        def count(severity: StallSeverity) -> int:
            return sum(1 for d in stalled if d.severity == severity)

        engaged = [d.days_since_last_positive_engagement for d in stalled
                   if d.days_since_last_positive_engagement is not None]

        summary = DashboardSummary(
            total_deals=len(all_deals),
            stalled_deals=len(stalled),
            critical_stalls=count(StallSeverity.CRITICAL),
            high_stalls=count(StallSeverity.HIGH),
            medium_stalls=count(StallSeverity.MEDIUM),
            low_stalls=count(StallSeverity.LOW),
            avg_days_since_engagement=round(sum(engaged) / len(engaged)) if engaged else 0,
            total_at_risk_value=sum(d.deal_value or 0 for d in stalled),
        )

        by_rep_map: Dict[str, List[StallStatus]] = {rep_id: [] for rep_id in rep_ids}
        for deal in all_deals:
            by_rep_map[deal.owner_rep_id].append(deal)

        by_rep = []
        for rep_id, deals in by_rep_map.items():
            rep_stalled = [d for d in deals if d.is_stalled]
            by_rep.append(RepBreakdown(
                rep_id=rep_id,
                rep_name=deals[0].owner_rep_name if deals else "Unknown",
                total_deals=len(deals),
                stalled_deals=len(rep_stalled),
                stalled_value=sum(d.deal_value or 0 for d in rep_stalled),
                top_stall_category=self._top_category(rep_stalled),
                deals=rep_stalled,
            ))

        stage_groups: Dict = {}
        for deal in stalled:
            group = stage_groups.setdefault(deal.deal_stage, [0, 0.0])
            group[0] += 1
            group[1] += deal.deal_value or 0

        by_stage = [
            StageBreakdown(stage=stage, stalled_count=n, total_value=value)
            for stage, (n, value) in stage_groups.items()
        ]

        return ManagerDashboard(
            manager_id=manager_id,
            manager_name=manager_name,
            summary=summary,
            by_rep=by_rep,
            by_stage=by_stage,
        )

    @staticmethod
    def _top_category(deals: List[StallStatus]) -> Optional[StallPhraseCategory]:
        counts: Dict[StallPhraseCategory, int] = {}
        for deal in deals:
            if deal.primary_category:
                counts[deal.primary_category] = counts.get(deal.primary_category, 0) + 1

        top = None
        best = 0
        for category, n in counts.items():
            if n > best:
                best = n
                top = category
        return top
