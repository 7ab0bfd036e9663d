"""Tests for StallTracker: status recomputation, stalled-deal list, dashboard."""

import pytest
from datetime import datetime, timedelta, timezone


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_signal(deal_id, category, base, age_hours=0.0, signal_id=None):
    from dealpulse.common.schemas import PhraseMatch, SignalSource, StallSignal

    return StallSignal(
        id=signal_id or f"{deal_id}-{category.value}-{age_hours}",
        deal_id=deal_id,
        account_id="acct",
        source=SignalSource.CALL_TRANSCRIPT,
        source_id="call",
        source_timestamp=NOW - timedelta(hours=age_hours),
        phrase_matches=[PhraseMatch(
            phrase="p", category=category, matched_text="t", confidence=base, position=0,
        )],
        base_confidence=base,
        time_decayed_confidence=base,
        aggregate_strength=base * 8,
    )


def make_deal(deal_id, rep_id="rep-1", manager_id="mgr-1", stage="DISCOVERY", value=10000.0):
    return {
        "deal_id": deal_id,
        "account_id": f"acct-{deal_id}",
        "account_name": f"Account {deal_id}",
        "deal_stage": stage,
        "deal_value": value,
        "owner_rep_id": rep_id,
        "owner_rep_name": f"Rep {rep_id}",
        "manager_id": manager_id,
    }


@pytest.fixture
def repo():
    from dealpulse.common.repository import InMemorySignalRepository
    return InMemorySignalRepository()


@pytest.fixture
def tracker(repo):
    from dealpulse.engine import StallTracker
    return StallTracker(signal_repository=repo)


class TestCalculateDealStatus:
    def test_medium_stall(self, repo, tracker):
        from dealpulse.common.schemas import StallPhraseCategory as C, StallSeverity

        repo.save(make_signal("d1", C.THINKING, 0.7))
        repo.save(make_signal("d1", C.PRICING_REQUEST, 0.6))

        status = tracker.calculate_deal_status(make_deal("d1"), now=NOW)

        assert status.stall_score == pytest.approx(49.0)
        assert status.severity == StallSeverity.MEDIUM
        assert status.is_stalled is True
        assert status.primary_category == C.THINKING
        assert status.signal_count == 2
        assert status.latest_signal_at == NOW
        assert status.calculated_at == NOW
        assert tracker.get_deal_status("d1") == status

    def test_expired_signals_ignored(self, repo, tracker):
        from dealpulse.common.schemas import StallPhraseCategory as C

        repo.save(make_signal("d1", C.THINKING, 0.9, age_hours=200))

        status = tracker.calculate_deal_status(make_deal("d1"), now=NOW)

        assert status.signal_count == 0
        assert status.stall_score == 0.0
        assert status.is_stalled is False
        assert status.primary_category is None
        assert status.recommended_actions == []

    def test_signals_ordered_oldest_first(self, repo, tracker):
        from dealpulse.common.schemas import StallPhraseCategory as C

        repo.save(make_signal("d1", C.THINKING, 0.7, age_hours=1, signal_id="newer"))
        repo.save(make_signal("d1", C.TEAM_CHECK, 0.6, age_hours=10, signal_id="older"))

        status = tracker.calculate_deal_status(make_deal("d1"), now=NOW)

        assert [s.id for s in status.signals] == ["older", "newer"]
        assert status.latest_signal_at == NOW - timedelta(hours=1)

    def test_days_since_positive_engagement_floors(self, tracker):
        engagement = {"date": NOW - timedelta(days=3, hours=12), "type": "demo"}

        status = tracker.calculate_deal_status(make_deal("d1"), engagement, NOW)

        assert status.days_since_last_positive_engagement == 3
        assert status.last_positive_engagement_type == "demo"

    def test_recompute_is_idempotent(self, repo, tracker):
        from dealpulse.common.schemas import StallPhraseCategory as C

        repo.save(make_signal("d1", C.THINKING, 0.7))
        first = tracker.calculate_deal_status(make_deal("d1"), now=NOW)
        second = tracker.calculate_deal_status(make_deal("d1"), now=NOW)

        assert first == second

    def test_alert_sent_at_survives_recompute(self, repo, tracker):
        from dealpulse.common.schemas import StallPhraseCategory as C

        repo.save(make_signal("d1", C.THINKING, 0.7))
        tracker.calculate_deal_status(make_deal("d1"), now=NOW)
        tracker.mark_alert_sent("d1", NOW)

        status = tracker.calculate_deal_status(make_deal("d1"), now=NOW + timedelta(hours=1))
        assert status.alert_sent_at == NOW

    def test_malformed_deal_rejected(self, tracker):
        from dealpulse.common.errors import ValidationError

        with pytest.raises(ValidationError):
            tracker.calculate_deal_status({"deal_stage": "DISCOVERY"}, now=NOW)


class TestStalledDeals:
    @pytest.fixture
    def populated(self, repo, tracker):
        from dealpulse.common.schemas import StallPhraseCategory as C

        # d1 scores 49 (MEDIUM), d2 clamps at 100
        repo.save(make_signal("d1", C.THINKING, 0.7))
        repo.save(make_signal("d1", C.PRICING_REQUEST, 0.6))
        for i, cat in enumerate((C.DECISION_MAKER, C.APPROVAL_NEEDED, C.CALLBACK_REQUEST, C.TEAM_CHECK)):
            repo.save(make_signal("d2", cat, 0.9, signal_id=f"d2-{i}"))
        repo.save(make_signal("d3", C.TEAM_CHECK, 0.5))

        tracker.calculate_deal_status(make_deal("d1", rep_id="rep-1", value=5000), now=NOW)
        tracker.calculate_deal_status(make_deal("d2", rep_id="rep-2", stage="PROPOSAL", value=20000), now=NOW)
        tracker.calculate_deal_status(make_deal("d3", rep_id="rep-1"), now=NOW)
        return tracker

    def test_sorted_by_score(self, populated):
        deals, total = populated.get_stalled_deals()
        assert [d.deal_id for d in deals] == ["d2", "d1"]
        assert total == 2

    def test_filters(self, populated):
        from dealpulse.common.schemas import DealStage, StalledDealFilters, StallSeverity

        deals, _ = populated.get_stalled_deals(StalledDealFilters(rep_id="rep-1"))
        assert [d.deal_id for d in deals] == ["d1"]

        deals, _ = populated.get_stalled_deals(StalledDealFilters(stage=DealStage.PROPOSAL))
        assert [d.deal_id for d in deals] == ["d2"]

        deals, _ = populated.get_stalled_deals(StalledDealFilters(min_severity=StallSeverity.HIGH))
        assert [d.deal_id for d in deals] == ["d2"]

    def test_pagination_keeps_total(self, populated):
        deals, total = populated.get_stalled_deals(limit=1, offset=1)
        assert [d.deal_id for d in deals] == ["d1"]
        assert total == 2

    def test_manager_dashboard(self, populated):
        from dealpulse.common.schemas import DealStage, StallPhraseCategory as C

        dashboard = populated.get_manager_dashboard("mgr-1", "Morgan", ["rep-1", "rep-2", "rep-3"])

        assert dashboard.summary.total_deals == 3
        assert dashboard.summary.stalled_deals == 2
        assert dashboard.summary.critical_stalls == 1
        assert dashboard.summary.medium_stalls == 1
        assert dashboard.summary.total_at_risk_value == 25000

        by_rep = {r.rep_id: r for r in dashboard.by_rep}
        assert by_rep["rep-1"].total_deals == 2
        assert by_rep["rep-1"].stalled_deals == 1
        assert by_rep["rep-1"].top_stall_category == C.THINKING
        assert by_rep["rep-3"].rep_name == "Unknown"
        assert by_rep["rep-3"].total_deals == 0

        by_stage = {s.stage: s for s in dashboard.by_stage}
        assert by_stage[DealStage.PROPOSAL].stalled_count == 1
        assert by_stage[DealStage.PROPOSAL].total_value == 20000
