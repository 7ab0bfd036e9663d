"""Tests for ConfidenceScorer: decay, aggregate strength and deal stall score."""

import pytest
from datetime import datetime, timedelta, timezone


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_signal(category, base: float, age_hours: float = 0.0, signal_id: str = "s1"):
    from dealpulse.common.schemas import PhraseMatch, SignalSource, StallSignal

    match = PhraseMatch(
        phrase=category.value.lower(),
        category=category,
        matched_text="...",
        confidence=base,
        position=0,
    )
    return StallSignal(
        id=signal_id,
        deal_id="deal-1",
        account_id="acct-1",
        source=SignalSource.CALL_TRANSCRIPT,
        source_id="call-1",
        source_timestamp=NOW - timedelta(hours=age_hours),
        phrase_matches=[match],
        base_confidence=base,
        time_decayed_confidence=base,
        aggregate_strength=base * 8,
    )


class TestTimeDecay:
    @pytest.fixture
    def scorer(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        return ConfidenceScorer()

    def test_half_life(self, scorer):
        assert scorer.time_decay(0.8, 0) == pytest.approx(0.8)
        assert scorer.time_decay(0.8, 48) == pytest.approx(0.4)
        assert scorer.time_decay(0.8, 96) == pytest.approx(0.2)

    def test_monotone_non_increasing(self, scorer):
        values = [scorer.time_decay(0.7, h) for h in range(0, 200, 12)]
        assert all(a >= b for a, b in zip(values, values[1:]))
        assert all(0.0 <= v <= 0.7 for v in values)

    def test_future_age_clamped(self, scorer):
        assert scorer.time_decay(0.6, -10) == pytest.approx(0.6)

    def test_custom_half_life(self):
        from dealpulse.common.config import ScoringConfig
        from dealpulse.engine.scoring import ConfidenceScorer

        scorer = ConfidenceScorer(ScoringConfig(time_decay_half_life_hours=24))
        assert scorer.time_decay(1.0, 24) == pytest.approx(0.5)

    def test_non_positive_half_life_rejected(self):
        from dealpulse.common.config import ScoringConfig
        from dealpulse.engine.scoring import ConfidenceScorer

        with pytest.raises(ValueError):
            ConfidenceScorer(ScoringConfig(time_decay_half_life_hours=0))


class TestAggregateStrength:
    def _matches(self, *confidences):
        from dealpulse.common.schemas import PhraseMatch, StallPhraseCategory
        return [
            PhraseMatch(phrase="p", category=StallPhraseCategory.THINKING,
                        matched_text="t", confidence=c, position=i)
            for i, c in enumerate(confidences)
        ]

    def test_empty_is_zero(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        assert ConfidenceScorer().aggregate_strength([]) == 0.0

    def test_single_match(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        assert ConfidenceScorer().aggregate_strength(self._matches(0.7)) == pytest.approx(5.6)

    def test_corroboration_bonus_capped(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        strength = ConfidenceScorer().aggregate_strength(self._matches(0.5, 0.9, 0.5, 0.5, 0.5))
        assert strength == pytest.approx(8.7)

    def test_never_exceeds_ten(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        assert ConfidenceScorer().aggregate_strength(self._matches(1.0, 1.0, 1.0, 1.0)) <= 10.0


class TestStallScore:
    def test_empty_is_zero(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        assert ConfidenceScorer().stall_score([], NOW) == 0.0

    def test_fresh_signals_with_recency_bonus(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        signals = [make_signal(C.THINKING, 0.7, signal_id="a"), make_signal(C.PRICING_REQUEST, 0.6, signal_id="b")]
        assert ConfidenceScorer().stall_score(signals, NOW) == pytest.approx(49.0)

    def test_recency_bonus_bands(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        scorer = ConfidenceScorer()
        for age, bonus in ((30, 5), (40, 5), (60, 0)):
            expected = scorer.time_decay(0.8, age) * 30 + bonus
            assert scorer.stall_score([make_signal(C.THINKING, 0.8, age)], NOW) == pytest.approx(expected)

    def test_volume_matters(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        scorer = ConfidenceScorer()
        one_strong = scorer.stall_score([make_signal(C.THINKING, 0.9)], NOW)
        three_weak = scorer.stall_score(
            [make_signal(C.THINKING, 0.5, signal_id=str(i)) for i in range(3)], NOW
        )
        assert three_weak > one_strong

    def test_clamped_to_hundred(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        signals = [make_signal(C.THINKING, 1.0, signal_id=str(i)) for i in range(10)]
        assert ConfidenceScorer().stall_score(signals, NOW) == 100.0

    def test_decay_recomputed_from_base(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        stale = make_signal(C.THINKING, 0.8, age_hours=96)
        # time_decayed_confidence is the detection-time value and is ignored here
        assert stale.time_decayed_confidence == 0.8
        assert ConfidenceScorer().stall_score([stale], NOW) == pytest.approx(0.2 * 30)


class TestExpiryAndSeverity:
    def test_expiry_boundary(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        scorer = ConfidenceScorer()
        assert not scorer.is_expired(make_signal(C.THINKING, 0.7, age_hours=168), NOW)
        assert scorer.is_expired(make_signal(C.THINKING, 0.7, age_hours=169), NOW)

    def test_valid_signals_filters_expired(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        fresh = make_signal(C.THINKING, 0.7, age_hours=1, signal_id="fresh")
        old = make_signal(C.THINKING, 0.7, age_hours=200, signal_id="old")
        assert [s.id for s in ConfidenceScorer().valid_signals([fresh, old], NOW)] == ["fresh"]

    def test_severity_bands(self):
        from dealpulse.common.schemas import StallSeverity
        from dealpulse.engine.scoring import ConfidenceScorer

        scorer = ConfidenceScorer()
        assert scorer.severity(80) == StallSeverity.CRITICAL
        assert scorer.severity(79.9) == StallSeverity.HIGH
        assert scorer.severity(60) == StallSeverity.HIGH
        assert scorer.severity(40) == StallSeverity.MEDIUM
        assert scorer.severity(39.9) == StallSeverity.LOW
        assert scorer.is_stalled(40)
        assert not scorer.is_stalled(39.9)


class TestPrimaryCategoryAndActions:
    def test_primary_category_by_summed_confidence(self):
        from dealpulse.common.schemas import StallPhraseCategory as C
        from dealpulse.engine.scoring import ConfidenceScorer

        signals = [
            make_signal(C.DECISION_MAKER, 0.9, signal_id="a"),
            make_signal(C.THINKING, 0.5, signal_id="b"),
            make_signal(C.THINKING, 0.5, signal_id="c"),
        ]
        assert ConfidenceScorer().primary_category(signals) == C.THINKING

    def test_primary_category_empty(self):
        from dealpulse.engine.scoring import ConfidenceScorer
        assert ConfidenceScorer().primary_category([]) is None

    def test_critical_actions_capped_at_five(self):
        from dealpulse.common.schemas import StallPhraseCategory as C, StallSeverity
        from dealpulse.engine.scoring import (
            CRITICAL_ACTIONS,
            RECOMMENDED_ACTIONS,
            REQUALIFY_ACTION,
            ConfidenceScorer,
        )

        signals = [
            make_signal(C.THINKING, 0.7, signal_id="a"),
            make_signal(C.TEAM_CHECK, 0.6, signal_id="b"),
            make_signal(C.PRICING_REQUEST, 0.6, signal_id="c"),
        ]
        actions = ConfidenceScorer().recommended_actions(C.THINKING, StallSeverity.CRITICAL, signals)

        assert actions == RECOMMENDED_ACTIONS[C.THINKING][:2] + CRITICAL_ACTIONS + [REQUALIFY_ACTION]
        assert len(actions) == 5

    def test_high_actions(self):
        from dealpulse.common.schemas import StallPhraseCategory as C, StallSeverity
        from dealpulse.engine.scoring import HIGH_ACTIONS, RECOMMENDED_ACTIONS, ConfidenceScorer

        actions = ConfidenceScorer().recommended_actions(
            C.APPROVAL_NEEDED, StallSeverity.HIGH, [make_signal(C.APPROVAL_NEEDED, 0.8)]
        )
        assert actions == RECOMMENDED_ACTIONS[C.APPROVAL_NEEDED][:2] + HIGH_ACTIONS
