"""Tests for the stage rule engine: priority order, confidence and transitions."""

import pytest


def call_data(*signals, call_id="call-1"):
    from dealpulse.common.schemas import CallSignal, ExtractedCallData
    return ExtractedCallData(
        call_id=call_id,
        signals=[CallSignal(type=t, confidence=c) for t, c in signals],
    )


class TestMapToStage:
    @pytest.fixture
    def engine(self):
        from dealpulse.engine import StageEngine
        return StageEngine()

    def test_demo_scheduled(self, engine):
        from dealpulse.common.schemas import CallSignalType as T, Disposition, PipelineStage

        result = engine.map_to_stage(call_data((T.DEMO_SCHEDULED, 0.85)))

        assert result.new_stage == PipelineStage.DEMO_SCHEDULED
        assert result.disposition == Disposition.DEMO_SCHEDULED
        assert result.confidence == 1.0
        assert result.requires_confirmation is False
        assert result.matched_rule == "demo_scheduled"
        assert "Send calendar invite" in result.suggested_tasks

    def test_not_interested_disqualifies(self, engine):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage

        result = engine.map_to_stage(call_data((T.LIVE_CONVERSATION, 0.9), (T.NOT_INTERESTED, 0.9)))

        assert result.new_stage == PipelineStage.CLOSED_LOST
        assert result.flags == ["disqualified"]
        assert result.reasoning == (
            "Mapped to CLOSED_LOST with disposition NOT_INTERESTED. "
            "Triggered by: Not Interested (90%). Flags: disqualified."
        )

    def test_higher_priority_rule_wins(self, engine):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage

        result = engine.map_to_stage(call_data((T.NOT_INTERESTED, 0.9), (T.DEMO_SCHEDULED, 0.85)))
        assert result.new_stage == PipelineStage.DEMO_SCHEDULED

    def test_send_pricing_confidence(self, engine):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage

        result = engine.map_to_stage(call_data((T.SEND_PRICING_REQUEST, 0.7)))

        assert result.new_stage == PipelineStage.NEGOTIATION
        assert result.confidence == pytest.approx(0.83)
        assert result.flags == ["stall_flag", "needs_follow_up"]

    def test_medium_confidence_requires_confirmation(self, engine):
        from dealpulse.common.schemas import CallSignalType as T, Disposition, PipelineStage

        result = engine.map_to_stage(call_data((T.LIVE_CONVERSATION, 0.5)))

        assert result.new_stage == PipelineStage.WORKING
        assert result.disposition == Disposition.CONNECTED
        assert result.confidence == pytest.approx(0.61)
        assert result.requires_confirmation is True

    def test_min_confidence_gate(self, engine):
        from dealpulse.common.schemas import CallSignalType as T

        result = engine.map_to_stage(call_data((T.DEMO_SCHEDULED, 0.5)))
        assert result.matched_rule is None

    def test_default_when_nothing_matches(self, engine, caplog):
        from dealpulse.common.schemas import PipelineStage

        result = engine.map_to_stage(call_data())

        assert result.new_stage == PipelineStage.WORKING
        assert result.confidence == 0.3
        assert result.flags == ["needs_manual_review"]
        assert result.requires_confirmation is True
        assert result.disposition is None
        assert "No stage rule matched" in caplog.text

    def test_deterministic(self, engine):
        from dealpulse.common.schemas import CallSignalType as T

        data = call_data((T.LIVE_CONVERSATION, 0.95), (T.INTEREST_EXPRESSED, 0.75))
        assert engine.map_to_stage(data) == engine.map_to_stage(data)


class TestRulePriority:
    def _rules(self, qualified_priority, nurture_priority):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage
        from dealpulse.engine.rules import RuleConditions, RuleResult, StageRule

        conditions = RuleConditions(any_signals=(T.LIVE_CONVERSATION,))
        return [
            StageRule("to_qualified", conditions, RuleResult(stage=PipelineStage.QUALIFIED), qualified_priority),
            StageRule("to_nurture", conditions, RuleResult(stage=PipelineStage.NURTURE), nurture_priority),
        ]

    def test_swapping_priorities_swaps_winner(self):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage
        from dealpulse.engine import StageEngine

        data = call_data((T.LIVE_CONVERSATION, 0.9))

        assert StageEngine(rules=self._rules(10, 20)).map_to_stage(data).new_stage == PipelineStage.NURTURE
        assert StageEngine(rules=self._rules(20, 10)).map_to_stage(data).new_stage == PipelineStage.QUALIFIED

    def test_rules_sorted_descending(self):
        from dealpulse.engine import StageEngine
        priorities = [r.priority for r in StageEngine().rules]
        assert priorities == sorted(priorities, reverse=True)


class TestEvaluateRule:
    def _exclude_only_rule(self):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage
        from dealpulse.engine.rules import RuleConditions, RuleResult, StageRule

        return StageRule(
            name="not_disqualified",
            conditions=RuleConditions(exclude_signals=(T.NOT_INTERESTED,), min_confidence=0.9),
            result=RuleResult(stage=PipelineStage.WORKING),
            priority=1,
        )

    def test_min_confidence_vacuous_without_relevant_signals(self):
        from dealpulse.engine import StageEngine
        assert StageEngine().evaluate_rule(self._exclude_only_rule(), []) is True

    def test_strict_min_confidence(self):
        from dealpulse.common.config import EngineConfig
        from dealpulse.engine import StageEngine

        engine = StageEngine(EngineConfig(strict_min_confidence=True))
        assert engine.evaluate_rule(self._exclude_only_rule(), []) is False

    def test_exclusion_blocks(self):
        from dealpulse.common.schemas import CallSignal, CallSignalType as T
        from dealpulse.engine import StageEngine

        signals = [CallSignal(type=T.NOT_INTERESTED, confidence=0.9)]
        assert StageEngine().evaluate_rule(self._exclude_only_rule(), signals) is False

    def test_no_relevant_signals_confidence(self):
        from dealpulse.engine import StageEngine
        assert StageEngine().calculate_confidence([], self._exclude_only_rule()) == 0.5


class TestTransitionsAndConfig:
    def test_valid_transitions(self):
        from dealpulse.common.schemas import PipelineStage as S
        from dealpulse.engine import StageEngine

        assert StageEngine.is_valid_transition(S.NEW, S.ATTEMPTED)
        assert StageEngine.is_valid_transition(S.CLOSED_LOST, S.WORKING)
        assert StageEngine.is_valid_transition(S.CLOSED_WON, S.CLOSED_WON)
        assert not StageEngine.is_valid_transition(S.CLOSED_WON, S.WORKING)
        assert not StageEngine.is_valid_transition(S.NEGOTIATION, S.NEW)

    def test_signal_weight_overrides(self, caplog):
        from dealpulse.common.config import EngineConfig
        from dealpulse.common.schemas import CallSignalType
        from dealpulse.engine import StageEngine

        engine = StageEngine(EngineConfig(signal_weights={"DEMO_SCHEDULED": 3.0, "BOGUS": 1.0}))

        assert engine.signal_weights[CallSignalType.DEMO_SCHEDULED] == 3.0
        assert engine.signal_weights[CallSignalType.GATEKEEPER] == 0.8
        assert "BOGUS" in caplog.text

    def test_update_config_swaps_thresholds(self):
        from dealpulse.common.config import EngineConfig
        from dealpulse.common.schemas import CallSignalType as T
        from dealpulse.engine import StageEngine

        engine = StageEngine()
        data = call_data((T.SEND_PRICING_REQUEST, 0.7))
        assert engine.map_to_stage(data).requires_confirmation is False

        engine.update_config(EngineConfig(high_confidence_threshold=0.9))
        assert engine.map_to_stage(data).requires_confirmation is True

    def test_update_config_rejects_inverted_thresholds(self):
        from dealpulse.common.config import EngineConfig
        from dealpulse.engine import StageEngine

        engine = StageEngine()
        with pytest.raises(ValueError):
            engine.update_config(EngineConfig(high_confidence_threshold=0.4, medium_confidence_threshold=0.6))
        assert engine.config.high_confidence_threshold == 0.8
