"""
Stage Engine

Maps extracted call data to a pipeline stage and disposition by evaluating
the priority-ordered rule table. Always produces a result: when no rule is
satisfied, a low-confidence Working-stage default asks for manual review.
"""

import logging
from typing import Dict, List, Optional

from ..common.config import EngineConfig
from ..common.schemas import (
    CallSignal,
    CallSignalType,
    ExtractedCallData,
    PipelineStage,
    RoutingAction,
    StageMappingResult,
    format_signal_type,
)
from .router import ActionRouter
from .rules import (
    DEFAULT_CONFIDENCE,
    DEFAULT_FLAGS,
    DEFAULT_REASONING,
    DEFAULT_SIGNAL_WEIGHTS,
    DEFAULT_STAGE,
    DEFAULT_TASKS,
    STAGE_RULES,
    VALID_TRANSITIONS,
    StageRule,
    sorted_rules,
)

logger = logging.getLogger("dealpulse.engine.stage_engine")


def merge_signal_weights(overrides: Dict[str, float]) -> Dict[CallSignalType, float]:
    """Overlay configured weights (keyed by signal type name) on the defaults"""
    weights = dict(DEFAULT_SIGNAL_WEIGHTS)
    for name, weight in (overrides or {}).items():
        try:
            weights[CallSignalType(name)] = float(weight)
        except ValueError:
            logger.warning("Ignoring weight for unknown signal type %s", name)
    return weights


class StageEngine:
    """
    First-match rule engine over call signals.

    Rules are tried in descending priority; evaluation stops at the first
    satisfied rule. Transition validation is advisory: ``map_to_stage`` does
    not know the record's current stage, callers check
    ``is_valid_transition`` before applying.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        rules: Optional[List[StageRule]] = None,
        router: Optional[ActionRouter] = None,
    ):
        self._config = config or EngineConfig()
        self._rules = sorted_rules(STAGE_RULES if rules is None else rules)
        self._router = router or ActionRouter(self._config)
        self._weights = merge_signal_weights(self._config.signal_weights)
        logger.info("StageEngine initialized with %d rules", len(self._rules))

    @property
    def config(self) -> EngineConfig:
        return self._config

    @property
    def router(self) -> ActionRouter:
        return self._router

    @property
    def rules(self) -> List[StageRule]:
        return list(self._rules)

    @property
    def signal_weights(self) -> Dict[CallSignalType, float]:
        return dict(self._weights)

    # -------------------------------------------------------------------------
    # Mapping
    # -------------------------------------------------------------------------

    def map_to_stage(self, call_data: ExtractedCallData) -> StageMappingResult:
        signals = call_data.signals
        logger.info("Mapping call %s with %d signals", call_data.call_id, len(signals))

        for rule in self._rules:
            if not self.evaluate_rule(rule, signals):
                continue

            confidence = self.calculate_confidence(signals, rule)
            decision = self._router.decide(confidence)
            result = StageMappingResult(
                new_stage=rule.result.stage,
                disposition=rule.result.disposition,
                confidence=confidence,
                reasoning=self.generate_reasoning(rule, signals),
                flags=list(rule.result.flags),
                requires_confirmation=decision.action == RoutingAction.FLAG_FOR_CONFIRMATION,
                suggested_tasks=list(rule.result.suggested_tasks),
                matched_rule=rule.name,
            )
            logger.info(
                "Call %s -> %s via %s (confidence %.2f, confirm=%s)",
                call_data.call_id, result.new_stage.value, rule.name,
                confidence, result.requires_confirmation,
            )
            return result

        logger.warning("No stage rule matched for call %s, using default", call_data.call_id)
        return StageMappingResult(
            new_stage=DEFAULT_STAGE,
            confidence=DEFAULT_CONFIDENCE,
            reasoning=DEFAULT_REASONING,
            flags=list(DEFAULT_FLAGS),
            requires_confirmation=True,
            suggested_tasks=list(DEFAULT_TASKS),
        )

    # -------------------------------------------------------------------------
    # Rule evaluation
    # -------------------------------------------------------------------------

    @staticmethod
    def relevant_signals(rule: StageRule, signals: List[CallSignal]) -> List[CallSignal]:
        """Signals whose type is named in the rule's required or any-of sets"""
        relevant = rule.conditions.relevant_types
        return [s for s in signals if s.type in relevant]

    def evaluate_rule(self, rule: StageRule, signals: List[CallSignal]) -> bool:
        types = {s.type for s in signals}
        conditions = rule.conditions

        if conditions.required_signals and not all(t in types for t in conditions.required_signals):
            return False
        if conditions.any_signals and not any(t in types for t in conditions.any_signals):
            return False
        if conditions.exclude_signals and any(t in types for t in conditions.exclude_signals):
            return False

        if conditions.min_confidence is not None:
            relevant = self.relevant_signals(rule, signals)
            if relevant:
                average = sum(s.confidence for s in relevant) / len(relevant)
                if average < conditions.min_confidence:
                    return False
            elif self._config.strict_min_confidence:
                return False

        return True

    def calculate_confidence(self, signals: List[CallSignal], rule: StageRule) -> float:
        """
        Weighted mean of the relevant signals, plus a corroboration bonus
        (0.05 per signal, max 0.15) and a priority bonus (priority / 1000).
        """
        relevant = self.relevant_signals(rule, signals)
        if not relevant:
            return 0.5

        total_weight = 0.0
        weighted_sum = 0.0
        for signal in relevant:
            weight = self._weights.get(signal.type, 1.0)
            weighted_sum += signal.confidence * weight
            total_weight += weight

        base = weighted_sum / total_weight
        count_bonus = min(len(relevant) * 0.05, 0.15)
        priority_bonus = rule.priority / 100 * 0.1

        return round(min(base + count_bonus + priority_bonus, 1.0), 2)

    def generate_reasoning(self, rule: StageRule, signals: List[CallSignal]) -> str:
        descriptions = ", ".join(
            f"{format_signal_type(s.type.value)} ({s.confidence * 100:.0f}%)"
            for s in self.relevant_signals(rule, signals)
        )

        reasoning = f"Mapped to {rule.result.stage.value}"
        if rule.result.disposition:
            reasoning += f" with disposition {rule.result.disposition.value}"
        reasoning += f". Triggered by: {descriptions}."
        if rule.result.flags:
            reasoning += f" Flags: {', '.join(rule.result.flags)}."
        return reasoning

    # -------------------------------------------------------------------------
    # Transitions and configuration
    # -------------------------------------------------------------------------

    @staticmethod
    def is_valid_transition(current: PipelineStage, new: PipelineStage) -> bool:
        if current == new:
            return True
        return new in VALID_TRANSITIONS.get(current, ())

    def update_config(self, config: EngineConfig) -> None:
        """Swap thresholds, toggles and weight overrides at runtime"""
        self._router.update_config(config)
        self._config = config
        self._weights = merge_signal_weights(config.signal_weights)
        logger.info("StageEngine configuration updated")
