"""
Stage Rules

Declarative rule table mapping call signal sets to pipeline stages.

Rules are evaluated in descending priority and the first satisfied rule
wins, so overlapping rules must be ordered with the most specific or most
urgent outcome first.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..common.schemas import CallSignalType, Disposition, PipelineStage

_T = CallSignalType
_S = PipelineStage
_D = Disposition


@dataclass(frozen=True)
class RuleConditions:
    required_signals: Tuple[CallSignalType, ...] = ()  # all must be present
    any_signals: Tuple[CallSignalType, ...] = ()       # at least one present
    exclude_signals: Tuple[CallSignalType, ...] = ()   # none may be present
    min_confidence: Optional[float] = None             # mean over relevant signals

    @property
    def relevant_types(self) -> frozenset:
        return frozenset(self.required_signals) | frozenset(self.any_signals)


@dataclass(frozen=True)
class RuleResult:
    stage: PipelineStage
    disposition: Optional[Disposition] = None
    flags: Tuple[str, ...] = ()
    suggested_tasks: Tuple[str, ...] = ()


@dataclass(frozen=True)
class StageRule:
    name: str
    conditions: RuleConditions
    result: RuleResult
    priority: int


DEFAULT_SIGNAL_WEIGHTS: Dict[CallSignalType, float] = {
    _T.LIVE_CONVERSATION: 1.0,
    _T.INTEREST_EXPRESSED: 1.2,
    _T.DEMO_SCHEDULED: 1.5,
    _T.PRICING_DISCUSSED: 1.3,
    _T.SEND_PRICING_REQUEST: 1.0,
    _T.OBJECTION_RAISED: 0.8,
    _T.OBJECTION_HANDLED: 1.1,
    _T.DECISION_MAKER_IDENTIFIED: 1.2,
    _T.NEXT_STEPS_DEFINED: 1.1,
    _T.NO_ANSWER: 0.9,
    _T.VOICEMAIL_LEFT: 0.9,
    _T.WRONG_NUMBER: 1.0,
    _T.GATEKEEPER: 0.8,
    _T.NOT_INTERESTED: 1.0,
    _T.COMPETITOR_MENTIONED: 0.9,
    _T.BUDGET_DISCUSSED: 1.1,
    _T.TIMELINE_DISCUSSED: 1.1,
    _T.FOLLOW_UP_REQUESTED: 1.0,
}


STAGE_RULES: List[StageRule] = [
    StageRule(
        name="demo_scheduled",
        conditions=RuleConditions(any_signals=(_T.DEMO_SCHEDULED,), min_confidence=0.6),
        result=RuleResult(
            stage=_S.DEMO_SCHEDULED,
            disposition=_D.DEMO_SCHEDULED,
            suggested_tasks=("Confirm demo meeting details", "Send calendar invite"),
        ),
        priority=100,
    ),
    StageRule(
        name="not_interested",
        conditions=RuleConditions(any_signals=(_T.NOT_INTERESTED,), min_confidence=0.7),
        result=RuleResult(
            stage=_S.CLOSED_LOST,
            disposition=_D.NOT_INTERESTED,
            flags=("disqualified",),
        ),
        priority=95,
    ),
    StageRule(
        name="wrong_number",
        conditions=RuleConditions(any_signals=(_T.WRONG_NUMBER,), min_confidence=0.8),
        result=RuleResult(
            stage=_S.CLOSED_LOST,
            disposition=_D.WRONG_NUMBER,
            flags=("data_quality_issue",),
            suggested_tasks=("Verify contact information",),
        ),
        priority=94,
    ),
    StageRule(
        name="pricing_with_interest",
        conditions=RuleConditions(
            required_signals=(_T.PRICING_DISCUSSED,),
            any_signals=(_T.INTEREST_EXPRESSED, _T.BUDGET_DISCUSSED),
            min_confidence=0.6,
        ),
        result=RuleResult(
            stage=_S.PROPOSAL,
            disposition=_D.CONNECTED,
            suggested_tasks=("Prepare proposal", "Send pricing document"),
        ),
        priority=85,
    ),
    StageRule(
        name="send_pricing_request",
        conditions=RuleConditions(
            any_signals=(_T.SEND_PRICING_REQUEST,),
            exclude_signals=(_T.DEMO_SCHEDULED, _T.NOT_INTERESTED),
            min_confidence=0.5,
        ),
        result=RuleResult(
            stage=_S.NEGOTIATION,
            disposition=_D.SENT_INFO,
            flags=("stall_flag", "needs_follow_up"),
            suggested_tasks=("Send pricing information", "Schedule follow-up call in 3 days"),
        ),
        priority=80,
    ),
    StageRule(
        name="qualified_conversation",
        conditions=RuleConditions(
            required_signals=(_T.LIVE_CONVERSATION,),
            any_signals=(_T.INTEREST_EXPRESSED, _T.DECISION_MAKER_IDENTIFIED),
            exclude_signals=(_T.NOT_INTERESTED,),
            min_confidence=0.6,
        ),
        result=RuleResult(
            stage=_S.QUALIFIED,
            disposition=_D.CONNECTED,
            suggested_tasks=("Schedule follow-up",),
        ),
        priority=75,
    ),
    StageRule(
        name="objection_handled",
        conditions=RuleConditions(
            required_signals=(_T.OBJECTION_HANDLED,),
            any_signals=(_T.LIVE_CONVERSATION,),
            min_confidence=0.5,
        ),
        result=RuleResult(
            stage=_S.WORKING,
            disposition=_D.CONNECTED,
            suggested_tasks=("Continue nurturing relationship",),
        ),
        priority=70,
    ),
    StageRule(
        name="objection_unresolved",
        conditions=RuleConditions(
            required_signals=(_T.OBJECTION_RAISED,),
            exclude_signals=(_T.OBJECTION_HANDLED, _T.DEMO_SCHEDULED),
            min_confidence=0.5,
        ),
        result=RuleResult(
            stage=_S.WORKING,
            disposition=_D.FOLLOW_UP,
            flags=("objection_unresolved", "needs_coaching_review"),
            suggested_tasks=("Address objection in follow-up", "Review call with manager"),
        ),
        priority=65,
    ),
    StageRule(
        name="neutral_conversation",
        conditions=RuleConditions(
            required_signals=(_T.LIVE_CONVERSATION,),
            exclude_signals=(_T.NOT_INTERESTED, _T.WRONG_NUMBER),
            min_confidence=0.5,
        ),
        result=RuleResult(stage=_S.WORKING, disposition=_D.CONNECTED),
        priority=60,
    ),
    StageRule(
        name="follow_up",
        conditions=RuleConditions(
            any_signals=(_T.FOLLOW_UP_REQUESTED, _T.NEXT_STEPS_DEFINED),
            exclude_signals=(_T.NOT_INTERESTED,),
            min_confidence=0.5,
        ),
        result=RuleResult(
            stage=_S.WORKING,
            disposition=_D.CALLBACK_SCHEDULED,
            suggested_tasks=("Schedule follow-up call",),
        ),
        priority=55,
    ),
    StageRule(
        name="voicemail",
        conditions=RuleConditions(any_signals=(_T.VOICEMAIL_LEFT,), min_confidence=0.7),
        result=RuleResult(
            stage=_S.ATTEMPTED,
            disposition=_D.LEFT_VOICEMAIL,
            suggested_tasks=("Schedule next call attempt",),
        ),
        priority=50,
    ),
    StageRule(
        name="no_answer",
        conditions=RuleConditions(any_signals=(_T.NO_ANSWER,), min_confidence=0.7),
        result=RuleResult(
            stage=_S.ATTEMPTED,
            disposition=_D.NO_ANSWER,
            suggested_tasks=("Schedule next call attempt",),
        ),
        priority=45,
    ),
    StageRule(
        name="gatekeeper",
        conditions=RuleConditions(
            any_signals=(_T.GATEKEEPER,),
            exclude_signals=(_T.LIVE_CONVERSATION,),
            min_confidence=0.6,
        ),
        result=RuleResult(
            stage=_S.ATTEMPTED,
            disposition=_D.GATEKEEPER_BLOCK,
            flags=("gatekeeper_encountered",),
            suggested_tasks=("Try different approach", "Research direct contact info"),
        ),
        priority=40,
    ),
]


# Result returned when no rule matches
DEFAULT_STAGE = _S.WORKING
DEFAULT_CONFIDENCE = 0.3
DEFAULT_REASONING = "No specific stage rule matched. Defaulting to Working stage."
DEFAULT_FLAGS = ("needs_manual_review",)
DEFAULT_TASKS = ("Review call recording and update stage manually",)


# Legal stage -> stage moves; staying in the same stage is always legal
VALID_TRANSITIONS: Dict[PipelineStage, Tuple[PipelineStage, ...]] = {
    _S.NEW: (_S.ATTEMPTED, _S.WORKING, _S.QUALIFIED, _S.DEMO_SCHEDULED, _S.CLOSED_LOST, _S.NURTURE),
    _S.ATTEMPTED: (_S.WORKING, _S.QUALIFIED, _S.DEMO_SCHEDULED, _S.CLOSED_LOST, _S.NURTURE),
    _S.WORKING: (_S.QUALIFIED, _S.DEMO_SCHEDULED, _S.PROPOSAL, _S.CLOSED_LOST, _S.NURTURE),
    _S.QUALIFIED: (_S.DEMO_SCHEDULED, _S.PROPOSAL, _S.NEGOTIATION, _S.CLOSED_LOST, _S.NURTURE),
    _S.DEMO_SCHEDULED: (_S.PROPOSAL, _S.NEGOTIATION, _S.CLOSED_WON, _S.CLOSED_LOST, _S.NURTURE),
    _S.PROPOSAL: (_S.NEGOTIATION, _S.CLOSED_WON, _S.CLOSED_LOST, _S.NURTURE),
    _S.NEGOTIATION: (_S.CLOSED_WON, _S.CLOSED_LOST, _S.NURTURE),
    _S.CLOSED_WON: (),
    _S.CLOSED_LOST: (_S.WORKING, _S.NURTURE),
    _S.NURTURE: (_S.WORKING, _S.QUALIFIED, _S.DEMO_SCHEDULED),
}


def sorted_rules(rules: List[StageRule]) -> List[StageRule]:
    """Rules by descending priority; equal priorities keep table order"""
    return sorted(rules, key=lambda r: -r.priority)
