"""
DealPulse Engine

Confidence scoring with time decay, deal stall aggregation, the
priority-ordered stage rule engine and the three-way action router.
"""

from .scoring import ConfidenceScorer, RECOMMENDED_ACTIONS
from .rules import (
    RuleConditions,
    RuleResult,
    StageRule,
    STAGE_RULES,
    DEFAULT_SIGNAL_WEIGHTS,
    VALID_TRANSITIONS,
)
from .router import ActionRouter
from .stage_engine import StageEngine
from .stall_tracker import StallTracker

__all__ = [
    "ConfidenceScorer",
    "RECOMMENDED_ACTIONS",
    "RuleConditions",
    "RuleResult",
    "StageRule",
    "STAGE_RULES",
    "DEFAULT_SIGNAL_WEIGHTS",
    "VALID_TRANSITIONS",
    "ActionRouter",
    "StageEngine",
    "StallTracker",
]
