"""
DealPulse

Confidence-routed classification and decision engine for sales conversations.

Philosophy:
- Detection is deterministic pattern matching, never a learned model
- Every automated change is audited and can be rolled back
- Confidence decides governance: auto-apply, ask a human, or do nothing
- A deal never has more than one active stall alert

Usage:
    from dealpulse.common import load_config
    from dealpulse.detector import StallDetector, CallSignalExtractor
    from dealpulse.engine import ConfidenceScorer, StageEngine, ActionRouter
    from dealpulse.audit import AuditLog
    from dealpulse.alerts import AlertGenerator
"""

__version__ = "0.1.0"
