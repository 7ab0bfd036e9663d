"""
DealPulse Schemas

Pydantic models for stall detection, call analysis, stage mapping and audit.
"""

from .stall import (
    StallPhraseCategory,
    SignalSource,
    StallSeverity,
    SEVERITY_ORDER,
    DealStage,
    AlertPriority,
    PRIORITY_ORDER,
    AlertChannel,
    RecipientType,
    EmailDirection,
    PhraseMatch,
    StallSignal,
    DealContext,
    PositiveEngagement,
    StallStatus,
    AlertRecipient,
    StallAlert,
    CallTranscript,
    StallAnalysisResult,
    EmailContent,
    StalledDealFilters,
    DashboardSummary,
    RepBreakdown,
    StageBreakdown,
    ManagerDashboard,
    utcnow,
)
from .crm import (
    Participant,
    TranscriptSegment,
    StructuredTranscript,
    CallWebhookPayload,
    CallSignalType,
    CallSignal,
    CallOutcome,
    TalkRatio,
    ExtractedCallData,
    PipelineStage,
    Disposition,
    StageMappingResult,
    ConfidenceLevel,
    RoutingAction,
    ActionDecision,
    CrmRecord,
    RecordUpdate,
    RecordUpdateResult,
    CallLog,
    AuditAction,
    ROLLBACK_ELIGIBLE_ACTIONS,
    AuditEntry,
    AuditStats,
    WebhookResponse,
    RollbackResult,
    ConfirmationResult,
)
from .templates import (
    ALERT_TEMPLATES,
    format_signal_type,
    render_alert_title,
    render_alert_summary,
    render_alert_action,
    render_alert_text,
    render_call_note,
)

__all__ = [
    "StallPhraseCategory",
    "SignalSource",
    "StallSeverity",
    "SEVERITY_ORDER",
    "DealStage",
    "AlertPriority",
    "PRIORITY_ORDER",
    "AlertChannel",
    "RecipientType",
    "EmailDirection",
    "PhraseMatch",
    "StallSignal",
    "DealContext",
    "PositiveEngagement",
    "StallStatus",
    "AlertRecipient",
    "StallAlert",
    "CallTranscript",
    "StallAnalysisResult",
    "EmailContent",
    "StalledDealFilters",
    "DashboardSummary",
    "RepBreakdown",
    "StageBreakdown",
    "ManagerDashboard",
    "utcnow",
    "Participant",
    "TranscriptSegment",
    "StructuredTranscript",
    "CallWebhookPayload",
    "CallSignalType",
    "CallSignal",
    "CallOutcome",
    "TalkRatio",
    "ExtractedCallData",
    "PipelineStage",
    "Disposition",
    "StageMappingResult",
    "ConfidenceLevel",
    "RoutingAction",
    "ActionDecision",
    "CrmRecord",
    "RecordUpdate",
    "RecordUpdateResult",
    "CallLog",
    "AuditAction",
    "ROLLBACK_ELIGIBLE_ACTIONS",
    "AuditEntry",
    "AuditStats",
    "WebhookResponse",
    "RollbackResult",
    "ConfirmationResult",
    "ALERT_TEMPLATES",
    "format_signal_type",
    "render_alert_title",
    "render_alert_summary",
    "render_alert_action",
    "render_alert_text",
    "render_call_note",
]
