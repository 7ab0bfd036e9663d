"""
CRM Automation Schemas

Structured call transcripts, extracted call signals, stage mapping results,
routing decisions and the audit trail of every state-changing action.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional, Literal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .stall import utcnow


# ============================================================================
# Call transcript input
# ============================================================================

class Participant(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    role: Literal["rep", "prospect", "other"] = "other"


class TranscriptSegment(BaseModel):
    speaker_id: str
    speaker_name: str = ""
    text: str
    start_time: float = Field(ge=0, description="Seconds into the call")
    end_time: float = Field(ge=0)

    @model_validator(mode="after")
    def _check_times(self) -> "TranscriptSegment":
        if self.end_time < self.start_time:
            raise ValueError("segment end_time precedes start_time")
        return self


class StructuredTranscript(BaseModel):
    """Speaker-segmented call transcript from the call recording provider"""
    call_id: str = Field(..., min_length=1)
    external_call_id: Optional[str] = None
    title: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration: float = Field(ge=0, description="Seconds")
    participants: List[Participant] = Field(default_factory=list)
    transcript: List[TranscriptSegment] = Field(default_factory=list)
    call_type: Literal["inbound", "outbound", "scheduled"] = "outbound"
    recording_url: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    def participant_with_role(self, role: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.role == role:
                return participant
        return None


class CallWebhookPayload(BaseModel):
    event: Literal["call.completed", "call.analyzed", "call.transcribed"]
    timestamp: datetime
    data: StructuredTranscript
    webhook_id: Optional[str] = None


# ============================================================================
# Call signals and outcomes
# ============================================================================

class CallSignalType(str, Enum):
    LIVE_CONVERSATION = "LIVE_CONVERSATION"
    INTEREST_EXPRESSED = "INTEREST_EXPRESSED"
    DEMO_SCHEDULED = "DEMO_SCHEDULED"
    PRICING_DISCUSSED = "PRICING_DISCUSSED"
    SEND_PRICING_REQUEST = "SEND_PRICING_REQUEST"
    OBJECTION_RAISED = "OBJECTION_RAISED"
    OBJECTION_HANDLED = "OBJECTION_HANDLED"
    DECISION_MAKER_IDENTIFIED = "DECISION_MAKER_IDENTIFIED"
    NEXT_STEPS_DEFINED = "NEXT_STEPS_DEFINED"
    NO_ANSWER = "NO_ANSWER"
    VOICEMAIL_LEFT = "VOICEMAIL_LEFT"
    WRONG_NUMBER = "WRONG_NUMBER"
    GATEKEEPER = "GATEKEEPER"
    NOT_INTERESTED = "NOT_INTERESTED"
    COMPETITOR_MENTIONED = "COMPETITOR_MENTIONED"
    BUDGET_DISCUSSED = "BUDGET_DISCUSSED"
    TIMELINE_DISCUSSED = "TIMELINE_DISCUSSED"
    FOLLOW_UP_REQUESTED = "FOLLOW_UP_REQUESTED"


class CallSignal(BaseModel):
    """A typed, confidence-scored observation extracted from a call"""
    model_config = ConfigDict(frozen=True)

    type: CallSignalType
    confidence: float = Field(ge=0.0, le=1.0)
    evidence: str = ""
    timestamp: Optional[float] = None  # seconds into the call
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CallOutcome(str, Enum):
    CONNECTED_POSITIVE = "CONNECTED_POSITIVE"
    CONNECTED_NEUTRAL = "CONNECTED_NEUTRAL"
    CONNECTED_NEGATIVE = "CONNECTED_NEGATIVE"
    NO_CONNECT = "NO_CONNECT"
    VOICEMAIL = "VOICEMAIL"
    CALLBACK_SCHEDULED = "CALLBACK_SCHEDULED"
    DEMO_BOOKED = "DEMO_BOOKED"
    MEETING_BOOKED = "MEETING_BOOKED"
    SENT_TO_NURTURE = "SENT_TO_NURTURE"
    DISQUALIFIED = "DISQUALIFIED"


class TalkRatio(BaseModel):
    rep: int
    prospect: int


class ExtractedCallData(BaseModel):
    call_id: str
    signals: List[CallSignal] = Field(default_factory=list)
    primary_outcome: CallOutcome = CallOutcome.NO_CONNECT
    overall_confidence: float = Field(ge=0.0, le=1.0, default=0.5)
    duration: float = 0
    talk_ratio: Optional[TalkRatio] = None
    extracted_at: datetime = Field(default_factory=utcnow)


# ============================================================================
# Stage mapping
# ============================================================================

class PipelineStage(str, Enum):
    """Prospect stage in the sales engagement pipeline"""
    NEW = "NEW"
    ATTEMPTED = "ATTEMPTED"
    WORKING = "WORKING"
    QUALIFIED = "QUALIFIED"
    DEMO_SCHEDULED = "DEMO_SCHEDULED"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"
    NURTURE = "NURTURE"


class Disposition(str, Enum):
    """Outcome label attached to a single call"""
    NO_ANSWER = "NO_ANSWER"
    LEFT_VOICEMAIL = "LEFT_VOICEMAIL"
    WRONG_NUMBER = "WRONG_NUMBER"
    GATEKEEPER_BLOCK = "GATEKEEPER_BLOCK"
    NOT_INTERESTED = "NOT_INTERESTED"
    CONNECTED = "CONNECTED"
    DEMO_SCHEDULED = "DEMO_SCHEDULED"
    MEETING_SCHEDULED = "MEETING_SCHEDULED"
    SENT_INFO = "SENT_INFO"
    CALLBACK_SCHEDULED = "CALLBACK_SCHEDULED"
    FOLLOW_UP = "FOLLOW_UP"


class StageMappingResult(BaseModel):
    """Pure output of the rule engine; input to audit logging"""
    new_stage: PipelineStage
    disposition: Optional[Disposition] = None
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: str
    flags: List[str] = Field(default_factory=list)
    requires_confirmation: bool = False
    suggested_tasks: List[str] = Field(default_factory=list)
    matched_rule: Optional[str] = None


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class RoutingAction(str, Enum):
    AUTO_UPDATE = "AUTO_UPDATE"
    FLAG_FOR_CONFIRMATION = "FLAG_FOR_CONFIRMATION"
    NO_ACTION = "NO_ACTION"


class ActionDecision(BaseModel):
    action: RoutingAction
    confidence_level: ConfidenceLevel
    confidence: float
    reason: str


# ============================================================================
# CRM record contract
# ============================================================================

class CrmRecord(BaseModel):
    id: str
    email: Optional[str] = None
    name: Optional[str] = None
    stage: Optional[PipelineStage] = None
    owner_id: Optional[str] = None


class RecordUpdate(BaseModel):
    stage: Optional[PipelineStage] = None
    disposition: Optional[Disposition] = None
    note: Optional[str] = None
    task: Optional[str] = None


class RecordUpdateResult(BaseModel):
    success: bool
    previous_stage: Optional[PipelineStage] = None
    error: Optional[str] = None


class CallLog(BaseModel):
    direction: Literal["inbound", "outbound"] = "outbound"
    outcome: str
    duration: float = 0
    notes: Optional[str] = None
    external_call_id: Optional[str] = None


# ============================================================================
# Audit trail
# ============================================================================

class AuditAction(str, Enum):
    STAGE_CHANGE = "STAGE_CHANGE"
    DISPOSITION_SET = "DISPOSITION_SET"
    NOTE_ADDED = "NOTE_ADDED"
    TASK_CREATED = "TASK_CREATED"
    FLAG_SET = "FLAG_SET"
    CONFIRMATION_REQUIRED = "CONFIRMATION_REQUIRED"
    ROLLBACK = "ROLLBACK"
    ERROR = "ERROR"


ROLLBACK_ELIGIBLE_ACTIONS = frozenset({AuditAction.STAGE_CHANGE, AuditAction.DISPOSITION_SET})


class AuditEntry(BaseModel):
    """
    Append-only audit record.

    A rollback is a new entry referencing the original via ``rollback_of``;
    entries are never edited in place.
    """
    id: str
    timestamp: datetime = Field(default_factory=utcnow)
    call_id: str
    record_id: Optional[str] = None
    action: AuditAction
    previous_value: Optional[Any] = None
    new_value: Optional[Any] = None
    confidence: Optional[float] = None
    automated: bool
    confirmed_by: Optional[str] = None
    rollback_of: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class AuditStats(BaseModel):
    total_entries: int = 0
    entries_by_action: Dict[str, int] = Field(default_factory=dict)
    automated: int = 0
    manual: int = 0
    rollback_count: int = 0
    error_count: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None


# ============================================================================
# Tagged results crossing the public boundary
# ============================================================================

class WebhookResponse(BaseModel):
    success: bool
    call_id: str
    processed: bool
    action: Optional[RoutingAction] = None
    stage_update: Optional[StageMappingResult] = None
    audit_id: Optional[str] = None
    confirmation_id: Optional[str] = None
    error: Optional[str] = None


class RollbackResult(BaseModel):
    success: bool
    original_audit_id: str
    audit_id: Optional[str] = None
    previous_value: Optional[Any] = None
    restored_value: Optional[Any] = None
    applied: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None  # not_found, not_rollbackable, downstream


class ConfirmationResult(BaseModel):
    success: bool
    confirmation_id: str
    record_id: Optional[str] = None
    new_stage: Optional[PipelineStage] = None
    audit_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None  # not_found, validation, downstream
