"""
Stall Detection Schemas

Phrase matches, persisted stall signals, aggregated deal status and
the alerts generated from it.

Core principle: a StallSignal is created once per (source document, category)
and never mutated afterwards except for ``processed_at``.
"""

from datetime import datetime, timezone
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================================================
# Enums
# ============================================================================

class StallPhraseCategory(str, Enum):
    """Semantic categories of stall phrases"""
    PRICING_REQUEST = "PRICING_REQUEST"          # "send pricing"
    APPROVAL_NEEDED = "APPROVAL_NEEDED"          # "need to get approval"
    THINKING = "THINKING"                        # "let me think about it"
    TEAM_CHECK = "TEAM_CHECK"                    # "check with my team"
    DECISION_MAKER = "DECISION_MAKER"            # "talk to my boss"
    CALLBACK_REQUEST = "CALLBACK_REQUEST"        # "call back next month"
    FOLLOWUP_PROMISE = "FOLLOWUP_PROMISE"        # "we'll get back to you"
    INTERNAL_DISCUSSION = "INTERNAL_DISCUSSION"  # "need to discuss internally"


class SignalSource(str, Enum):
    """Where a stall signal was observed"""
    CALL_TRANSCRIPT = "CALL_TRANSCRIPT"
    EMAIL = "EMAIL"
    MEETING_NOTES = "MEETING_NOTES"
    CRM_NOTES = "CRM_NOTES"


class StallSeverity(str, Enum):
    """Deal stall severity bands"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


SEVERITY_ORDER = [
    StallSeverity.LOW,
    StallSeverity.MEDIUM,
    StallSeverity.HIGH,
    StallSeverity.CRITICAL,
]


class DealStage(str, Enum):
    """Opportunity stage used for stall tracking"""
    QUALIFICATION = "QUALIFICATION"
    DISCOVERY = "DISCOVERY"
    DEMO = "DEMO"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"


class AlertPriority(str, Enum):
    """Alert priority, derived from stall severity"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    URGENT = "URGENT"


PRIORITY_ORDER = [
    AlertPriority.URGENT,
    AlertPriority.HIGH,
    AlertPriority.MEDIUM,
    AlertPriority.LOW,
]


class AlertChannel(str, Enum):
    """Alert delivery channels"""
    EMAIL = "EMAIL"
    SLACK = "SLACK"
    CRM_TASK = "CRM_TASK"
    WEBHOOK = "WEBHOOK"


class RecipientType(str, Enum):
    """Who receives an alert"""
    REP = "REP"
    MANAGER = "MANAGER"
    BOTH = "BOTH"


class EmailDirection(str, Enum):
    INBOUND = "INBOUND"
    OUTBOUND = "OUTBOUND"


# ============================================================================
# Detection models
# ============================================================================

class PhraseMatch(BaseModel):
    """A single pattern occurrence in source text. Immutable once produced."""
    model_config = ConfigDict(frozen=True)

    phrase: str = Field(..., description="Human-readable pattern label")
    category: StallPhraseCategory
    matched_text: str
    confidence: float = Field(ge=0.0, le=1.0)
    position: int = Field(ge=0, description="Offset into the source text")
    context: str = Field(default="", description="Surrounding text window")


class StallSignal(BaseModel):
    """
    A persisted detection event.

    ``phrase_matches`` holds the single best match of its category;
    ``match_count`` records how many matches of that category the document had.
    """
    id: str
    deal_id: str = ""
    account_id: str
    account_name: str = ""

    source: SignalSource
    source_id: str
    source_timestamp: datetime

    phrase_matches: List[PhraseMatch] = Field(default_factory=list)
    match_count: int = Field(default=1, ge=0)
    raw_content: str = ""

    base_confidence: float = Field(ge=0.0, le=1.0)
    time_decayed_confidence: float = Field(ge=0.0, le=1.0)
    aggregate_strength: float = Field(ge=0.0, le=10.0)

    detected_at: datetime = Field(default_factory=utcnow)
    processed_at: Optional[datetime] = None

    @property
    def category(self) -> Optional[StallPhraseCategory]:
        return self.phrase_matches[0].category if self.phrase_matches else None


class DealContext(BaseModel):
    """CRM context a deal status is computed for"""
    deal_id: str
    account_id: str = ""
    account_name: str = ""
    deal_stage: DealStage = DealStage.DISCOVERY
    deal_value: Optional[float] = None
    owner_rep_id: str = ""
    owner_rep_name: str = ""
    owner_rep_email: Optional[str] = None
    manager_id: Optional[str] = None
    manager_name: Optional[str] = None
    manager_email: Optional[str] = None


class PositiveEngagement(BaseModel):
    """Most recent positive engagement on a deal"""
    date: datetime
    type: str = ""


class StallStatus(BaseModel):
    """
    Aggregated, recomputed stall status of one deal.

    Supersedes any prior status for the same deal (last write wins).
    """
    deal_id: str
    account_id: str = ""
    account_name: str = ""

    deal_stage: DealStage = DealStage.DISCOVERY
    deal_value: Optional[float] = None
    owner_rep_id: str = ""
    owner_rep_name: str = ""
    owner_rep_email: Optional[str] = None
    manager_id: Optional[str] = None
    manager_name: Optional[str] = None
    manager_email: Optional[str] = None

    is_stalled: bool = False
    severity: StallSeverity = StallSeverity.LOW
    stall_score: float = Field(default=0.0, ge=0.0, le=100.0)
    primary_category: Optional[StallPhraseCategory] = None

    signal_count: int = 0
    latest_signal_at: Optional[datetime] = None
    signals: List[StallSignal] = Field(default_factory=list)

    days_since_last_positive_engagement: Optional[int] = None
    last_positive_engagement_date: Optional[datetime] = None
    last_positive_engagement_type: Optional[str] = None

    recommended_actions: List[str] = Field(default_factory=list)

    calculated_at: datetime = Field(default_factory=utcnow)
    alert_sent_at: Optional[datetime] = None


# ============================================================================
# Alerts
# ============================================================================

class AlertRecipient(BaseModel):
    id: str
    name: str
    email: str
    type: RecipientType


class StallAlert(BaseModel):
    """
    A deduplicated, expiring alert for a stalled deal.

    Terminal states: acknowledged, or expired.
    """
    id: str
    deal_id: str
    account_id: str = ""
    account_name: str = ""

    title: str
    summary: str
    detected_phrase: str
    confidence_score: float = Field(ge=0.0, le=1.0, default=0.0)

    hours_since_stall_signal: float = 0.0
    days_since_positive_engagement: Optional[int] = None

    priority: AlertPriority
    recipient_type: RecipientType
    recipients: List[AlertRecipient] = Field(default_factory=list)

    channels: List[AlertChannel] = Field(default_factory=list)
    delivered_via: List[AlertChannel] = Field(default_factory=list)
    delivered_at: Optional[datetime] = None

    recommended_action: str = ""
    action_url: Optional[str] = None

    acknowledged: bool = False
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    acknowledgment_notes: Optional[str] = None

    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime

    stall_status: StallStatus

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at


# ============================================================================
# Input documents
# ============================================================================

class CallTranscript(BaseModel):
    """Plain-text call transcript submitted for stall analysis"""
    id: str = Field(..., min_length=1)
    deal_id: Optional[str] = None
    account_id: str
    account_name: str = ""
    call_date: datetime
    duration: float = Field(default=0, ge=0, description="Seconds")
    rep_id: str = ""
    rep_name: str = ""
    transcript: str
    summary: Optional[str] = None
    sentiment: Optional[float] = Field(default=None, ge=-1.0, le=1.0)


class EmailContent(BaseModel):
    """Email submitted for stall analysis; only inbound mail is analysed"""
    id: str = Field(..., min_length=1)
    deal_id: Optional[str] = None
    account_id: str
    account_name: str = ""
    sent_date: datetime
    sender: str = ""
    to: List[str] = Field(default_factory=list)
    subject: str = ""
    body: str = ""
    direction: EmailDirection
    rep_id: Optional[str] = None
    rep_name: Optional[str] = None


class StallAnalysisResult(BaseModel):
    """Tagged result of a stall pipeline run"""
    success: bool
    signals: List[StallSignal] = Field(default_factory=list)
    status: Optional[StallStatus] = None
    alert: Optional[StallAlert] = None
    alert_delivered: bool = False
    error: Optional[str] = None
    error_code: Optional[str] = None  # validation, not_found


class StalledDealFilters(BaseModel):
    rep_id: Optional[str] = None
    manager_id: Optional[str] = None
    stage: Optional[DealStage] = None
    min_severity: Optional[StallSeverity] = None


class DashboardSummary(BaseModel):
    total_deals: int = 0
    stalled_deals: int = 0
    critical_stalls: int = 0
    high_stalls: int = 0
    medium_stalls: int = 0
    low_stalls: int = 0
    avg_days_since_engagement: int = 0
    total_at_risk_value: float = 0.0


class RepBreakdown(BaseModel):
    rep_id: str
    rep_name: str
    total_deals: int = 0
    stalled_deals: int = 0
    stalled_value: float = 0.0
    top_stall_category: Optional[StallPhraseCategory] = None
    deals: List[StallStatus] = Field(default_factory=list)


class StageBreakdown(BaseModel):
    stage: DealStage
    stalled_count: int = 0
    total_value: float = 0.0


class ManagerDashboard(BaseModel):
    manager_id: str
    manager_name: str = ""
    summary: DashboardSummary = Field(default_factory=DashboardSummary)
    by_rep: List[RepBreakdown] = Field(default_factory=list)
    by_stage: List[StageBreakdown] = Field(default_factory=list)
