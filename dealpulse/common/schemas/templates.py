"""
Text Templates

Renders alerts, call notes and review text. Alert wording is keyed by
priority; the engagement-gap sentence is only included when known.
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .stall import StallAlert, StallStatus
    from .crm import ExtractedCallData, StageMappingResult, StructuredTranscript


ALERT_TEMPLATES = {
    "URGENT": {
        "title": "URGENT: {account_name} - Deal Stall Detected",
        "summary": (
            "Critical stall signal detected on {account_name}. "
            "Prospect said \"{top_phrase}\" during {signal_source}. "
            "{engagement}"
            "Immediate action required - deal value: ${deal_value}."
        ),
        "engagement": "No positive engagement in {days} days. ",
        "action": "Review deal immediately and take action within 24 hours",
    },
    "HIGH": {
        "title": "HIGH PRIORITY: {account_name} - Stall Warning",
        "summary": (
            "High-priority stall warning on {account_name}. "
            "Detected phrase: \"{top_phrase}\". "
            "{engagement}"
            "Deal value at risk: ${deal_value}."
        ),
        "engagement": "Last positive engagement: {days} days ago. ",
        "action": "Schedule follow-up within 48 hours",
    },
    "MEDIUM": {
        "title": "{account_name} - Deal Momentum Alert",
        "summary": (
            "Potential stall detected on {account_name}. "
            "Prospect indicated: \"{top_phrase}\". "
            "Review engagement strategy to maintain momentum."
        ),
        "engagement": "",
        "action": "Review and adjust engagement approach",
    },
    "LOW": {
        "title": "{account_name} - Minor Stall Indicator",
        "summary": (
            "Minor stall signal on {account_name}: \"{top_phrase}\". "
            "Monitor for additional signals."
        ),
        "engagement": "",
        "action": "Monitor deal and prepare contingency approach",
    },
}

# LOW alerts always use the generic monitoring advice
_PRIORITIES_USING_STATUS_ACTION = {"URGENT", "HIGH", "MEDIUM"}


def _format_money(value: Optional[float]) -> str:
    return f"{(value or 0):,.0f}"


def format_signal_type(value: str) -> str:
    """PRICING_DISCUSSED -> Pricing Discussed"""
    return value.replace("_", " ").lower().title()


def render_alert_title(priority: str, status: "StallStatus") -> str:
    return ALERT_TEMPLATES[priority]["title"].format(account_name=status.account_name)


def render_alert_summary(
    priority: str,
    status: "StallStatus",
    top_phrase: str,
    signal_source: str,
    days_since_engagement: Optional[int],
) -> str:
    """Fill the priority-specific summary with phrase and engagement-gap context"""
    template = ALERT_TEMPLATES[priority]
    engagement = ""
    if days_since_engagement and template["engagement"]:
        engagement = template["engagement"].format(days=days_since_engagement)

    return template["summary"].format(
        account_name=status.account_name,
        top_phrase=top_phrase,
        signal_source=signal_source,
        engagement=engagement,
        deal_value=_format_money(status.deal_value),
    )


def render_alert_action(priority: str, status: "StallStatus") -> str:
    if priority in _PRIORITIES_USING_STATUS_ACTION and status.recommended_actions:
        return status.recommended_actions[0]
    return ALERT_TEMPLATES[priority]["action"]


def render_alert_text(alert: "StallAlert") -> str:
    """Plain-text alert body used by chat and email channels"""
    lines = [
        alert.title,
        "",
        alert.summary,
        "",
        f"Recommended action: {alert.recommended_action}",
        f"Confidence: {alert.confidence_score * 100:.0f}%",
    ]
    if alert.action_url:
        lines.append(f"Open deal: {alert.action_url}")
    return "\n".join(lines)


def render_call_note(
    transcript: "StructuredTranscript",
    call_data: "ExtractedCallData",
    mapping: "StageMappingResult",
) -> str:
    """Render the CRM note written alongside an automatic stage update"""
    parts = [
        f"Call: {transcript.title or transcript.call_id}",
        f"Duration: {round(transcript.duration / 60)} minutes",
        f"Outcome: {call_data.primary_outcome.value.replace('_', ' ')}",
    ]

    if call_data.talk_ratio:
        parts.append(
            f"Talk Ratio - Rep: {call_data.talk_ratio.rep}%, "
            f"Prospect: {call_data.talk_ratio.prospect}%"
        )

    key_signals = [
        s.type.value.replace("_", " ").lower()
        for s in call_data.signals
        if s.confidence > 0.6
    ][:5]
    if key_signals:
        parts.append(f"Key Signals: {', '.join(key_signals)}")

    if mapping.flags:
        parts.append(f"Flags: {', '.join(mapping.flags)}")

    if mapping.suggested_tasks:
        parts.append(f"Suggested Tasks: {'; '.join(mapping.suggested_tasks)}")

    parts.append(f"[Auto-logged by DealPulse - Confidence: {mapping.confidence * 100:.0f}%]")

    return "\n".join(parts)
