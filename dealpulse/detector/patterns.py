"""
Pattern Tables

Ordered, weighted regular-expression tables for stall phrases and call
signals, plus a parser for operator-supplied stall pattern files.

Pattern file format (Markdown):

    ## THINKING
    - `\\blet\\s+me\\s+think\\s+about\\s+it\\b` | 0.7 | let me think about it

Each ``##`` header names a stall category; each list line holds a
backticked regex, a base confidence and an optional label.
"""

import re
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Pattern

from ..common.errors import ValidationError
from ..common.schemas import CallSignalType, StallPhraseCategory

logger = logging.getLogger("dealpulse.detector.patterns")


@dataclass(frozen=True)
class PhrasePattern:
    """One weighted stall phrase pattern"""
    regex: Pattern
    category: StallPhraseCategory
    base_confidence: float
    label: str


@dataclass(frozen=True)
class SignalPattern:
    """All regexes for one call signal type; the first one that hits wins"""
    type: CallSignalType
    regexes: tuple
    base_confidence: float


def _p(pattern: str, category: StallPhraseCategory, confidence: float, label: str) -> PhrasePattern:
    return PhrasePattern(re.compile(pattern, re.IGNORECASE), category, confidence, label)


_C = StallPhraseCategory

STALL_PATTERNS: List[PhrasePattern] = [
    # PRICING_REQUEST - buyer is shopping or delaying
    _p(r"\b(send|email|get)\s+(me\s+|you\s+|us\s+)?(the\s+|over\s+)?(pricing|price\s*list|quote|proposal)\b",
       _C.PRICING_REQUEST, 0.6, "send pricing"),
    _p(r"\bwhat('s|\s+is)\s+(the\s+)?(price|cost|pricing)\b", _C.PRICING_REQUEST, 0.4, "price inquiry"),
    _p(r"\bjust\s+send\s+(me\s+)?(the\s+)?pricing\b", _C.PRICING_REQUEST, 0.8, "just send pricing"),

    # APPROVAL_NEEDED - budget or authority constraints
    _p(r"\b(need|have)\s+to\s+(get\s+)?approval\b", _C.APPROVAL_NEEDED, 0.75, "need to get approval"),
    _p(r"\bneed\s+(my\s+)?(boss|manager|director|vp|cfo|ceo)('s)?\s+approval\b",
       _C.APPROVAL_NEEDED, 0.8, "need executive approval"),
    _p(r"\bwait(ing)?\s+for\s+approval\b", _C.APPROVAL_NEEDED, 0.7, "waiting for approval"),
    _p(r"\bnot\s+in\s+(the\s+)?budget\b", _C.APPROVAL_NEEDED, 0.85, "not in budget"),

    # THINKING - classic delay
    _p(r"\blet\s+me\s+think\s+(about\s+it|on\s+it|it\s+over)\b", _C.THINKING, 0.7, "let me think about it"),
    _p(r"\b(i\s+)?need\s+(some\s+)?time\s+to\s+think\b", _C.THINKING, 0.65, "need time to think"),
    _p(r"\bgive\s+(me|us)\s+(some\s+)?time\s+to\s+(think|consider|evaluate)\b",
       _C.THINKING, 0.7, "give us time to consider"),

    # TEAM_CHECK - consensus building
    _p(r"\b(need\s+to\s+)?check\s+with\s+(my\s+)?team\b", _C.TEAM_CHECK, 0.6, "check with my team"),
    _p(r"\brun\s+(it|this)\s+by\s+(my\s+)?team\b", _C.TEAM_CHECK, 0.6, "run by team"),
    _p(r"\bget\s+(my\s+)?team('s)?\s+(buy-in|input|feedback)\b", _C.TEAM_CHECK, 0.65, "get team buy-in"),
    _p(r"\bdiscuss\s+(it\s+)?with\s+(the\s+)?team\b", _C.TEAM_CHECK, 0.55, "discuss with team"),

    # DECISION_MAKER - not talking to the right person
    _p(r"\b(need\s+to\s+)?talk\s+to\s+(my\s+)?(boss|manager|director|vp|cfo|ceo|owner|partner)\b",
       _C.DECISION_MAKER, 0.8, "talk to decision maker"),
    _p(r"\b(my\s+)?(boss|manager|director|vp|cfo|ceo)\s+(makes|handles|decides)\b",
       _C.DECISION_MAKER, 0.75, "executive decides"),
    _p(r"\bi('m|\s+am)\s+not\s+the\s+(decision\s*maker|one\s+who\s+decides)\b",
       _C.DECISION_MAKER, 0.9, "not the decision maker"),
    _p(r"\bsomeone\s+else\s+(makes|handles)\s+(that\s+)?decision\b", _C.DECISION_MAKER, 0.85, "someone else decides"),

    # CALLBACK_REQUEST - pushing out the timeline
    _p(r"\bcall\s+(me\s+)?back\s+(next\s+)?(week|month|quarter)\b", _C.CALLBACK_REQUEST, 0.75, "call back later"),
    _p(r"\b(reach\s+out|follow\s+up|get\s+back\s+to\s+me)\s+(next\s+)?(week|month|quarter)\b",
       _C.CALLBACK_REQUEST, 0.7, "follow up later"),
    _p(r"\btouch\s+base\s+(in\s+)?a\s+(few\s+)?(weeks?|months?)\b",
       _C.CALLBACK_REQUEST, 0.7, "touch base in weeks/months"),
    _p(r"\bnot\s+(a\s+good|the\s+right)\s+time\b", _C.CALLBACK_REQUEST, 0.8, "not the right time"),
    _p(r"\bmaybe\s+(next\s+)?(quarter|year)\b", _C.CALLBACK_REQUEST, 0.85, "maybe next quarter/year"),

    # FOLLOWUP_PROMISE - vague commitments
    _p(r"\bwe('ll|\s+will)\s+get\s+back\s+to\s+you\b", _C.FOLLOWUP_PROMISE, 0.65, "we'll get back to you"),
    _p(r"\bi('ll|\s+will)\s+(let\s+you\s+know|be\s+in\s+touch)\b", _C.FOLLOWUP_PROMISE, 0.6, "I'll let you know"),
    _p(r"\bwe('ll|\s+will)\s+(reach\s+out|contact\s+you)\s+(when|if)\b",
       _C.FOLLOWUP_PROMISE, 0.7, "we'll contact you when..."),

    # INTERNAL_DISCUSSION - internal process delays
    _p(r"\bneed\s+to\s+discuss\s+(this\s+)?internally\b", _C.INTERNAL_DISCUSSION, 0.7, "need to discuss internally"),
    _p(r"\bhave\s+(some\s+)?internal\s+(discussions?|meetings?|reviews?)\b",
       _C.INTERNAL_DISCUSSION, 0.65, "internal discussions"),
    _p(r"\b(taking|take)\s+(it|this)\s+to\s+(our\s+)?(internal|leadership|board)\b",
       _C.INTERNAL_DISCUSSION, 0.7, "taking to leadership"),
    _p(r"\bgoing\s+through\s+(our\s+)?(internal\s+)?process\b", _C.INTERNAL_DISCUSSION, 0.6, "going through process"),
]


def _s(signal_type: CallSignalType, confidence: float, *patterns: str) -> SignalPattern:
    return SignalPattern(
        type=signal_type,
        regexes=tuple(re.compile(p, re.IGNORECASE) for p in patterns),
        base_confidence=confidence,
    )


_T = CallSignalType

# LIVE_CONVERSATION is synthesized from speaker count and duration, never matched
CALL_SIGNAL_PATTERNS: List[SignalPattern] = [
    _s(_T.INTEREST_EXPRESSED, 0.75,
       r"\b(interested|sounds good|tell me more|curious|like to learn|want to know)\b",
       r"\b(that's interesting|intriguing|appealing)\b",
       r"\b(how does it work|what does it cost|can you explain)\b"),
    _s(_T.DEMO_SCHEDULED, 0.85,
       r"\b(schedule|book|set up).*(demo|demonstration|meeting|call)\b",
       r"\b(let's.*find.*time|calendar|next week|tomorrow)\b",
       r"\b(demo|meeting).*(scheduled|booked|confirmed)\b"),
    _s(_T.PRICING_DISCUSSED, 0.8,
       r"\b(price|pricing|cost|budget|investment|fee|rates)\b",
       r"\b(how much|what.*cost|afford|expensive|cheap)\b",
       r"\$\d+|\d+\s*dollars"),
    _s(_T.SEND_PRICING_REQUEST, 0.7,
       r"\b(send|email|forward).*(pricing|quote|proposal|info)\b",
       r"\b(send me|email me|get me).*(information|details)\b",
       r"\b(need.*think|discuss.*team|run.*by)\b"),
    _s(_T.OBJECTION_RAISED, 0.7,
       r"\b(not sure|don't know|concern|worried|hesitant)\b",
       r"\b(too expensive|no budget|not.*right time|too busy)\b",
       r"\b(already.*using|happy with|have.*solution)\b",
       r"\b(need to think|consult|check with)\b"),
    _s(_T.OBJECTION_HANDLED, 0.65,
       r"\b(makes sense|understand now|good point|that helps)\b",
       r"\b(i see|that clarifies|didn't realize)\b",
       r"\b(okay|alright|fair enough).*(let's|so)\b"),
    _s(_T.DECISION_MAKER_IDENTIFIED, 0.75,
       r"\b(decision maker|final say|sign off|approve|authority)\b",
       r"\b(i'm the|i am the|i make the|my decision)\b",
       r"\b(ceo|cfo|vp|director|head of|owner|president)\b"),
    _s(_T.NEXT_STEPS_DEFINED, 0.7,
       r"\b(next step|follow up|get back|touch base|reconnect)\b",
       r"\b(i'll|we'll|let's).*(call|email|send|schedule)\b",
       r"\b(action item|to do|plan|move forward)\b"),
    _s(_T.NO_ANSWER, 0.95,
       r"\b(no answer|didn't.*pick up|unanswered|ring.*out)\b",
       r"\b(unable to reach|couldn't connect|didn't respond)\b"),
    _s(_T.VOICEMAIL_LEFT, 0.9,
       r"\b(voicemail|leave.*message|message.*left|voice.*mail)\b",
       r"\b(at the tone|after the beep|recording)\b",
       r"\b(left.*message|dropped.*voicemail)\b"),
    _s(_T.WRONG_NUMBER, 0.85,
       r"\b(wrong number|no.*work.*here|never heard|don't know)\b",
       r"\b(who\?|wrong person|not.*right)\b"),
    _s(_T.GATEKEEPER, 0.7,
       r"\b(assistant|receptionist|secretary|front desk)\b",
       r"\b(not available|in.*meeting|out.*office|busy)\b",
       r"\b(take.*message|call back|transfer)\b"),
    _s(_T.NOT_INTERESTED, 0.85,
       r"\b(not interested|no thank|no thanks|don't call|remove|unsubscribe)\b",
       r"\b(don't need|not.*looking|not.*market)\b",
       r"\b(please stop|never call|do not contact)\b"),
    _s(_T.COMPETITOR_MENTIONED, 0.7,
       r"\b(competitor|alternative|other vendor|other solution)\b",
       r"\b(using.*already|have.*in place|current provider)\b",
       r"\b(compared to|versus|vs\.?|better than)\b"),
    _s(_T.BUDGET_DISCUSSED, 0.75,
       r"\b(budget|allocated|spend|funds|fiscal)\b",
       r"\b(quarter|year end|approval|procurement)\b"),
    _s(_T.TIMELINE_DISCUSSED, 0.7,
       r"\b(timeline|timeframe|when.*start|implement.*by)\b",
       r"\b(q1|q2|q3|q4|next month|this year)\b",
       r"\b(urgent|asap|soon|priority)\b"),
    _s(_T.FOLLOW_UP_REQUESTED, 0.75,
       r"\b(follow up|call back|reach out|contact.*later)\b",
       r"\b(get back to|touch base|reconnect|circle back)\b"),
]


# =============================================================================
# Pattern file parsing
# =============================================================================

_LINE_RE = re.compile(r"^[-*]\s*`([^`]+)`\s*(?:\|\s*([0-9.]+)\s*)?(?:\|\s*(.+))?$")


def _normalize_category(raw_category: str) -> str:
    """Normalize header text to an enum-style name"""
    normalized = re.sub(r"[^a-zA-Z0-9\s_]", "", raw_category.upper())
    return re.sub(r"\s+", "_", normalized.strip())


def parse_pattern_file(md_path: str) -> List[PhrasePattern]:
    """
    Parse a Markdown stall pattern file into an ordered pattern table.

    Args:
        md_path: Path to the pattern file

    Returns:
        Patterns in file order

    Raises:
        FileNotFoundError: if the file does not exist
        ValidationError: on an unknown category, bad regex or confidence
    """
    path = Path(md_path)
    if not path.exists():
        raise FileNotFoundError(f"Pattern file not found: {md_path}")

    patterns: List[PhrasePattern] = []
    current_category: Optional[StallPhraseCategory] = None

    for lineno, line in enumerate(path.read_text(encoding="utf-8").split("\n"), 1):
        line_stripped = line.strip()

        if not line_stripped or line_stripped.startswith("<!--"):
            continue

        if line_stripped.startswith("## "):
            name = _normalize_category(line_stripped[3:])
            try:
                current_category = StallPhraseCategory(name)
            except ValueError:
                raise ValidationError(f"{md_path}:{lineno}: unknown stall category '{name}'")
            continue

        match = _LINE_RE.match(line_stripped)
        if not match:
            continue

        if current_category is None:
            raise ValidationError(f"{md_path}:{lineno}: pattern before any category header")

        regex_text, confidence_text, label = match.groups()
        confidence = float(confidence_text) if confidence_text else 0.5
        if not 0.0 <= confidence <= 1.0:
            raise ValidationError(f"{md_path}:{lineno}: confidence {confidence} outside [0, 1]")

        try:
            regex = re.compile(regex_text, re.IGNORECASE)
        except re.error as e:
            raise ValidationError(f"{md_path}:{lineno}: invalid regex: {e}")

        patterns.append(PhrasePattern(
            regex=regex,
            category=current_category,
            base_confidence=confidence,
            label=(label or regex_text).strip(),
        ))

    return patterns


def load_stall_patterns(md_path: str = "") -> List[PhrasePattern]:
    """
    Load the stall pattern table.

    Returns the built-in table when no path is configured, or when the
    configured file is missing or yields no patterns.
    """
    if not md_path:
        return list(STALL_PATTERNS)

    try:
        patterns = parse_pattern_file(md_path)
    except FileNotFoundError:
        logger.warning("Pattern file not found at %s, using built-in patterns", md_path)
        return list(STALL_PATTERNS)

    if not patterns:
        logger.warning("Pattern file %s has no patterns, using built-in patterns", md_path)
        return list(STALL_PATTERNS)

    logger.info("Loaded %d stall patterns from %s", len(patterns), md_path)
    return patterns
