"""
DealPulse Detector

Deterministic, pattern-based detection of stall phrases in free text and
typed signals in structured call transcripts.
"""

from .patterns import (
    PhrasePattern,
    SignalPattern,
    STALL_PATTERNS,
    CALL_SIGNAL_PATTERNS,
    parse_pattern_file,
    load_stall_patterns,
)
from .matcher import Matcher, RegexMatcher, extract_context
from .stall_detector import StallDetector
from .signal_extractor import CallSignalExtractor

__all__ = [
    "PhrasePattern",
    "SignalPattern",
    "STALL_PATTERNS",
    "CALL_SIGNAL_PATTERNS",
    "parse_pattern_file",
    "load_stall_patterns",
    "Matcher",
    "RegexMatcher",
    "extract_context",
    "StallDetector",
    "CallSignalExtractor",
]
