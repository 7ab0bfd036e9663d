"""
Phrase Matchers

Matching capability behind the stall detector. The scoring and routing
layers only see ``PhraseMatch`` lists, so the matching technology can be
swapped without touching them.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from ..common.schemas import PhraseMatch
from .patterns import PhrasePattern, STALL_PATTERNS


def extract_context(text: str, position: int, radius: int) -> str:
    """
    Cut a window of ``radius`` characters either side of ``position``.

    Truncated sides are marked with ``...``.
    """
    start = max(0, position - radius)
    end = min(len(text), position + radius)

    context = text[start:end]
    if start > 0:
        context = "..." + context
    if end < len(text):
        context = context + "..."

    return context.strip()


class Matcher(ABC):
    """Finds stall phrase occurrences in free text"""

    @abstractmethod
    def match(self, text: str) -> List[PhraseMatch]:
        """Return every match, sorted by position ascending"""
        pass


class RegexMatcher(Matcher):
    """
    Matches an ordered table of weighted regular expressions.

    Every occurrence of every pattern is reported. Matching is pure: the same
    text always yields the same matches in the same order.
    """

    def __init__(self, patterns: Optional[List[PhrasePattern]] = None, context_radius: int = 100):
        self._patterns = list(STALL_PATTERNS if patterns is None else patterns)
        self._context_radius = context_radius

    @property
    def patterns(self) -> List[PhrasePattern]:
        return list(self._patterns)

    @property
    def context_radius(self) -> int:
        return self._context_radius

    def match(self, text: str) -> List[PhraseMatch]:
        if not text:
            return []

        matches: List[PhraseMatch] = []
        for pattern in self._patterns:
            for m in pattern.regex.finditer(text):
                matches.append(PhraseMatch(
                    phrase=pattern.label,
                    category=pattern.category,
                    matched_text=m.group(0),
                    confidence=pattern.base_confidence,
                    position=m.start(),
                    context=extract_context(text, m.start(), self._context_radius),
                ))

        # stable sort keeps table order for matches at the same offset
        matches.sort(key=lambda pm: pm.position)
        return matches
