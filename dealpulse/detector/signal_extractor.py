"""
Call Signal Extractor

Extracts typed call signals from speaker-segmented transcripts and derives
the call outcome, overall confidence and talk ratio.
"""

import logging
from typing import Dict, List, Optional

from ..common.errors import parse_document
from ..common.schemas import (
    CallOutcome,
    CallSignal,
    CallSignalType,
    ExtractedCallData,
    StructuredTranscript,
    TalkRatio,
)
from .patterns import CALL_SIGNAL_PATTERNS, SignalPattern

logger = logging.getLogger("dealpulse.detector.signal_extractor")

LIVE_CONVERSATION_CONFIDENCE = 0.95
MIN_LIVE_DURATION = 30  # seconds
REPEAT_BOOST = 0.1
FULL_TEXT_FACTOR = 0.8


class CallSignalExtractor:
    """
    Pattern-based call signal extraction.

    Per-segment matching runs first. A type seen again in a later segment
    boosts the existing signal instead of adding a duplicate. Types with no
    segment hit get one whole-text scan at reduced confidence to catch
    phrases spanning segment boundaries.
    """

    def __init__(self, patterns: Optional[List[SignalPattern]] = None):
        self._patterns = [
            p for p in (CALL_SIGNAL_PATTERNS if patterns is None else patterns)
            if p.type != CallSignalType.LIVE_CONVERSATION
        ]

    def extract_signals(self, transcript) -> List[CallSignal]:
        transcript = parse_document(StructuredTranscript, transcript)
        logger.debug("Extracting signals from call %s", transcript.call_id)

        # Signals are frozen, so accumulate mutable state and build at the end
        found: Dict[CallSignalType, dict] = {}

        speakers = {segment.speaker_id for segment in transcript.transcript}
        if len(speakers) > 1 and transcript.duration > MIN_LIVE_DURATION:
            found[CallSignalType.LIVE_CONVERSATION] = {
                "confidence": LIVE_CONVERSATION_CONFIDENCE,
                "evidence": (
                    f"Call duration: {transcript.duration:g}s with "
                    f"{len(transcript.participants)} participants"
                ),
                "timestamp": None,
            }

        for segment in transcript.transcript:
            for pattern in self._patterns:
                if not any(regex.search(segment.text) for regex in pattern.regexes):
                    continue

                existing = found.get(pattern.type)
                if existing:
                    existing["confidence"] = min(existing["confidence"] + REPEAT_BOOST, 1.0)
                    existing["evidence"] += f" | {segment.text[:100]}"
                else:
                    found[pattern.type] = {
                        "confidence": pattern.base_confidence,
                        "evidence": segment.text[:200],
                        "timestamp": segment.start_time,
                    }

        full_text = " ".join(segment.text for segment in transcript.transcript)
        for pattern in self._patterns:
            if pattern.type in found:
                continue
            for regex in pattern.regexes:
                match = regex.search(full_text)
                if match:
                    found[pattern.type] = {
                        "confidence": pattern.base_confidence * FULL_TEXT_FACTOR,
                        "evidence": match.group(0)[:200],
                        "timestamp": None,
                    }
                    break

        signals = [
            CallSignal(
                type=signal_type,
                confidence=round(state["confidence"], 4),
                evidence=state["evidence"],
                timestamp=state["timestamp"],
            )
            for signal_type, state in found.items()
        ]

        logger.info("Extracted %d signals from call %s", len(signals), transcript.call_id)
        return signals

    def determine_outcome(self, signals: List[CallSignal]) -> CallOutcome:
        """Primary call outcome, first matching rule wins"""
        types = {s.type for s in signals}
        T = CallSignalType

        if T.DEMO_SCHEDULED in types:
            return CallOutcome.DEMO_BOOKED
        if T.NEXT_STEPS_DEFINED in types or T.FOLLOW_UP_REQUESTED in types:
            return CallOutcome.CALLBACK_SCHEDULED
        if T.NOT_INTERESTED in types:
            return CallOutcome.DISQUALIFIED
        if T.VOICEMAIL_LEFT in types:
            return CallOutcome.VOICEMAIL
        if T.NO_ANSWER in types or T.WRONG_NUMBER in types:
            return CallOutcome.NO_CONNECT
        if T.SEND_PRICING_REQUEST in types:
            return CallOutcome.SENT_TO_NURTURE

        if T.LIVE_CONVERSATION in types:
            if T.INTEREST_EXPRESSED in types or T.PRICING_DISCUSSED in types:
                return CallOutcome.CONNECTED_POSITIVE
            if T.OBJECTION_RAISED in types and T.OBJECTION_HANDLED not in types:
                return CallOutcome.CONNECTED_NEGATIVE
            return CallOutcome.CONNECTED_NEUTRAL

        return CallOutcome.NO_CONNECT

    def talk_ratio(self, transcript: StructuredTranscript) -> Optional[TalkRatio]:
        """Rep vs prospect speaking time in percent, or None when unknown"""
        rep = transcript.participant_with_role("rep")
        prospect = transcript.participant_with_role("prospect")
        if not rep or not prospect:
            return None

        def speaking_time(speaker_id: str) -> float:
            return sum(
                s.end_time - s.start_time
                for s in transcript.transcript
                if s.speaker_id == speaker_id
            )

        rep_time = speaking_time(rep.id)
        prospect_time = speaking_time(prospect.id)
        total = rep_time + prospect_time
        if total <= 0:
            return None

        return TalkRatio(
            rep=round(rep_time / total * 100),
            prospect=round(prospect_time / total * 100),
        )

    def extract_call_data(self, transcript) -> ExtractedCallData:
        """Run the full extraction: signals, outcome, confidence and talk ratio"""
        transcript = parse_document(StructuredTranscript, transcript)
        logger.info("Starting call data extraction for %s", transcript.call_id)

        signals = self.extract_signals(transcript)
        outcome = self.determine_outcome(signals)

        if signals:
            overall = sum(s.confidence for s in signals) / len(signals)
        else:
            overall = 0.5

        data = ExtractedCallData(
            call_id=transcript.call_id,
            signals=signals,
            primary_outcome=outcome,
            overall_confidence=overall,
            duration=transcript.duration,
            talk_ratio=self.talk_ratio(transcript),
        )

        logger.info(
            "Call %s: outcome=%s signals=%d confidence=%.2f",
            transcript.call_id, outcome.value, len(signals), overall,
        )
        return data

    @staticmethod
    def transcript_summary(transcript: StructuredTranscript) -> str:
        """One-line call summary for logging and audit metadata"""
        names = ", ".join(p.name for p in transcript.participants)
        minutes = round(transcript.duration / 60)
        return (
            f"Call {transcript.call_id}: {names} "
            f"({minutes}min, {len(transcript.transcript)} segments)"
        )
