"""End-to-end scenarios across detection, scoring, rules, routing, audit and alerts."""

import pytest
from datetime import datetime, timedelta, timezone


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class TestStallScenario:
    def test_hesitation_phrase_becomes_medium_stall(self):
        from dealpulse.common.schemas import SEVERITY_ORDER, StallPhraseCategory as C, StallSeverity
        from dealpulse.detector import StallDetector
        from dealpulse.engine import StallTracker

        detector = StallDetector()
        tracker = StallTracker(detector.signal_repository)
        text = "let me think about it and I'll send you pricing next week"

        matches = detector.detect_phrases(text)
        assert {m.category for m in matches} >= {C.THINKING}
        assert len(matches) >= 2

        detector.analyze_transcript({
            "id": "call-1",
            "deal_id": "deal-1",
            "account_id": "acct-1",
            "call_date": NOW - timedelta(hours=2),
            "transcript": text,
        }, now=NOW)
        status = tracker.calculate_deal_status({"deal_id": "deal-1", "owner_rep_id": "rep-1"}, now=NOW)

        assert status.is_stalled is True
        assert SEVERITY_ORDER.index(status.severity) >= SEVERITY_ORDER.index(StallSeverity.MEDIUM)
        assert status.primary_category == C.THINKING

    def test_alert_suppressed_until_acknowledged(self):
        from dealpulse.alerts import AlertGenerator
        from dealpulse.detector import StallDetector
        from dealpulse.engine import StallTracker

        detector = StallDetector()
        tracker = StallTracker(detector.signal_repository)
        generator = AlertGenerator()
        deal = {"deal_id": "deal-1", "account_name": "Acme Corp", "owner_rep_id": "rep-1"}

        detector.analyze_email({
            "id": "email-1",
            "deal_id": "deal-1",
            "account_id": "acct-1",
            "sent_date": NOW,
            "subject": "Re: next steps",
            "body": "I'm not the decision maker, and we need to discuss internally.",
            "direction": "INBOUND",
        }, now=NOW)

        first = generator.generate_alert(tracker.calculate_deal_status(deal, now=NOW), NOW)
        repeat = generator.generate_alert(tracker.calculate_deal_status(deal, now=NOW), NOW + timedelta(hours=1))
        generator.acknowledge_alert(first.id, "rep-1")
        after_ack = generator.generate_alert(
            tracker.calculate_deal_status(deal, now=NOW), NOW + timedelta(hours=1),
        )

        assert first is not None
        assert repeat is None
        assert after_ack is not None


class TestCallScenario:
    def test_not_interested_overrides_working(self):
        from dealpulse.common.schemas import (
            CallSignal,
            CallSignalType as T,
            ExtractedCallData,
            PipelineStage,
        )
        from dealpulse.engine import StageEngine

        data = ExtractedCallData(call_id="call-1", signals=[
            CallSignal(type=T.LIVE_CONVERSATION, confidence=0.9),
            CallSignal(type=T.NOT_INTERESTED, confidence=0.9),
        ])

        result = StageEngine().map_to_stage(data)

        assert result.new_stage == PipelineStage.CLOSED_LOST
        assert "disqualified" in result.flags

    def test_live_call_updates_record_then_rolls_back(self, tmp_path):
        from dealpulse.audit import AuditLog
        from dealpulse.common.schemas import AuditAction, CrmRecord, PipelineStage, RoutingAction
        from dealpulse.engine import StageEngine
        from dealpulse.pipeline.call_pipeline import CallPipeline
        from dealpulse.pipeline.confirmations import ConfirmationQueue
        from dealpulse.pipeline.crm import InMemoryCrmAdapter

        crm = InMemoryCrmAdapter([CrmRecord(id="rec-1", email="pat@acme.com", stage=PipelineStage.WORKING)])
        audit = AuditLog()
        pipeline = CallPipeline(StageEngine(), audit, crm, ConfirmationQueue(tmp_path / "c.json"))

        response = pipeline.process_call({
            "event": "call.analyzed",
            "timestamp": NOW,
            "data": {
                "call_id": "call-1",
                "start_time": NOW - timedelta(minutes=5),
                "end_time": NOW,
                "duration": 300,
                "participants": [
                    {"id": "rep", "name": "Sam", "role": "rep"},
                    {"id": "buyer", "name": "Pat", "email": "pat@acme.com", "role": "prospect"},
                ],
                "transcript": [
                    {"speaker_id": "rep", "text": "Can we book a demo for Thursday?", "start_time": 0, "end_time": 60},
                    {"speaker_id": "buyer", "text": "Yes, the demo is confirmed.", "start_time": 60, "end_time": 240},
                ],
            },
        })

        assert response.action == RoutingAction.AUTO_UPDATE
        assert crm.get_record("rec-1").stage == PipelineStage.DEMO_SCHEDULED
        assert crm.calls["rec-1"][0].notes == "Call call-1: Sam, Pat (5min, 2 segments)"

        rollback = pipeline.rollback(response.audit_id, "manager@company.com")

        assert rollback.applied is True
        assert crm.get_record("rec-1").stage == PipelineStage.WORKING
        history = audit.get_rollback_history(response.audit_id)
        assert [e.action for e in history] == [AuditAction.STAGE_CHANGE, AuditAction.ROLLBACK]
        assert (history[1].previous_value, history[1].new_value) == ("DEMO_SCHEDULED", "WORKING")

    @pytest.mark.parametrize("confidence,expected", [
        (0.0, "NO_ACTION"),
        (0.49, "NO_ACTION"),
        (0.5, "FLAG_FOR_CONFIRMATION"),
        (0.79, "FLAG_FOR_CONFIRMATION"),
        (0.8, "AUTO_UPDATE"),
        (1.0, "AUTO_UPDATE"),
    ])
    def test_routing_is_total(self, confidence, expected):
        from dealpulse.engine import ActionRouter

        assert ActionRouter().decide(confidence).action.value == expected
