"""Tests for CallPipeline: confidence routing, CRM apply, confirmations and rollback."""

import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def make_payload(event="call.completed", prospect_email="pat@acme.com", call_id="call-1"):
    participants = [{"id": "rep", "name": "Sam", "role": "rep"}]
    if prospect_email is not None:
        participants.append({"id": "buyer", "name": "Pat", "email": prospect_email, "role": "prospect"})
    return {
        "event": event,
        "timestamp": NOW,
        "data": {
            "call_id": call_id,
            "title": "Discovery call",
            "start_time": NOW,
            "end_time": NOW,
            "duration": 300,
            "participants": participants,
            "transcript": [
                {"speaker_id": "rep", "text": "Thanks for the time today.", "start_time": 0, "end_time": 60},
                {"speaker_id": "buyer", "text": "Happy to chat.", "start_time": 60, "end_time": 120},
            ],
        },
    }


def stub_extractor(*signals):
    from dealpulse.common.schemas import CallSignal, ExtractedCallData
    from dealpulse.detector import CallSignalExtractor

    extractor = MagicMock(spec=CallSignalExtractor)
    extractor.extract_call_data.return_value = ExtractedCallData(
        call_id="call-1",
        signals=[CallSignal(type=t, confidence=c) for t, c in signals],
        duration=300,
    )
    extractor.transcript_summary.return_value = "Call call-1: Sam, Pat (5min, 2 segments)"
    return extractor


def make_crm(stage="WORKING"):
    from dealpulse.common.schemas import CrmRecord
    from dealpulse.pipeline.crm import InMemoryCrmAdapter
    return InMemoryCrmAdapter([CrmRecord(id="rec-1", email="pat@acme.com", stage=stage)])


def make_pipeline(tmp_path, extractor, crm=None):
    from dealpulse.audit import AuditLog
    from dealpulse.engine import StageEngine
    from dealpulse.pipeline.call_pipeline import CallPipeline
    from dealpulse.pipeline.confirmations import ConfirmationQueue

    return CallPipeline(
        StageEngine(),
        AuditLog(),
        crm if crm is not None else make_crm(),
        ConfirmationQueue(tmp_path / "confirmations.json"),
        extractor=extractor,
    )


class TestRouting:
    def test_high_confidence_auto_updates(self, tmp_path):
        from dealpulse.common.schemas import AuditAction, CallSignalType as T, PipelineStage, RoutingAction

        crm = make_crm("WORKING")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.DEMO_SCHEDULED, 0.85)), crm)

        response = pipeline.process_call(make_payload())

        assert response.success is True
        assert response.processed is True
        assert response.action == RoutingAction.AUTO_UPDATE
        assert response.stage_update.new_stage == PipelineStage.DEMO_SCHEDULED
        assert crm.get_record("rec-1").stage == PipelineStage.DEMO_SCHEDULED
        assert crm.notes["rec-1"][0].startswith("Call: Discovery call")
        assert crm.calls["rec-1"][0].outcome == "DEMO_SCHEDULED"

        stage_entry = pipeline.audit_log.get_entry(response.audit_id)
        assert stage_entry.action == AuditAction.STAGE_CHANGE
        assert stage_entry.automated is True
        assert stage_entry.previous_value == "WORKING"
        actions = [e.action for e in pipeline.audit_log.get_entries_for_call("call-1")]
        assert AuditAction.NOTE_ADDED in actions
        assert pipeline.confirmations.get_pending() == []

    def test_medium_confidence_queued(self, tmp_path):
        from dealpulse.common.schemas import AuditAction, CallSignalType as T, PipelineStage, RoutingAction

        crm = make_crm("NEW")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.LIVE_CONVERSATION, 0.5)), crm)

        response = pipeline.process_call(make_payload())

        assert response.action == RoutingAction.FLAG_FOR_CONFIRMATION
        assert response.confirmation_id == "call-1-rec-1"
        assert crm.get_record("rec-1").stage == PipelineStage.NEW
        assert crm.calls["rec-1"][0].outcome == "Connected - Pending Review"

        item = pipeline.confirmations.get_item("call-1-rec-1")
        assert item.suggested_stage == "WORKING"
        assert item.audit_id == response.audit_id
        actions = [e.action for e in pipeline.audit_log.get_entries_for_call("call-1")]
        assert AuditAction.CONFIRMATION_REQUIRED in actions
        assert pipeline.audit_log.get_entry(response.audit_id).automated is False

    def test_low_confidence_only_recorded(self, tmp_path):
        from dealpulse.common.schemas import PipelineStage, RoutingAction

        crm = make_crm("NEW")
        pipeline = make_pipeline(tmp_path, stub_extractor(), crm)

        response = pipeline.process_call(make_payload())

        assert response.success is True
        assert response.processed is True
        assert response.action == RoutingAction.NO_ACTION
        assert response.stage_update.confidence == 0.3
        assert response.audit_id is not None
        assert crm.get_record("rec-1").stage == PipelineStage.NEW
        assert crm.calls == {}
        assert pipeline.confirmations.get_pending() == []

    def test_invalid_transition_requires_confirmation(self, tmp_path, caplog):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage, RoutingAction

        crm = make_crm("WORKING")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.SEND_PRICING_REQUEST, 0.7)), crm)

        response = pipeline.process_call(make_payload())

        assert response.action == RoutingAction.FLAG_FOR_CONFIRMATION
        assert "invalid_transition" in response.stage_update.flags
        assert response.stage_update.requires_confirmation is True
        assert crm.get_record("rec-1").stage == PipelineStage.WORKING
        assert "is not allowed" in caplog.text

    def test_valid_transition_from_qualified_auto_updates(self, tmp_path):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage, RoutingAction

        crm = make_crm("QUALIFIED")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.SEND_PRICING_REQUEST, 0.7)), crm)

        response = pipeline.process_call(make_payload())

        assert response.action == RoutingAction.AUTO_UPDATE
        assert crm.get_record("rec-1").stage == PipelineStage.NEGOTIATION


class TestProcessCallEdgeCases:
    def test_ignored_event(self, tmp_path):
        extractor = stub_extractor()
        pipeline = make_pipeline(tmp_path, extractor)

        response = pipeline.process_call(make_payload(event="call.transcribed"))

        assert response.success is True
        assert response.processed is False
        assert "not processed" in response.error
        extractor.extract_call_data.assert_not_called()

    def test_malformed_payload(self, tmp_path):
        pipeline = make_pipeline(tmp_path, stub_extractor())

        response = pipeline.process_call({"event": "call.completed", "data": {}})

        assert response.success is False
        assert response.call_id == "unknown"
        assert "Invalid CallWebhookPayload" in response.error

    def test_no_prospect_email(self, tmp_path):
        from dealpulse.common.schemas import CallSignalType as T

        pipeline = make_pipeline(tmp_path, stub_extractor((T.DEMO_SCHEDULED, 0.85)))

        response = pipeline.process_call(make_payload(prospect_email=None))

        assert response.success is True
        assert response.processed is False
        assert response.error == "No prospect email found"
        assert response.stage_update is not None

    def test_no_crm_record(self, tmp_path):
        from dealpulse.common.schemas import CallSignalType as T

        pipeline = make_pipeline(tmp_path, stub_extractor((T.DEMO_SCHEDULED, 0.85)))

        response = pipeline.process_call(make_payload(prospect_email="stranger@other.com"))

        assert response.processed is False
        assert response.error == "No CRM record found for stranger@other.com"
        assert pipeline.audit_log.get_entries_for_call("call-1") == []

    def test_crm_unavailable_on_lookup(self, tmp_path):
        from dealpulse.common.errors import DownstreamUnavailable
        from dealpulse.common.schemas import AuditAction, CallSignalType as T
        from dealpulse.pipeline.crm import CrmAdapter

        crm = MagicMock(spec=CrmAdapter)
        crm.find_record_by_email.side_effect = DownstreamUnavailable("CRM unreachable")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.DEMO_SCHEDULED, 0.85)), crm)

        response = pipeline.process_call(make_payload())

        assert response.success is False
        assert response.error == "CRM unreachable"
        actions = [e.action for e in pipeline.audit_log.get_entries_for_call("call-1")]
        assert AuditAction.ERROR in actions

    def test_crm_unavailable_on_apply(self, tmp_path):
        from dealpulse.common.errors import DownstreamUnavailable
        from dealpulse.common.schemas import CallSignalType as T, CrmRecord
        from dealpulse.pipeline.crm import CrmAdapter

        crm = MagicMock(spec=CrmAdapter)
        crm.find_record_by_email.return_value = CrmRecord(id="rec-1", email="pat@acme.com", stage="WORKING")
        crm.update_record.side_effect = DownstreamUnavailable("CRM timed out")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.DEMO_SCHEDULED, 0.85)), crm)

        response = pipeline.process_call(make_payload())

        assert response.success is False
        assert response.processed is True
        assert response.error == "CRM timed out"
        entry = pipeline.audit_log.get_entry(response.audit_id)
        assert entry.automated is False
        assert entry.metadata["apply_error"] == "CRM timed out"
        crm.log_call.assert_not_called()


class TestConfirmations:
    @pytest.fixture
    def flagged(self, tmp_path):
        from dealpulse.common.schemas import CallSignalType as T

        crm = make_crm("NEW")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.LIVE_CONVERSATION, 0.5)), crm)
        response = pipeline.process_call(make_payload())
        return pipeline, crm, response.confirmation_id

    def test_confirm_applies_suggested_stage(self, flagged):
        from dealpulse.common.schemas import PipelineStage

        pipeline, crm, confirmation_id = flagged

        result = pipeline.confirm(confirmation_id, "rep-1")

        assert result.success is True
        assert result.new_stage == PipelineStage.WORKING
        assert crm.get_record("rec-1").stage == PipelineStage.WORKING
        entry = pipeline.audit_log.get_entry(result.audit_id)
        assert entry.automated is False
        assert entry.confirmed_by == "rep-1"
        assert entry.metadata["modified_by_rep"] is False
        assert pipeline.confirmations.get_item(confirmation_id).status == "confirmed"

    def test_confirm_with_modified_stage(self, flagged):
        from dealpulse.common.schemas import PipelineStage

        pipeline, crm, confirmation_id = flagged

        result = pipeline.confirm(confirmation_id, "rep-1", modified_stage="QUALIFIED")

        assert result.new_stage == PipelineStage.QUALIFIED
        assert crm.get_record("rec-1").stage == PipelineStage.QUALIFIED
        assert pipeline.audit_log.get_entry(result.audit_id).metadata["original_suggested_stage"] == "WORKING"

    def test_confirm_unknown_stage(self, flagged):
        pipeline, crm, confirmation_id = flagged

        result = pipeline.confirm(confirmation_id, "rep-1", modified_stage="BOGUS")

        assert result.success is False
        assert result.error_code == "validation"
        assert pipeline.confirmations.get_item(confirmation_id).status == "pending"

    def test_confirm_twice_not_found(self, flagged):
        pipeline, crm, confirmation_id = flagged
        pipeline.confirm(confirmation_id, "rep-1")

        result = pipeline.confirm(confirmation_id, "rep-1")

        assert result.success is False
        assert result.error_code == "not_found"

    def test_reject(self, flagged):
        from dealpulse.common.schemas import AuditAction, PipelineStage

        pipeline, crm, confirmation_id = flagged

        result = pipeline.reject(confirmation_id, "rep-1", "Wrong prospect")

        assert result.success is True
        entry = pipeline.audit_log.get_entry(result.audit_id)
        assert entry.action == AuditAction.FLAG_SET
        assert entry.new_value == "stage_change_rejected"
        assert crm.get_record("rec-1").stage == PipelineStage.NEW
        assert pipeline.reject(confirmation_id, "rep-1").error_code == "not_found"


class TestRollback:
    def test_rollback_reapplies_previous_stage(self, tmp_path):
        from dealpulse.common.schemas import CallSignalType as T, PipelineStage

        crm = make_crm("WORKING")
        pipeline = make_pipeline(tmp_path, stub_extractor((T.DEMO_SCHEDULED, 0.85)), crm)
        response = pipeline.process_call(make_payload())

        result = pipeline.rollback(response.audit_id, "manager@company.com")

        assert result.success is True
        assert result.applied is True
        assert result.restored_value == "WORKING"
        assert crm.get_record("rec-1").stage == PipelineStage.WORKING

    def test_rollback_recorded_when_crm_fails(self, tmp_path):
        from dealpulse.common.errors import DownstreamUnavailable
        from dealpulse.common.schemas import AuditAction, PipelineStage

        crm = MagicMock()
        crm.update_record.side_effect = DownstreamUnavailable("CRM unreachable")
        pipeline = make_pipeline(tmp_path, stub_extractor(), crm)
        entry_id = pipeline.audit_log.log_stage_change(
            "call-9", "rec-1", PipelineStage.WORKING, PipelineStage.QUALIFIED, 0.9, True,
        )

        result = pipeline.rollback(entry_id, "manager@company.com")

        assert result.success is True
        assert result.applied is False
        assert result.error_code == "downstream"
        actions = [e.action for e in pipeline.audit_log.get_entries_for_call("call-9")]
        assert actions.count(AuditAction.ROLLBACK) == 1
        assert AuditAction.ERROR in actions

    def test_rollback_error_codes(self, tmp_path):
        pipeline = make_pipeline(tmp_path, stub_extractor())
        note_id = pipeline.audit_log.log_note_added("call-1", "rec-1", "note", True)

        assert pipeline.rollback("missing", "rep").error_code == "not_found"
        assert pipeline.rollback(note_id, "rep").error_code == "not_rollbackable"
