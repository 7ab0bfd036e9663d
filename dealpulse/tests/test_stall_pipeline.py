"""Tests for StallPipeline: detection through status, alerting and recalculation."""

import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock


NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

STALL_TEXT = "Let me think about it and I'll send you pricing next week"


def make_transcript(text=STALL_TEXT, call_date=NOW, deal_id=None):
    return {
        "id": "call-1",
        "deal_id": deal_id,
        "account_id": "acct-1",
        "account_name": "Acme Corp",
        "call_date": call_date,
        "duration": 1800,
        "transcript": text,
    }


def make_deal(deal_id="deal-1"):
    return {
        "deal_id": deal_id,
        "account_id": "acct-1",
        "account_name": "Acme Corp",
        "deal_stage": "PROPOSAL",
        "deal_value": 50000,
        "owner_rep_id": "rep-1",
        "owner_rep_name": "Sam Rep",
        "manager_id": "mgr-1",
    }


@pytest.fixture
def channel():
    from dealpulse.alerts import DeliveryChannel
    channel = MagicMock(spec=DeliveryChannel)
    channel.deliver.return_value = True
    return channel


@pytest.fixture
def pipeline(channel):
    from dealpulse.alerts import AlertGenerator
    from dealpulse.common.schemas import AlertChannel
    from dealpulse.detector import StallDetector
    from dealpulse.engine import StallTracker
    from dealpulse.pipeline.stall_pipeline import StallPipeline

    detector = StallDetector()
    tracker = StallTracker(detector.signal_repository)
    alerts = AlertGenerator(channels={AlertChannel.WEBHOOK: channel})
    return StallPipeline(detector, tracker, alerts)


class TestAnalyzeTranscript:
    def test_signals_only_without_deal(self, pipeline):
        result = pipeline.analyze_transcript(make_transcript(), now=NOW)

        assert result.success is True
        assert len(result.signals) == 2
        assert result.status is None
        assert result.alert is None

    def test_stall_status_and_alert(self, pipeline, channel):
        from dealpulse.common.schemas import AlertPriority, StallSeverity

        result = pipeline.analyze_transcript(make_transcript(), make_deal(), now=NOW)

        assert result.success is True
        assert {s.deal_id for s in result.signals} == {"deal-1"}
        assert result.status.stall_score == pytest.approx(49.0)
        assert result.status.severity == StallSeverity.MEDIUM
        assert result.status.alert_sent_at == NOW
        assert result.alert.priority == AlertPriority.MEDIUM
        assert result.alert_delivered is True
        channel.deliver.assert_called_once()

    def test_repeat_alert_suppressed(self, pipeline, channel):
        pipeline.analyze_transcript(make_transcript(), make_deal(), now=NOW)

        second = pipeline.analyze_transcript(
            make_transcript(), make_deal(), now=NOW + timedelta(hours=2),
        )

        assert second.status.is_stalled is True
        assert second.alert is None
        assert second.alert_delivered is False
        assert channel.deliver.call_count == 1

    def test_clean_transcript_not_stalled(self, pipeline, channel):
        result = pipeline.analyze_transcript(
            make_transcript("Great demo, we are ready to sign."), make_deal(), now=NOW,
        )

        assert result.signals == []
        assert result.status.is_stalled is False
        assert result.alert is None
        channel.deliver.assert_not_called()

    def test_unreachable_crm_task_still_returns_status(self, caplog):
        import httpx

        from dealpulse.alerts import AlertGenerator, CrmTaskChannel
        from dealpulse.common.config import AlertConfig
        from dealpulse.common.schemas import AlertChannel
        from dealpulse.detector import StallDetector
        from dealpulse.engine import StallTracker
        from dealpulse.pipeline.crm import HttpCrmAdapter
        from dealpulse.pipeline.stall_pipeline import StallPipeline

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.Client(base_url="https://crm.test", transport=httpx.MockTransport(refuse))
        detector = StallDetector()
        tracker = StallTracker(detector.signal_repository)
        alerts = AlertGenerator(
            AlertConfig(enabled_channels=["CRM_TASK"]),
            channels={AlertChannel.CRM_TASK: CrmTaskChannel(HttpCrmAdapter("https://crm.test", client=client))},
        )
        pipeline = StallPipeline(detector, tracker, alerts)

        result = pipeline.analyze_transcript(make_transcript(), make_deal(), now=NOW)

        assert result.success is True
        assert result.status.is_stalled is True
        assert result.status.alert_sent_at == NOW
        assert result.alert is not None
        assert result.alert.delivered_via == []
        assert result.alert_delivered is False
        assert "CRM unreachable" in caplog.text

    def test_delivery_error_does_not_escape(self, pipeline, caplog):
        from dealpulse.common.errors import DownstreamUnavailable

        pipeline.alerts.deliver_alert = MagicMock(side_effect=DownstreamUnavailable("CRM down"))

        result = pipeline.analyze_transcript(make_transcript(), make_deal(), now=NOW)

        assert result.success is True
        assert result.alert_delivered is False
        assert result.status.alert_sent_at == NOW
        assert "CRM down" in caplog.text

    def test_malformed_transcript(self, pipeline):
        result = pipeline.analyze_transcript({"id": "call-1"}, now=NOW)

        assert result.success is False
        assert result.error_code == "validation"

    def test_malformed_deal(self, pipeline):
        result = pipeline.analyze_transcript(make_transcript(), {"account_id": "acct-1"}, now=NOW)
        assert result.error_code == "validation"


class TestAnalyzeEmail:
    def test_inbound_email(self, pipeline):
        result = pipeline.analyze_email({
            "id": "email-1",
            "account_id": "acct-1",
            "sent_date": NOW,
            "subject": "Re: proposal",
            "body": "We need to discuss internally before moving forward.",
            "direction": "INBOUND",
        }, make_deal(), now=NOW)

        assert result.success is True
        assert len(result.signals) == 1
        assert result.status.signal_count == 1

    def test_outbound_email_ignored(self, pipeline):
        result = pipeline.analyze_email({
            "id": "email-2",
            "account_id": "acct-1",
            "sent_date": NOW,
            "body": "Let me think about it",
            "direction": "OUTBOUND",
        }, now=NOW)

        assert result.success is True
        assert result.signals == []


class TestRecalculate:
    def test_recalculate_existing_uses_stored_context(self, pipeline):
        engagement = {"date": NOW - timedelta(days=10), "type": "demo"}
        pipeline.analyze_transcript(make_transcript(), make_deal(), engagement, now=NOW)

        result = pipeline.recalculate_existing("deal-1", now=NOW + timedelta(hours=48))

        assert result.success is True
        assert result.status.account_name == "Acme Corp"
        assert result.status.days_since_last_positive_engagement == 12
        assert result.status.stall_score < 49.0

    def test_recalculate_unknown_deal(self, pipeline):
        result = pipeline.recalculate_existing("missing", now=NOW)

        assert result.success is False
        assert result.error_code == "not_found"

    def test_recalculate_with_fresh_context(self, pipeline):
        result = pipeline.recalculate(make_deal("deal-9"), now=NOW)

        assert result.success is True
        assert result.status.signal_count == 0
        assert result.status.is_stalled is False
