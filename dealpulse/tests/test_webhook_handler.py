"""Tests for the call webhook handler: HMAC verification and event filtering."""

import hashlib
import hmac
import pytest


def sign(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def make_event(event="call.completed") -> dict:
    return {
        "event": event,
        "timestamp": "2026-03-02T12:00:00Z",
        "data": {
            "call_id": "call-1",
            "start_time": "2026-03-02T11:55:00Z",
            "end_time": "2026-03-02T12:00:00Z",
            "duration": 300,
        },
    }


class TestSignature:
    @pytest.fixture
    def handler(self):
        from dealpulse.pipeline.handlers import CallWebhookHandler
        return CallWebhookHandler(signing_secret="whsec")

    def test_valid_signature(self, handler):
        body = b'{"event": "call.completed"}'
        assert handler.verify_signature(body, sign("whsec", body)) is True

    def test_tampered_body(self, handler):
        body = b'{"event": "call.completed"}'
        assert handler.verify_signature(body + b" ", sign("whsec", body)) is False

    def test_non_ascii_signature(self, handler):
        body = b'{"event": "call.completed"}'
        assert handler.verify_signature(body, "s\u00efgn\u00e4ture") is False

    def test_missing_signature(self, handler, caplog):
        assert handler.verify_signature(b"{}", None) is False
        assert "Missing call webhook signature" in caplog.text

    def test_no_secret_skips_verification(self):
        from dealpulse.pipeline.handlers import CallWebhookHandler
        assert CallWebhookHandler().verify_signature(b"{}", None) is True


class TestParseEvent:
    def test_parse_and_filter(self):
        from dealpulse.pipeline.handlers import CallWebhookHandler

        handler = CallWebhookHandler()
        completed = handler.parse_event(make_event())
        transcribed = handler.parse_event(make_event("call.transcribed"))

        assert completed.data.call_id == "call-1"
        assert handler.should_process(completed) is True
        assert handler.should_process(handler.parse_event(make_event("call.analyzed"))) is True
        assert handler.should_process(transcribed) is False

    def test_unknown_event_rejected(self):
        from dealpulse.common.errors import ValidationError
        from dealpulse.pipeline.handlers import CallWebhookHandler

        with pytest.raises(ValidationError, match="event"):
            CallWebhookHandler().parse_event(make_event("call.deleted"))
