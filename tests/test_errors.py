"""
Call error handling tests.
"""
import json

from call_signaling.errors import (
    CallErrorCategory,
    CallErrorHandler,
    DeviceUnavailableError,
    DocumentNotFoundError,
    MalformedDescriptionError,
    MissingOfferError,
    NegotiationError,
)


class TestClassification:
    def test_own_exceptions(self):
        assert CallErrorHandler.classify_error(MissingOfferError("x")) == CallErrorCategory.MISSING_OFFER
        assert CallErrorHandler.classify_error(MalformedDescriptionError("x")) == CallErrorCategory.MALFORMED_DESCRIPTION
        assert CallErrorHandler.classify_error(NegotiationError("x")) == CallErrorCategory.NEGOTIATION_FAILED
        assert CallErrorHandler.classify_error(DeviceUnavailableError("x")) == CallErrorCategory.DEVICE_UNAVAILABLE
        assert CallErrorHandler.classify_error(DocumentNotFoundError("x")) == CallErrorCategory.DOCUMENT_MISSING

    def test_adapter_messages(self):
        category = CallErrorHandler.classify_error(Exception("Failed to set remote SDP"))
        assert category == CallErrorCategory.NEGOTIATION_FAILED

        category = CallErrorHandler.classify_error(Exception("NotAllowedError: Permission denied"))
        assert category == CallErrorCategory.DEVICE_UNAVAILABLE

    def test_unknown(self):
        assert CallErrorHandler.classify_error(Exception("boom")) == CallErrorCategory.UNKNOWN_ERROR


class TestHandleError:
    def test_emits_call_error(self, capsys):
        category = CallErrorHandler.handle_error(
            "case-1", MissingOfferError("no offer found"), role="receiver", correlation_id="call_abc"
        )
        assert category == CallErrorCategory.MISSING_OFFER

        event = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert event["event_type"] == "call.error"
        assert event["severity"] == "error"
        assert event["case_id"] == "case-1"
        assert event["correlation_id"] == "call_abc"
        assert event["category"] == CallErrorCategory.MISSING_OFFER
        assert event["role"] == "receiver"
        assert event["error_class"] == "MissingOfferError"

    def test_redacts_secrets(self, capsys):
        CallErrorHandler.handle_error("case-1", Exception("TURN credential rejected: abc123"), role="caller")

        event = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert "abc123" not in event["detail"]
        assert event["detail"] == "[redacted: potential secret]"


class TestUserMessages:
    def test_messages(self):
        assert CallErrorHandler.get_user_message(CallErrorCategory.MISSING_OFFER) == "Call Failed"
        assert CallErrorHandler.get_user_message(CallErrorCategory.NEGOTIATION_FAILED) == "Connection Error"
        assert CallErrorHandler.get_user_message("something.else") == "Connection Error"
