"""
Tests for the event envelope models.
"""
import json

from realtime_proxy.relay.models import ErrorEvent, describe_message


class TestDescribeMessage:
    """Tests for best-effort message decoding."""

    def test_audio_append(self):
        envelope = describe_message('{"type":"input_audio_buffer.append","audio":"QUJD"}')
        assert envelope.type == "input_audio_buffer.append"
        assert envelope.audio_length == 4

    def test_audio_length_only_for_append(self):
        envelope = describe_message('{"type":"response.audio.delta","audio":"QUJD"}')
        assert envelope.audio_length is None

    def test_bytes_payload(self):
        envelope = describe_message(b'{"type":"response.done"}')
        assert envelope.type == "response.done"
        assert not envelope.is_error

    def test_extra_fields_are_kept(self):
        envelope = describe_message('{"type":"session.update","session":{"voice":"alloy"}}')
        assert envelope.model_extra["session"] == {"voice": "alloy"}

    def test_invalid_json(self):
        assert describe_message("{not json") is None

    def test_invalid_utf8(self):
        assert describe_message(b"\xff\xfe\x00") is None

    def test_non_object_json(self):
        assert describe_message("[1, 2, 3]") is None
        assert describe_message('"just a string"') is None

    def test_non_string_type_is_still_json(self):
        envelope = describe_message('{"type": 5}')
        assert envelope is not None
        assert envelope.type == 5
        assert envelope.audio_length is None
        assert not envelope.is_error

    def test_empty_payload(self):
        assert describe_message("") is None
        assert describe_message(b"") is None


class TestErrorSummary:
    """Tests for error event labelling."""

    def test_structured_error(self):
        envelope = describe_message(
            '{"type":"error","error":{"type":"invalid_request_error","message":"Bad audio"}}'
        )
        assert envelope.is_error
        assert envelope.error_summary() == "invalid_request_error: Bad audio"

    def test_error_without_message(self):
        envelope = describe_message('{"type":"error","error":{"type":"server_error"}}')
        assert envelope.error_summary() == "server_error"

    def test_string_error(self):
        envelope = describe_message('{"type":"error","error":"boom"}')
        assert envelope.error_summary() == "boom"


class TestErrorEvent:
    """Tests for relay-generated error messages."""

    def test_connection_error_shape(self):
        event = ErrorEvent.connection_error("Failed to connect to OpenAI API", OSError("refused"))
        assert json.loads(event.to_payload()) == {
            "type": "error",
            "error": {
                "type": "connection_error",
                "message": "Failed to connect to OpenAI API",
                "details": "refused",
            },
        }

    def test_details_fall_back_to_exception_name(self):
        event = ErrorEvent.connection_error("Failed to connect to OpenAI API", TimeoutError())
        assert event.error.details == "TimeoutError"
