"""
Pydantic models for the realtime event envelope.

The relay never validates traffic; these models are used to label
messages in logs and to build the relay's own error notifications.
"""
from pydantic import BaseModel, ConfigDict, ValidationError
from typing import Any, Literal, Optional, Union

AUDIO_APPEND = "input_audio_buffer.append"
ERROR = "error"


class EventEnvelope(BaseModel):
    """
    Minimal view of a realtime event.

    Example:
    {
        "type": "input_audio_buffer.append",
        "audio": "QUJD"
    }
    """
    model_config = ConfigDict(extra="allow")

    type: Any = None
    audio: Any = None
    error: Any = None

    @property
    def is_error(self) -> bool:
        return self.type == ERROR

    @property
    def audio_length(self) -> Optional[int]:
        if self.type == AUDIO_APPEND and isinstance(self.audio, str):
            return len(self.audio)
        return None

    def error_summary(self) -> str:
        """Human-readable `type: message` for an error event."""
        if isinstance(self.error, dict):
            kind = self.error.get("type") or "unknown"
            message = self.error.get("message") or ""
            return f"{kind}: {message}" if message else kind
        return str(self.error)


class ErrorDetail(BaseModel):
    """Nested error object of a synthetic error message."""
    type: str = "connection_error"
    message: str
    details: Optional[str] = None


class ErrorEvent(BaseModel):
    """
    Error notification generated by the relay itself.

    Example:
    {
        "type": "error",
        "error": {
            "type": "connection_error",
            "message": "Failed to connect to OpenAI API",
            "details": "timed out during opening handshake"
        }
    }
    """
    type: Literal["error"] = "error"
    error: ErrorDetail

    @classmethod
    def connection_error(cls, message: str, exc: BaseException) -> "ErrorEvent":
        return cls(error=ErrorDetail(message=message, details=str(exc) or type(exc).__name__))

    def to_payload(self) -> str:
        return self.model_dump_json()


def describe_message(data: Union[str, bytes]) -> Optional[EventEnvelope]:
    """
    Best-effort decode of a payload for logging.

    Returns None for anything that is not a JSON object. Never raises.
    """
    try:
        return EventEnvelope.model_validate_json(data)
    except (ValidationError, ValueError, TypeError):
        return None
