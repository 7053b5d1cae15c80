"""Error taxonomy shared by the session core, the pipeline and the web layer."""

from __future__ import annotations

from typing import Any, Dict, Optional


class RecorderError(RuntimeError):
    """Base class for failures reported to callers as structured responses."""

    error_code = "internal_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.error_code)
        self.message = message or self.error_code
        self.details: Dict[str, Any] = {
            key: value for key, value in details.items() if value is not None
        }

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "ok": False,
            "error": self.error_code,
            "message": self.message,
            "retryable": self.retryable,
        }
        payload.update(self.details)
        return payload


class AuthError(RecorderError):
    """Raised when a token is missing or not on the allow-list."""

    error_code = "invalid_token"
    status_code = 401


class ValidationError(RecorderError):
    """Raised for malformed requests, wrong media types and oversized payloads."""

    error_code = "validation_error"
    status_code = 400

    def __init__(self, message: str = "", *, status_code: Optional[int] = None, **details: Any) -> None:
        super().__init__(message, **details)
        if status_code is not None:
            self.status_code = status_code


class SequentialViolation(RecorderError):
    """Raised when an upload skips an earlier question."""

    error_code = "sequential_violation"
    status_code = 409

    def __init__(self, missing: int, requested: int) -> None:
        super().__init__(
            f"Q{requested} rejected because Q{missing} has not been uploaded yet. "
            "Upload the answers in order.",
            missing=missing,
        )
        self.missing = missing
        self.requested = requested


class NotFoundError(RecorderError):
    """Raised when a referenced session does not exist."""

    error_code = "not_found"
    status_code = 404


class CorruptStateError(RecorderError):
    """Raised when a session document cannot be parsed."""

    error_code = "corrupt_state"


class ExternalProcessError(RecorderError):
    """Raised when an external tool fails, times out or produces unusable output."""

    error_code = "external_process_error"
    status_code = 502
    retryable = True

    def __init__(self, message: str = "", *, stage: Optional[str] = None, **details: Any) -> None:
        super().__init__(message, stage=stage, **details)
        self.stage = stage


__all__ = [
    "AuthError",
    "CorruptStateError",
    "ExternalProcessError",
    "NotFoundError",
    "RecorderError",
    "SequentialViolation",
    "ValidationError",
]
