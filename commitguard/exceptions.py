"""Error taxonomy for the analysis pipeline.

Every error raised inside CommitGuard derives from ``CommitGuardError`` and
carries a machine-readable ``code`` plus the HTTP status the ingress layer
should answer with. Pipeline stages catch these per message; the HTTP
boundary renders them as structured JSON.
"""

from typing import Any


class CommitGuardError(Exception):
    """Base class for all pipeline errors."""

    code: str = "PROCESSING_ERROR"
    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error for an HTTP response body."""
        body: dict[str, Any] = {
            "status": "error",
            "message": self.message,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class AuthenticationError(CommitGuardError):
    """Bad or missing webhook signature/token while authentication is enforced."""

    code = "INVALID_SIGNATURE"
    status_code = 401


class ValidationError(CommitGuardError):
    """Malformed payload or a reference that cannot be resolved."""

    code = "INVALID_PAYLOAD"
    status_code = 400


class TransientInfraError(CommitGuardError):
    """Infrastructure hiccup (bus unavailable, clone timeout). Safe to replay."""

    code = "TRANSIENT_FAILURE"
    status_code = 503
    retryable = True


class PermanentError(CommitGuardError):
    """Unsupported platform or event. Logged, no further action."""

    code = "UNSUPPORTED"
    status_code = 422


class StateTransitionError(PermanentError):
    """An AnalysisJob or commit was asked to move backwards in its lifecycle."""

    code = "INVALID_TRANSITION"
    status_code = 409
