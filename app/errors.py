"""
Domain errors for the render service.

Every error carries a stable machine-readable ``reason`` and a human message.
The API layer renders them as ``{"error": reason, "message": ..., **details}``
with the class's status code; stack traces are only ever logged.
"""

from typing import Any, Optional


class RenderServiceError(Exception):
    """Base class for all errors raised by the render service."""

    status_code: int = 500
    reason: str = "internal_error"

    def __init__(self, message: str, reason: Optional[str] = None, **details: Any):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.reason, "message": self.message, **self.details}


class InvalidRequestError(RenderServiceError):
    """Malformed input: bad shape, size or type. Never retried."""

    status_code = 400
    reason = "invalid_request"


class QuotaExceededError(RenderServiceError):
    """The operation would push the account past its storage ceiling."""

    status_code = 400
    reason = "exceeds_account_quota"


class AuthError(RenderServiceError):
    """Missing or invalid credentials. Uniform for every auth failure."""

    status_code = 401
    reason = "unauthorized"

    def __init__(self, message: str = "Unauthorized", **details: Any):
        super().__init__(message, **details)


class JobNotFoundError(RenderServiceError):
    status_code = 404
    reason = "not_found"


class ObjectNotFoundError(RenderServiceError):
    status_code = 404
    reason = "object_not_found"


class ObjectExistsError(RenderServiceError):
    """Uploads never overwrite an existing object."""

    status_code = 409
    reason = "object_exists"


class InvalidTransitionError(RenderServiceError):
    """A write was attempted against a job whose status forbids it."""

    status_code = 409
    reason = "invalid_transition"


class TransientUpstreamError(RenderServiceError):
    """Object storage, queue or network failure. Safe to retry."""

    status_code = 503
    reason = "upstream_unavailable"


class AllSubmissionsFailedError(RenderServiceError):
    """Every member of a batch submission failed to start."""

    status_code = 502
    reason = "all_submissions_failed"

    def __init__(self, failures: dict[int, str]):
        super().__init__("All batch jobs failed to start", failures=failures)
        self.failures = failures
