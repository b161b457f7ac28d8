"""
Error taxonomy for the TravelTales API.

Every module raises one of these; the API layer renders them as
``{"error": reason, "message": text, "status": code}``.
"""

from datetime import datetime
from typing import Dict, Optional


class TravelTalesError(Exception):
    """Base exception carrying a stable reason code and an HTTP status."""

    status_code = 500
    reason = "internal_error"

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if reason:
            self.reason = reason

    def to_dict(self) -> dict:
        return {"error": self.reason, "message": self.message, "status": self.status_code}


class Unauthorized(TravelTalesError):
    """Missing, invalid or expired session or API key."""

    status_code = 401
    reason = "unauthorized"


class Forbidden(TravelTalesError):
    """CSRF mismatch, insufficient role or unverified account."""

    status_code = 403
    reason = "forbidden"


class NotFound(TravelTalesError):
    status_code = 404
    reason = "not_found"


class Conflict(TravelTalesError):
    status_code = 409
    reason = "conflict"


class ValidationFailed(TravelTalesError):
    status_code = 400
    reason = "validation_error"


class Expired(TravelTalesError):
    status_code = 400
    reason = "token_expired"


class Mismatch(TravelTalesError):
    """A token was presented for the wrong account or purpose."""

    status_code = 400
    reason = "token_mismatch"


class TooManyRequests(TravelTalesError):
    """Rate limit or key-generation cooldown hit."""

    status_code = 429
    reason = "too_many_requests"

    def __init__(
        self,
        message: str,
        retry_after: int,
        reset_at: Optional[datetime] = None,
        reason: Optional[str] = None,
        limit: Optional[int] = None,
    ):
        super().__init__(message, reason)
        self.retry_after = max(int(retry_after), 1)
        self.reset_at = reset_at
        self.limit = limit

    def headers(self) -> Dict[str, str]:
        headers = {"Retry-After": str(self.retry_after)}
        if self.limit is not None:
            headers["RateLimit-Limit"] = str(self.limit)
            headers["RateLimit-Remaining"] = "0"
        if self.reset_at is not None:
            headers["RateLimit-Reset"] = str(int(self.reset_at.timestamp()))
        return headers

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retry_after"] = self.retry_after
        if self.reset_at is not None:
            body["reset_at"] = self.reset_at.isoformat()
        return body


class StoreContention(TravelTalesError):
    """An optimistic transaction kept losing the race and gave up."""

    status_code = 503
    reason = "store_contention"


class UpstreamUnavailable(TravelTalesError):
    """An external data source failed after retries."""

    status_code = 502
    reason = "upstream_unavailable"
