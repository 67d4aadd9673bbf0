"""
Frinder Ledger — Error hierarchy.

Every failure a caller must react to is a ``LedgerError`` subclass carrying a
stable ``code`` and an HTTP status.  Best-effort side effects never raise;
they return a soft :class:`app.utils.outcome.Outcome` instead.
"""

from __future__ import annotations

from typing import Any


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code: str = "LEDGER_ERROR"
    http_status: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> dict:
        """Convert to the standard REST error envelope."""
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                **({"details": self.details} if self.details else {}),
            }
        }


class RateLimitedError(LedgerError):
    """Admission rejected by the rate limiter."""

    code = "RATE_LIMITED"
    http_status = 429

    def __init__(self, action: str, reset_in_ms: int) -> None:
        seconds = max(1, -(-reset_in_ms // 1000))
        minutes = -(-reset_in_ms // 60000)
        wait = f"{minutes} minutes" if minutes > 1 else f"{seconds} seconds"
        super().__init__(
            f"Rate limit exceeded. Please try again in {wait}.",
            action=action,
            reset_in_ms=reset_in_ms,
        )
        self.action = action
        self.reset_in_ms = reset_in_ms


class ValidationError(LedgerError):
    """Input rejected before any write."""

    code = "VALIDATION_ERROR"
    http_status = 400


class EmptyMessageError(ValidationError):
    """Neither text nor image survived sanitisation."""

    code = "EMPTY_MESSAGE"

    def __init__(self) -> None:
        super().__init__("Message must contain text or an image.")


class UnauthorizedError(LedgerError):
    """Caller is not allowed to perform this mutation."""

    code = "UNAUTHORIZED"
    http_status = 403


class NotFoundError(LedgerError):
    """Referenced match, message or user does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, resource_type: str, resource_id: str) -> None:
        super().__init__(
            f"{resource_type} '{resource_id}' not found",
            resource_type=resource_type,
            resource_id=resource_id,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class AuthenticationError(LedgerError):
    """Caller identity or credentials are missing or malformed."""

    code = "UNAUTHENTICATED"
    http_status = 401


class ConflictError(LedgerError):
    """The resource already exists."""

    code = "CONFLICT"
    http_status = 409
