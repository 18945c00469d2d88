"""Utility helpers for standardized error responses."""
from typing import Any

from fastapi import HTTPException, status


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class TranslationError(HTTPException):
    """The prompt could not be turned into a structured query."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response("TRANSLATION_FAILED", message),
        )


class QueryValidationError(HTTPException):
    """The structured query was refused by the sandbox validator."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None) -> None:
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=error_response(
                "QUERY_VALIDATION_FAILED",
                "Query validation failed.",
                {"errors": self.errors, "warnings": self.warnings},
            ),
        )


class RateLimitError(HTTPException):
    """The agent exhausted its query quota for the current window."""

    def __init__(self, message: str, *, used: int, limit: int) -> None:
        self.message = message
        self.used = used
        self.limit = limit
        super().__init__(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=error_response(
                "RATE_LIMIT_EXCEEDED",
                message,
                {"used": used, "limit": limit, "remaining": max(limit - used, 0)},
            ),
        )


class ExecutionError(HTTPException):
    """Opaque failure raised when the data store rejected a query."""

    def __init__(self, message: str, *, audit_log_id: str | None = None) -> None:
        self.message = message
        self.audit_log_id = audit_log_id
        details = {"audit_log_id": audit_log_id} if audit_log_id else None
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=error_response("EXECUTION_FAILED", message, details),
        )


__all__ = [
    "error_response",
    "TranslationError",
    "QueryValidationError",
    "RateLimitError",
    "ExecutionError",
]
