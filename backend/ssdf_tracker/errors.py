"""Domain errors raised by the assessment core and their HTTP mapping."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class TrackerError(Exception):
    """Base exception for the assessment core."""

    def __init__(self, code: str, message: str, details: Any = None, status_code: int = 500):
        self.code = code
        self.message = message
        self.details = details
        self.status_code = status_code
        super().__init__(message)


class ValidationError(TrackerError):
    """Malformed or out-of-range input."""

    def __init__(self, message: str, details: Any = None):
        super().__init__("VALIDATION_ERROR", message, details, status_code=400)


class PermissionDenied(TrackerError):
    """Role or editing gate rejected the action.

    ``failed_event`` holds the audit payload for the rejected attempt; the
    mutation boundary records it with ``success=False`` after rolling back.
    """

    def __init__(self, message: str = "Not allowed", failed_event: dict[str, Any] | None = None):
        super().__init__("PERMISSION_DENIED", message, status_code=403)
        self.failed_event = failed_event


class ConflictError(TrackerError):
    """Illegal state transition."""

    def __init__(self, message: str, *, expected: Any = None, actual: Any = None):
        details = None
        if expected is not None or actual is not None:
            details = {"expected": _plain(expected), "actual": _plain(actual)}
        super().__init__("CONFLICT", message, details, status_code=409)
        self.expected = expected
        self.actual = actual


class NotFoundError(TrackerError):
    """Referenced entity does not exist or is soft-deleted."""

    def __init__(self, resource: str, resource_id: Any):
        super().__init__(
            "NOT_FOUND",
            f"{resource} '{resource_id}' not found",
            status_code=404,
        )
        self.resource = resource
        self.resource_id = resource_id


def _plain(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return getattr(value, "value", value)


def register_exception_handlers(app: FastAPI) -> None:
    """Register the TrackerError handler on the FastAPI app."""

    @app.exception_handler(TrackerError)
    async def tracker_error_handler(request: Request, exc: TrackerError):
        if isinstance(exc, PermissionDenied):
            logger.warning(
                "Access denied on %s %s: %s", request.method, request.url.path, exc.message,
            )
        body: dict[str, Any] = {"code": exc.code, "message": exc.message}
        if exc.details is not None:
            body["details"] = exc.details
        return JSONResponse(status_code=exc.status_code, content={"error": body})
