"""
Engine error kinds.

Every error the allocation engine raises carries a stable `kind`, a human
readable message and a flat `context` dict, so the HTTP layer (or any other
caller) can render a structured payload for a UI or operator to act on.
"""

from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.core.logging import get_logger

logger = get_logger(__name__)


class AllocationError(Exception):
    kind = "allocation_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_payload(self) -> dict:
        return {
            "error": {
                "kind": self.kind,
                "message": self.message,
                "context": self.context,
            }
        }


class ValidationError(AllocationError):
    """Non-positive party size or turn time, malformed window or table set."""

    kind = "validation_error"
    status_code = 422


class NotFoundError(AllocationError):
    kind = "not_found"
    status_code = 404


class ConflictError(AllocationError):
    """A table is already committed to an overlapping active booking."""

    kind = "conflict"
    status_code = 409


class NoAvailabilityError(AllocationError):
    """Nothing fits the request; `context["alternatives"]` holds suggestions."""

    kind = "no_availability"
    status_code = 409

    def __init__(self, message: str, alternatives: dict | None = None, **context: Any):
        super().__init__(message, alternatives=alternatives, **context)
        self.alternatives = alternatives


class InvalidTransitionError(AllocationError):
    kind = "invalid_transition"
    status_code = 409


class ConcurrencyConflictError(AllocationError):
    """Lost an optimistic-locking race for a booking or table."""

    kind = "concurrency_conflict"
    status_code = 409


class RequestExpiredError(AllocationError):
    kind = "request_expired"
    status_code = 410


async def allocation_error_handler(request: Request, exc: AllocationError) -> JSONResponse:
    logger.warning(
        "allocation_error",
        kind=exc.kind,
        message=exc.message,
        status_code=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AllocationError, allocation_error_handler)
