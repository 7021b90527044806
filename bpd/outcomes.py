"""
bpd.outcomes — Terminal pipeline outcomes and their HTTP rendering.

Every request ends in exactly one Outcome:

    Success(payload)            → 200  payload
    Forbidden()                 → 403  problem+json, no detail
    NotFound(detail)            → 404  problem+json
    ValidationFailed(title, r)  → 400  problem+json, detail = field report
    InternalFailed(message)     → 500  problem+json, fixed message only

classify() maps a pipeline error to its Outcome; to_response() is the
single place an Outcome becomes an HTTP response.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from fastapi.responses import JSONResponse

from bpd.constants import CITIZEN_ID_HEADER, INTERNAL_ERROR_DETAIL
from bpd.errors import (
    AuditError,
    ForbiddenError,
    InvalidCitizenIdError,
    NotFoundError,
    ProjectionError,
    QueryError,
)

PROBLEM_JSON = "application/problem+json"


@dataclass(frozen=True, slots=True)
class Success:
    payload: dict[str, Any]


@dataclass(frozen=True, slots=True)
class Forbidden:
    pass


@dataclass(frozen=True, slots=True)
class NotFound:
    detail: str = "Citizen not found"


@dataclass(frozen=True, slots=True)
class ValidationFailed:
    title: str
    report: str


@dataclass(frozen=True, slots=True)
class InternalFailed:
    message: str = INTERNAL_ERROR_DETAIL


Outcome = Union[Success, Forbidden, NotFound, ValidationFailed, InternalFailed]


def classify(exc: BaseException) -> Outcome:
    """Map a pipeline error to its Outcome. Unknown errors are InternalFailed."""
    if isinstance(exc, ForbiddenError):
        return Forbidden()
    if isinstance(exc, NotFoundError):
        return NotFound(exc.detail)
    if isinstance(exc, InvalidCitizenIdError):
        return ValidationFailed(f"Invalid {CITIZEN_ID_HEADER}", exc.report)
    if isinstance(exc, ProjectionError):
        return ValidationFailed(exc.title, exc.report)
    if isinstance(exc, (QueryError, AuditError)):
        return InternalFailed(exc.message)
    return InternalFailed()


def _problem(status: int, title: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status,
        content={"title": title, "status": status, "detail": detail},
        media_type=PROBLEM_JSON,
    )


def to_response(outcome: Outcome) -> JSONResponse:
    if isinstance(outcome, Success):
        return JSONResponse(status_code=200, content=outcome.payload)
    if isinstance(outcome, Forbidden):
        return _problem(
            403,
            "You are not allowed here",
            "You do not have enough permission to complete the operation you requested",
        )
    if isinstance(outcome, NotFound):
        return _problem(404, "Not found", outcome.detail)
    if isinstance(outcome, ValidationFailed):
        return _problem(400, outcome.title, outcome.report)
    if isinstance(outcome, InternalFailed):
        return _problem(500, "Internal server error", outcome.message)
    raise TypeError(f"Unhandled outcome: {type(outcome).__name__}")
