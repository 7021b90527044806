"""
bpd.errors — Domain error taxonomy.

Every pipeline stage converts its own failure mode into exactly one of
these before returning. Raw store, crypto, Redis or Azure exceptions
never cross a stage boundary.
"""

from __future__ import annotations


class BPDError(Exception):
    """Base class for all pipeline errors."""


class InvalidCitizenIdError(BPDError):
    """The x-citizen-id header is missing or is neither a fiscal code nor a support token."""

    def __init__(self, report: str) -> None:
        self.report = report
        super().__init__(report)


class ForbiddenError(BPDError):
    """Identity or delegation check failed. Carries no detail."""

    def __init__(self) -> None:
        super().__init__("Forbidden")


class NotFoundError(BPDError):
    """The citizen has no rows in the store."""

    def __init__(self, detail: str = "Citizen not found") -> None:
        self.detail = detail
        super().__init__(detail)


class ProjectionError(BPDError):
    """Rows could not be mapped onto the external API schema."""

    def __init__(self, title: str, report: str) -> None:
        self.title = title
        self.report = report
        super().__init__(f"{title}: {report}")


class QueryError(BPDError):
    """A store lookup failed. `message` is redacted and safe to send outward."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class AuditError(BPDError):
    """The audit log entry could not be written."""

    def __init__(self, message: str = "Audit log write error") -> None:
        self.message = message
        super().__init__(message)
