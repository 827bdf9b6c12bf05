"""Domain errors raised by the census core."""

from __future__ import annotations

from typing import Any, Iterable, Sequence

from fastapi import status

from shared.http.errors import ProblemDetailsException, problem_type
from shared.models.census import RecordOrigin


class FetchError(ProblemDetailsException):
    """Raised when one or more source queries fail.

    ``sources`` names every failing source (``admissions``,
    ``consultations``, ``appointments``, ``daily reports``) so each can be
    reported on its own.
    """

    default_status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_title = "Fetch Failed"
    default_type = problem_type("fetch-failed")

    def __init__(
        self,
        sources: str | Sequence[str],
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.sources: tuple[str, ...] = (sources,) if isinstance(sources, str) else tuple(sources)
        self.source = ", ".join(self.sources)
        self.cause = cause
        detail = f"Failed to fetch {self.source}."
        if cause is not None:
            detail = f"Failed to fetch {self.source}: {cause}"
        super().__init__(detail, extensions={"sources": list(self.sources)})


class DischargeValidationError(ProblemDetailsException):
    """Raised before any store call when a discharge request is incomplete."""

    default_status_code = status.HTTP_400_BAD_REQUEST
    default_title = "Discharge Validation Failed"
    default_type = problem_type("discharge-validation")

    def __init__(self, detail: str, *, fields: Iterable[str] = ()) -> None:
        self.fields = tuple(fields)
        extensions: dict[str, Any] = {}
        if self.fields:
            extensions["fields"] = list(self.fields)
        super().__init__(detail, extensions=extensions)


class DischargeError(ProblemDetailsException):
    """Raised when the store rejects or fails a discharge update."""

    default_status_code = status.HTTP_502_BAD_GATEWAY
    default_title = "Discharge Failed"
    default_type = problem_type("discharge-failed")

    def __init__(
        self,
        origin: RecordOrigin,
        mrn: str,
        *,
        cause: BaseException | None = None,
    ) -> None:
        self.origin = origin
        self.mrn = mrn
        self.cause = cause
        detail = f"Failed to discharge {origin.value} '{mrn}'."
        if cause is not None:
            detail = f"{detail} {cause}"
        super().__init__(detail, extensions={"origin": origin.value, "mrn": mrn})


class DischargeInProgressError(ProblemDetailsException):
    """Raised when a discharge for the same record is already outstanding."""

    default_status_code = status.HTTP_409_CONFLICT
    default_title = "Discharge In Progress"
    default_type = problem_type("discharge-in-progress")

    def __init__(self, origin: RecordOrigin, mrn: str) -> None:
        self.origin = origin
        self.mrn = mrn
        super().__init__(
            f"A discharge for {origin.value} '{mrn}' is already being processed.",
            extensions={"origin": origin.value, "mrn": mrn},
        )


class RecordNotFoundError(ProblemDetailsException):
    """Raised when no discharge candidate matches the requested key."""

    default_status_code = status.HTTP_404_NOT_FOUND
    default_title = "Record Not Found"
    default_type = problem_type("record-not-found")

    def __init__(self, origin: RecordOrigin, mrn: str) -> None:
        self.origin = origin
        self.mrn = mrn
        super().__init__(
            f"No active {origin.value} with MRN '{mrn}' was found.",
            extensions={"origin": origin.value, "mrn": mrn},
        )


class UnificationInvariantViolation(ProblemDetailsException):
    """Raised when a store row lacks a field the unified view depends on."""

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Unification Invariant Violated"
    default_type = problem_type("unification-invariant")

    def __init__(self, table: str, fields: Iterable[str], *, mrn: str | None = None) -> None:
        self.table = table
        self.fields = tuple(fields)
        self.mrn = mrn
        subject = f"row '{mrn}'" if mrn else "a row"
        super().__init__(
            f"{table} {subject} is missing or has invalid fields: {', '.join(self.fields)}",
            extensions={"table": table, "fields": list(self.fields)},
        )


__all__ = [
    "DischargeError",
    "DischargeInProgressError",
    "DischargeValidationError",
    "FetchError",
    "RecordNotFoundError",
    "UnificationInvariantViolation",
]
