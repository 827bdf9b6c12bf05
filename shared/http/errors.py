"""Problem details payloads and exception handlers for the census API."""

from __future__ import annotations

from http import HTTPStatus
from typing import Any, Mapping, cast

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from shared.observability.logger import get_logger

__all__ = [
    "PROBLEM_TYPE_BASE",
    "ProblemDetails",
    "ProblemDetailsException",
    "problem_type",
    "register_exception_handlers",
]

logger = get_logger(__name__)

PROBLEM_TYPE_BASE = "https://wardcensus.app/problems/"

_RESERVED_FIELDS = frozenset({"type", "title", "status", "detail", "instance"})


def problem_type(slug: str) -> str:
    """Return the problem type URI for ``slug``."""

    return f"{PROBLEM_TYPE_BASE}{slug}"


class ProblemDetails(BaseModel):
    """RFC 7807 problem details body."""

    type: str = Field(default="about:blank", description="URI identifying the problem type")
    title: str = Field(default="An error occurred", description="Short summary of the problem")
    status: int = Field(default=status.HTTP_500_INTERNAL_SERVER_ERROR)
    detail: str | None = Field(default=None, description="Occurrence-specific explanation")
    instance: str | None = Field(default=None, description="URI of the failing request")
    errors: list[Any] | None = Field(default=None, description="Field-level validation errors")

    model_config = ConfigDict(extra="allow")


class ProblemDetailsException(RuntimeError):
    """Base class for errors that render as problem details.

    Subclasses set ``default_status_code``, ``default_title`` and
    ``default_type``; ``extensions`` become extra members of the payload.
    """

    default_status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_title = "Census Service Error"
    default_type = "about:blank"

    def __init__(
        self,
        detail: str | None = None,
        *,
        status_code: int | None = None,
        title: str | None = None,
        type_uri: str | None = None,
        instance: str | None = None,
        extensions: Mapping[str, Any] | None = None,
    ) -> None:
        message = detail or title or self.default_title
        super().__init__(message)
        self.detail = message
        self.status_code = status_code or self.default_status_code
        self.title = title or self.default_title
        self.problem_type = type_uri or self.default_type
        self.instance = instance
        self.extensions: dict[str, Any] = dict(extensions or {})

    def to_problem_details(self, *, instance: str | None = None) -> ProblemDetails:
        """Return the :class:`ProblemDetails` body for this error."""

        return ProblemDetails(
            type=self.problem_type,
            title=self.title,
            status=self.status_code,
            detail=self.detail,
            instance=instance or self.instance,
            **self.extensions,
        )


def _render(problem: ProblemDetails) -> JSONResponse:
    body = problem.model_dump(mode="json", exclude_none=True)
    return JSONResponse(body, status_code=body.get("status", problem.status))


def _title_for(status_code: int) -> str:
    try:
        return HTTPStatus(status_code).phrase
    except ValueError:  # pragma: no cover - non-standard status code
        return "HTTP Error"


def _split_detail(detail: Any) -> tuple[str | None, dict[str, Any]]:
    if isinstance(detail, Mapping):
        message = detail.get("detail") or detail.get("message")
        extras = {key: value for key, value in detail.items() if key not in _RESERVED_FIELDS}
        return (str(message) if message is not None else None), extras
    if isinstance(detail, list):
        return None, {"errors": detail}
    if detail is None:
        return None, {}
    return str(detail), {}


def _handle_http_exception(request: Request, exc: Exception) -> JSONResponse:
    http_error = cast(StarletteHTTPException, exc)
    detail, extras = _split_detail(http_error.detail)
    return _render(
        ProblemDetails(
            title=_title_for(http_error.status_code),
            status=http_error.status_code,
            detail=detail,
            instance=str(request.url),
            **extras,
        )
    )


def _handle_validation_error(request: Request, exc: Exception) -> JSONResponse:
    validation_error = cast(RequestValidationError, exc)
    return _render(
        ProblemDetails(
            type=problem_type("request-validation"),
            title="Request Validation Failed",
            status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="One or more request parameters failed validation.",
            instance=str(request.url),
            errors=validation_error.errors(),
        )
    )


def _handle_problem(request: Request, exc: Exception) -> JSONResponse:
    problem = cast(ProblemDetailsException, exc)
    if problem.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.warning(
            "problem_response",
            problem_type=problem.problem_type,
            status_code=problem.status_code,
            path=request.url.path,
        )
    return _render(problem.to_problem_details(instance=str(request.url)))


def _handle_unexpected(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_exception", error=str(exc), path=request.url.path)
    return _render(
        ProblemDetails(
            type=problem_type("internal-server-error"),
            title="Internal Server Error",
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="An unexpected error occurred while processing the request.",
            instance=str(request.url),
        )
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Install the problem details handlers on ``app``."""

    app.add_exception_handler(ProblemDetailsException, _handle_problem)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(RequestValidationError, _handle_validation_error)
    app.add_exception_handler(Exception, _handle_unexpected)
