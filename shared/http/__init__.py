"""HTTP helpers shared by the census services."""

from .errors import (
    PROBLEM_TYPE_BASE,
    ProblemDetails,
    ProblemDetailsException,
    problem_type,
    register_exception_handlers,
)

__all__ = [
    "PROBLEM_TYPE_BASE",
    "ProblemDetails",
    "ProblemDetailsException",
    "problem_type",
    "register_exception_handlers",
]
