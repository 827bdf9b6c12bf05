"""ASGI middleware binding request ids and logging request latency."""

from __future__ import annotations

import time
from typing import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from .logger import generate_request_id, get_logger, request_context

__all__ = ["CorrelationIdMiddleware", "RequestTimingMiddleware"]

MAX_REQUEST_ID_LENGTH = 128

CallNext = Callable[[Request], Awaitable[Response]]


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's ``X-Request-ID`` or mint one, and echo it back."""

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Request-ID") -> None:
        super().__init__(app)
        self.header_name = header_name

    def _resolve_request_id(self, request: Request) -> str:
        supplied = (request.headers.get(self.header_name) or "").strip()
        return supplied[:MAX_REQUEST_ID_LENGTH] or generate_request_id()

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        request_id = self._resolve_request_id(request)
        request.state.request_id = request_id
        with request_context(request_id=request_id):
            response = await call_next(request)
        response.headers.setdefault(self.header_name, request_id)
        return response


class RequestTimingMiddleware(BaseHTTPMiddleware):
    """Log ``http_request_completed`` with method, route path and duration."""

    def __init__(self, app: ASGIApp, *, header_name: str = "X-Response-Time") -> None:
        super().__init__(app)
        self._header_name = header_name
        self._logger = get_logger("http")

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        start = time.perf_counter()
        log = self._logger.bind(method=request.method, path=request.url.path)
        try:
            response = await call_next(request)
        except Exception:
            log.exception(
                "http_request_failed",
                duration_ms=round((time.perf_counter() - start) * 1000.0, 3),
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000.0
        if self._header_name:
            response.headers[self._header_name] = f"{duration_ms / 1000.0:.6f}s"
        log.info(
            "http_request_completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 3),
        )
        return response
