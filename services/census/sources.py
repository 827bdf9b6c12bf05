"""Concurrent source fetching that observes every outcome before returning."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable

from shared.observability.logger import get_logger

from .errors import FetchError

logger = get_logger(__name__)


async def gather_sources(**queries: Awaitable[Any]) -> dict[str, Any]:
    """Await the named ``queries`` concurrently.

    Every query runs to completion. If any of them failed a single
    :class:`FetchError` naming each failing source is raised, so callers never
    continue with a partial set.
    """

    names = list(queries)
    results = await asyncio.gather(*queries.values(), return_exceptions=True)

    failures: dict[str, BaseException] = {}
    for name, result in zip(names, results):
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failures[name] = result

    if failures:
        for name, error in failures.items():
            logger.bind(source=name).warning("source_fetch_failed", error=str(error))
        first = next(iter(failures.values()))
        raise FetchError(list(failures), cause=first) from first

    return dict(zip(names, results))


__all__ = ["gather_sources"]
