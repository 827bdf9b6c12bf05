"""Retry helpers for idempotent record store reads.

Only read queries go through these helpers. Updates are issued exactly once so
a discharge can never be applied twice by a retry loop.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

T = TypeVar("T")


@dataclass(frozen=True)
class ReadRetryPolicy:
    """Backoff configuration applied to store reads."""

    attempts: int = 3
    initial_delay: float = 0.1
    max_delay: float = 1.0
    backoff_multiplier: float = 2.0
    retry_exceptions: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("ReadRetryPolicy.attempts must be at least 1")


async def read_with_retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    policy: ReadRetryPolicy | None = None,
    **kwargs: Any,
) -> T:
    """Await ``func`` and retry on the policy's exception types."""

    resolved_policy = policy or ReadRetryPolicy()
    retrying = AsyncRetrying(
        retry=retry_if_exception_type(resolved_policy.retry_exceptions),
        stop=stop_after_attempt(resolved_policy.attempts),
        wait=wait_exponential(
            multiplier=resolved_policy.initial_delay,
            min=resolved_policy.initial_delay,
            max=resolved_policy.max_delay,
            exp_base=resolved_policy.backoff_multiplier,
        ),
        reraise=True,
    )

    async for attempt in retrying:
        with attempt:
            return await func(*args, **kwargs)

    raise RuntimeError("Read retry loop terminated without executing the query.")


__all__ = ["ReadRetryPolicy", "read_with_retry"]
