"""
Fixed-delay bounded retry for one sync phase.

A phase (upload or download) is a single backend call retried up to
retry_count times with the same pause between attempts. There is no
backoff growth and no pause after the last attempt.

Retry decisions:
    - BackendTransportError (including timeouts): retried
    - Result with success=True: phase succeeds
    - Result with success=False and retryable=True: retried
    - Result with success=False and retryable=False: phase ends at once
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from ..backend import BackendTransportError, PullResult, PushResult

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", PushResult, PullResult)


@dataclass
class RetryPolicy:
    """Bounded retry with a fixed pause.

    Attributes:
        retry_count: Total attempts per phase (>= 1)
        retry_delay_seconds: Pause between attempts (> 0)
    """

    retry_count: int = 3
    retry_delay_seconds: float = 5.0

    def __post_init__(self) -> None:
        if self.retry_count < 1:
            raise ValueError("retry_count must be at least 1")
        if self.retry_delay_seconds <= 0:
            raise ValueError("retry_delay_seconds must be positive")


@dataclass
class PhaseOutcome(Generic[ResultT]):
    """Result of a retried phase.

    Attributes:
        result: Last result returned by the backend, None if every
            attempt raised
        attempts: Number of calls made
        error: Message of the last failure, if the phase failed
    """

    result: ResultT | None
    attempts: int
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.result is not None and self.result.success


async def run_with_retry(
    phase: str,
    call: Callable[[], Awaitable[ResultT]],
    policy: RetryPolicy,
    tenant_id: str | None = None,
) -> PhaseOutcome[ResultT]:
    """Run a backend call under the retry policy.

    Args:
        phase: Phase name for logging ("upload", "download")
        call: Zero-argument coroutine factory performing one attempt
        policy: Retry policy
        tenant_id: Tenant for log context

    Returns:
        PhaseOutcome; transport errors never escape
    """
    result: ResultT | None = None
    error: str | None = None

    for attempt in range(1, policy.retry_count + 1):
        try:
            result = await call()
        except BackendTransportError as e:
            result = None
            error = str(e)
            logger.warning(
                f"{phase} attempt failed: {e}",
                extra={"tenant_id": tenant_id, "phase": phase, "attempt": attempt},
            )
        else:
            if result.success:
                return PhaseOutcome(result=result, attempts=attempt)
            error = result.message or f"{phase} refused by backend"
            if not result.retryable:
                logger.warning(
                    f"{phase} rejected by backend: {error}",
                    extra={"tenant_id": tenant_id, "phase": phase, "attempt": attempt},
                )
                return PhaseOutcome(result=result, attempts=attempt, error=error)
            logger.warning(
                f"{phase} attempt unsuccessful: {error}",
                extra={"tenant_id": tenant_id, "phase": phase, "attempt": attempt},
            )

        if attempt < policy.retry_count:
            await asyncio.sleep(policy.retry_delay_seconds)

    logger.error(
        f"{phase} failed after {policy.retry_count} attempts",
        extra={"tenant_id": tenant_id, "phase": phase, "error": error},
    )
    return PhaseOutcome(result=result, attempts=policy.retry_count, error=error)
