"""
Retrying Invoker — One retry/backoff policy for every outbound call.

Each call site supplies an async ``attempt_fn`` that performs a single
remote call and classifies the response itself:

- ``Success(value)`` — return ``value`` immediately
- ``FatalFailure(reason)`` — stop and raise ``FatalCallError``
- ``RetryableFailure(reason)`` — wait, then try again

Wait before attempt ``n + 1``::

    min(backoff_max, backoff_min * 2 ** (n - 1)) + uniform(0, jitter_bound)

The invoker never decides what is retryable; it only enforces the attempt
budget, the per-attempt timeout and caller cancellation.
"""
import random
import asyncio
import logging
from dataclasses import dataclass
from collections.abc import Awaitable, Callable
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, model_validator

from .exceptions import CancelledError, ExhaustedRetriesError, FatalCallError

logger = logging.getLogger("digest.retry")


class RetryPolicy(BaseModel):
    """Immutable retry configuration (all durations in seconds)."""

    max_attempts: int = Field(default=5, ge=1)
    backoff_min: float = Field(default=1.5, ge=0)
    backoff_max: float = Field(default=6.0, ge=0)
    jitter_bound: float = Field(default=0.7, ge=0)
    attempt_timeout: Optional[float] = Field(default=30.0, gt=0)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def validate_backoff_range(self) -> "RetryPolicy":
        """Ensure backoff_max is not below backoff_min."""
        if self.backoff_max < self.backoff_min:
            raise ValueError(
                f"backoff_max ({self.backoff_max}) must be >= "
                f"backoff_min ({self.backoff_min})"
            )
        return self

    def backoff(self, attempt: int) -> float:
        """Return the capped exponential wait after ``attempt`` (1-based), without jitter."""
        return min(self.backoff_max, self.backoff_min * 2 ** (attempt - 1))


# ---------------------------------------------------------------------------
# Attempt outcomes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Success:
    value: Any = None


@dataclass(frozen=True)
class RetryableFailure:
    reason: str
    status: Optional[int] = None
    error: Optional[BaseException] = None


@dataclass(frozen=True)
class FatalFailure:
    reason: str
    status: Optional[int] = None
    error: Optional[BaseException] = None


Outcome = Union[Success, RetryableFailure, FatalFailure]
AttemptFn = Callable[[], Awaitable[Outcome]]


def is_retryable_status(status: int) -> bool:
    """Rate limiting and 5xx server errors are worth another attempt."""
    return status == 429 or 500 <= status <= 599


def classify_status(status: int) -> str:
    """Map an HTTP status to ``"success"``, ``"retryable"`` or ``"fatal"``."""
    if 200 <= status <= 299:
        return "success"
    if is_retryable_status(status):
        return "retryable"
    return "fatal"


# ---------------------------------------------------------------------------
# Invoker
# ---------------------------------------------------------------------------

class RetryingInvoker:
    """Runs an attempt function under a ``RetryPolicy``.

    ``sleep`` and ``rand`` are injectable so callers (and tests) can
    control time and jitter.
    """

    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rand: Callable[[float, float], float] = random.uniform,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rand = rand

    def delay_for(self, attempt: int) -> float:
        """Backoff plus jitter to wait after a failed ``attempt``."""
        jitter = self._rand(0, self.policy.jitter_bound) if self.policy.jitter_bound else 0.0
        return self.policy.backoff(attempt) + jitter

    async def _until_cancelled(
        self,
        aw: Awaitable[Any],
        cancel: Optional[asyncio.Event],
        timeout: Optional[float],
    ) -> Any:
        """Await ``aw`` bounded by ``timeout`` and aborted by ``cancel``.

        Raises:
            CancelledError: If ``cancel`` is set first.
            asyncio.TimeoutError: If ``timeout`` elapses first.
        """
        if cancel is None:
            if timeout is None:
                return await aw
            return await asyncio.wait_for(aw, timeout)

        if cancel.is_set():
            if asyncio.iscoroutine(aw):
                aw.close()
            raise CancelledError("operation cancelled before it started")
        task = asyncio.ensure_future(aw)
        waiter = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            waiter.cancel()
            if not task.done():
                task.cancel()
        if task in done:
            return task.result()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if cancel.is_set():
            raise CancelledError("operation cancelled by caller")
        raise asyncio.TimeoutError()

    async def invoke(
        self,
        attempt_fn: AttemptFn,
        cancel: Optional[asyncio.Event] = None,
        label: str = "remote call",
    ) -> Any:
        """Call ``attempt_fn`` until it succeeds, fails fatally or the budget runs out.

        Args:
            attempt_fn: Async callable performing one attempt and returning
                an outcome.
            cancel: Event that aborts an in-flight attempt or wait.
            label: Name used in logs and error messages.

        Returns:
            The ``value`` of the first ``Success``.

        Raises:
            FatalCallError: On the first ``FatalFailure``.
            ExhaustedRetriesError: When every attempt was retryable.
            CancelledError: If ``cancel`` is set during an attempt or wait.
        """
        policy = self.policy
        last: Optional[RetryableFailure] = None
        for attempt in range(1, policy.max_attempts + 1):
            try:
                outcome = await self._until_cancelled(
                    attempt_fn(), cancel, policy.attempt_timeout,
                )
            except asyncio.TimeoutError as err:
                outcome = RetryableFailure(
                    reason=f"timed out after {policy.attempt_timeout}s", error=err,
                )

            if isinstance(outcome, Success):
                if attempt > 1:
                    logger.info("%s succeeded on attempt %d", label, attempt)
                return outcome.value
            if isinstance(outcome, FatalFailure):
                logger.warning(
                    "%s failed (status=%s): %s", label, outcome.status, outcome.reason,
                )
                raise FatalCallError(
                    f"{label} failed: {outcome.reason}",
                    failure=outcome,
                    attempts=attempt,
                ) from outcome.error
            if not isinstance(outcome, RetryableFailure):
                raise TypeError(
                    f"attempt function returned {type(outcome).__name__}, "
                    "expected Success, RetryableFailure or FatalFailure"
                )

            last = outcome
            if attempt < policy.max_attempts:
                delay = self.delay_for(attempt)
                logger.info(
                    "%s attempt %d/%d failed (status=%s): %s; retrying in %.2fs",
                    label, attempt, policy.max_attempts,
                    outcome.status, outcome.reason, delay,
                )
                await self._until_cancelled(self._sleep(delay), cancel, None)

        logger.error(
            "%s gave up after %d attempt(s): %s",
            label, policy.max_attempts, last.reason,
        )
        raise ExhaustedRetriesError(
            f"{label} failed after {policy.max_attempts} attempt(s): {last.reason}",
            failure=last,
            attempts=policy.max_attempts,
        ) from last.error


async def invoke(
    attempt_fn: AttemptFn,
    policy: Optional[RetryPolicy] = None,
    cancel: Optional[asyncio.Event] = None,
) -> Any:
    """Run ``attempt_fn`` under ``policy`` with a default invoker."""
    return await RetryingInvoker(policy).invoke(attempt_fn, cancel=cancel)
