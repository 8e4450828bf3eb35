"""Attempt, backoff and budget loop for one logical git command."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence

import structlog

from gitplumb.lib.domain import ExitOutcome
from gitplumb.lib.exec.classify import ErrorClassifier, FailureContext
from gitplumb.lib.exec.errors import (
    BudgetExceededError,
    GenericExecutionError,
    PlumbingError,
)
from gitplumb.lib.exec.retry import RetryPolicy

logger = structlog.get_logger(__name__)

# Called with the seconds left in the total budget, or None when unbounded.
AttemptFn = Callable[[float | None], Awaitable[tuple[str, ExitOutcome]]]
Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[object]]


class ExecutionOrchestrator:
    """Run attempts until one succeeds, a failure is terminal, or time runs out.

    Each attempt returns its buffered stdout and ``ExitOutcome``. Failed
    outcomes go through the classifier; only retryable failures are retried,
    and only when the next backoff still fits inside the policy's total
    budget. Each attempt is told how much of the budget remains so it can
    bound its own runtime. ``PlumbingError`` raised by an attempt propagates unchanged; any
    other exception is wrapped in ``GenericExecutionError``.
    """

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.classifier = classifier or ErrorClassifier()
        self._clock = clock
        self._sleep = sleep

    async def orchestrate(
        self,
        attempt_fn: AttemptFn,
        *,
        retry_policy: RetryPolicy | None = None,
        args: Sequence[str] = (),
        trace_id: str | None = None,
        operation: str = "GitPlumbing.execute",
    ) -> str:
        policy = retry_policy or RetryPolicy.default()
        command_args = tuple(args)
        started = self._clock()

        for attempt in range(1, policy.max_attempts + 1):
            attempt_started = self._clock()
            self._check_budget(policy, started, command_args, trace_id, operation)

            budget = policy.total_budget_seconds
            remaining = None if budget is None else max(0.0, budget - (attempt_started - started))
            try:
                output, outcome = await attempt_fn(remaining)
            except PlumbingError:
                raise
            except Exception as exc:
                raise GenericExecutionError(
                    str(exc) or type(exc).__name__,
                    operation,
                    args=command_args,
                    trace_id=trace_id,
                    latency_seconds=self._clock() - attempt_started,
                    details={"attempt": attempt, "cause": type(exc).__name__},
                ) from exc

            latency = self._clock() - attempt_started
            self._check_budget(policy, started, command_args, trace_id, operation)
            if outcome.timed_out and remaining is not None and latency >= remaining:
                raise self._budget_error(
                    policy, self._clock() - started, command_args, trace_id, operation
                )

            if outcome.succeeded:
                if attempt > 1:
                    logger.info(
                        "Git command succeeded after retry.",
                        trace_id=trace_id,
                        attempt=attempt,
                    )
                return output.strip()

            failure = self.classifier.classify(
                outcome,
                FailureContext(
                    operation=operation,
                    args=command_args,
                    trace_id=trace_id,
                    latency_seconds=latency,
                    stdout=output,
                ),
            )
            if not self.classifier.is_retryable(failure) or attempt >= policy.max_attempts:
                raise failure

            delay = policy.delay(attempt + 1)
            elapsed = self._clock() - started
            if budget is not None and elapsed + delay > budget:
                logger.warning(
                    "Retry budget exhausted; not waiting for another attempt.",
                    trace_id=trace_id,
                    attempt=attempt,
                    elapsed_seconds=elapsed,
                    delay_seconds=delay,
                    budget_seconds=budget,
                )
                raise failure

            logger.warning(
                "Git command failed with a retryable error; backing off.",
                trace_id=trace_id,
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=delay,
                kind=failure.kind.value,
            )
            await self._sleep(delay)

        # max_attempts >= 1, and the final attempt always returns or raises.
        raise AssertionError("retry loop ended without a result")

    def _check_budget(
        self,
        policy: RetryPolicy,
        started: float,
        args: tuple[str, ...],
        trace_id: str | None,
        operation: str,
    ) -> None:
        budget = policy.total_budget_seconds
        if budget is None:
            return
        elapsed = self._clock() - started
        if elapsed > budget:
            raise self._budget_error(policy, elapsed, args, trace_id, operation)

    @staticmethod
    def _budget_error(
        policy: RetryPolicy,
        elapsed: float,
        args: tuple[str, ...],
        trace_id: str | None,
        operation: str,
    ) -> BudgetExceededError:
        budget = policy.total_budget_seconds
        return BudgetExceededError(
            f"Total retry budget of {budget}s exceeded",
            operation,
            args=args,
            trace_id=trace_id,
            latency_seconds=elapsed,
            details={"budget_seconds": budget},
        )
