"""Git failure classification for retry decisions."""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from gitplumb.lib.domain import ExitOutcome
from gitplumb.lib.exec.errors import (
    ExecutionFailure,
    GenericExecutionError,
    ResourceLockedError,
)

GIT_FATAL_EXIT_CODE = 128
_LOCK_MARKERS = re.compile(r"\.lock\b|unable to lock|cannot lock", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class FailureContext:
    """What the classifier knows about the attempt besides its outcome."""

    operation: str
    args: tuple[str, ...] = ()
    trace_id: str | None = None
    latency_seconds: float | None = None
    stdout: str = ""


@dataclass(frozen=True, slots=True)
class ClassificationRule:
    """Caller-supplied rule consulted before the built-in ones."""

    predicate: Callable[[ExitOutcome], bool]
    build: Callable[[ExitOutcome, FailureContext], ExecutionFailure]


def is_lock_contention(outcome: ExitOutcome) -> bool:
    return outcome.exit_code == GIT_FATAL_EXIT_CODE and bool(_LOCK_MARKERS.search(outcome.stderr))


def _build(
    failure_type: type[ExecutionFailure],
    message: str,
    outcome: ExitOutcome,
    context: FailureContext,
    details: dict[str, object] | None = None,
) -> ExecutionFailure:
    return failure_type(
        message,
        context.operation,
        args=context.args,
        stderr=outcome.stderr,
        exit_code=outcome.exit_code,
        trace_id=context.trace_id,
        latency_seconds=context.latency_seconds,
        details=details,
    )


class ErrorClassifier:
    """Map a failed ``ExitOutcome`` to a typed ``ExecutionFailure``."""

    def __init__(self, custom_rules: Sequence[ClassificationRule] = ()) -> None:
        self._rules = tuple(custom_rules)

    @property
    def rules(self) -> tuple[ClassificationRule, ...]:
        return self._rules

    def classify(self, outcome: ExitOutcome, context: FailureContext) -> ExecutionFailure:
        for rule in self._rules:
            if rule.predicate(outcome):
                return rule.build(outcome, context)

        if outcome.timed_out:
            return _build(
                GenericExecutionError,
                "Git command timed out",
                outcome,
                context,
                {"timed_out": True},
            )
        if is_lock_contention(outcome):
            return _build(
                ResourceLockedError,
                "Git repository is locked by another process",
                outcome,
                context,
            )
        return _build(
            GenericExecutionError,
            f"Git command failed with code {outcome.exit_code}",
            outcome,
            context,
        )

    @staticmethod
    def is_retryable(failure: BaseException) -> bool:
        return isinstance(failure, ResourceLockedError)


DEFAULT_CLASSIFIER = ErrorClassifier()


def classify_failure(outcome: ExitOutcome, context: FailureContext) -> ExecutionFailure:
    """Classify one failed attempt with the built-in rules only."""

    return DEFAULT_CLASSIFIER.classify(outcome, context)


def is_retryable(failure: BaseException) -> bool:
    return ErrorClassifier.is_retryable(failure)
