"""Command execution primitives."""

from gitplumb.lib.exec.classify import (
    ClassificationRule,
    ErrorClassifier,
    FailureContext,
    classify_failure,
    is_retryable,
)
from gitplumb.lib.exec.env import (
    DEFAULT_ALLOWED_ENV,
    EnvironmentPolicy,
    filter_environment,
)
from gitplumb.lib.exec.errors import (
    BudgetExceededError,
    ExecutionFailure,
    FailureKind,
    GenericExecutionError,
    InputError,
    OutputLimitError,
    PlumbingError,
    ProhibitedCommandError,
    ProhibitedFlagError,
    ResourceLockedError,
    SpawnError,
    StreamConsumedError,
    ValidationError,
)
from gitplumb.lib.exec.orchestrator import ExecutionOrchestrator
from gitplumb.lib.exec.retry import RetryPolicy
from gitplumb.lib.exec.sanitize import CommandRegistry, CommandSanitizer, SanitizerCache
from gitplumb.lib.exec.stream import OutputStream
from gitplumb.lib.exec.timeout import (
    DEFAULT_KILL_GRACE_SECONDS,
    RunTimeoutError,
    terminate_process,
    wait_for_process_exit,
)

__all__ = [
    "DEFAULT_ALLOWED_ENV",
    "DEFAULT_KILL_GRACE_SECONDS",
    "BudgetExceededError",
    "ClassificationRule",
    "CommandRegistry",
    "CommandSanitizer",
    "EnvironmentPolicy",
    "ErrorClassifier",
    "ExecutionFailure",
    "ExecutionOrchestrator",
    "FailureContext",
    "FailureKind",
    "GenericExecutionError",
    "InputError",
    "OutputLimitError",
    "OutputStream",
    "PlumbingError",
    "ProhibitedCommandError",
    "ProhibitedFlagError",
    "ResourceLockedError",
    "RetryPolicy",
    "RunTimeoutError",
    "SanitizerCache",
    "SpawnError",
    "StreamConsumedError",
    "ValidationError",
    "classify_failure",
    "filter_environment",
    "is_retryable",
    "terminate_process",
    "wait_for_process_exit",
]
