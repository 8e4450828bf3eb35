"""Exception hierarchy for command execution.

Callers can catch broad categories (``PlumbingError``) or specific failure
modes. Sanitizer errors are raised before any process exists; execution
failures carry enough context (arguments, trace id, latency, stderr) to
diagnose a failed command without re-running it.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from enum import StrEnum

LOCK_REMEDIATION = (
    "Another git process is running. If no other process is active, "
    "delete the stale .lock file (usually .git/index.lock) to proceed."
)
FLAG_REMEDIATION = (
    "Flags like --work-tree, --git-dir or -c are forbidden for isolation. "
    "Construct GitPlumbing with the repository as 'cwd' instead."
)


class FailureKind(StrEnum):
    """Tag for classified command failures."""

    GENERIC = "generic"
    RESOURCE_LOCKED = "resource_locked"


def _empty_details() -> dict[str, object]:
    return {}


class PlumbingError(Exception):
    """Base exception for all gitplumb errors."""

    def __init__(
        self,
        message: str,
        operation: str,
        details: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.details: dict[str, object] = dict(details) if details else _empty_details()


class InputError(PlumbingError, ValueError):
    """Malformed argument shape or type."""


class ValidationError(PlumbingError):
    """A size or count limit was exceeded."""


class OutputLimitError(ValidationError):
    """Collected command output exceeded its byte ceiling."""

    def __init__(self, max_bytes: int, operation: str = "OutputStream.collect") -> None:
        super().__init__(
            f"Buffer limit exceeded: {max_bytes} bytes",
            operation,
            {"max_bytes": max_bytes},
        )
        self.max_bytes = max_bytes


class ProhibitedCommandError(ValidationError):
    """Subcommand is not in the allow-list."""

    def __init__(self, command: str, operation: str) -> None:
        super().__init__(
            f"Prohibited git command detected: {command}",
            operation,
            {"command": command},
        )
        self.command = command


class ProhibitedFlagError(ValidationError):
    """A blocked flag was found in the argument sequence."""

    def __init__(
        self,
        flag: str,
        operation: str,
        *,
        command: str | None = None,
        remediation: str = FLAG_REMEDIATION,
    ) -> None:
        if command is None:
            message = f"Prohibited git flag detected: {flag}. {remediation}"
        else:
            message = f"Flag '{flag}' is not permitted for 'git {command}'. {remediation}"
        super().__init__(message, operation, {"flag": flag, "command": command})
        self.flag = flag
        self.remediation = remediation


class StreamConsumedError(PlumbingError):
    """An output stream was consumed more than once."""

    def __init__(self, operation: str = "OutputStream.__aiter__") -> None:
        super().__init__("Output stream has already been consumed.", operation)


class ExecutionFailure(PlumbingError):
    """A command ran (or tried to run) and did not succeed."""

    kind: FailureKind = FailureKind.GENERIC
    remediation: str | None = None
    code: str | None = None

    def __init__(
        self,
        message: str,
        operation: str,
        *,
        args: Sequence[str] = (),
        stderr: str = "",
        exit_code: int | None = None,
        trace_id: str | None = None,
        latency_seconds: float | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        merged: dict[str, object] = {
            "args": list(args),
            "stderr": stderr,
            "exit_code": exit_code,
            "trace_id": trace_id,
            "latency_seconds": latency_seconds,
        }
        if self.code is not None:
            merged["code"] = self.code
        if self.remediation is not None:
            merged["remediation"] = self.remediation
        if details:
            merged.update(details)
        super().__init__(message, operation, merged)
        self.command_args = tuple(args)
        self.stderr = stderr
        self.exit_code = exit_code
        self.trace_id = trace_id
        self.latency_seconds = latency_seconds


class GenericExecutionError(ExecutionFailure):
    """Terminal command failure."""


class ResourceLockedError(ExecutionFailure):
    """The repository is locked by another process; safe to retry."""

    kind = FailureKind.RESOURCE_LOCKED
    remediation = LOCK_REMEDIATION
    code = "GIT_REPOSITORY_LOCKED"


class BudgetExceededError(GenericExecutionError):
    """Cumulative time across attempts exceeded the retry budget."""


class SpawnError(GenericExecutionError):
    """The binary could not be started."""
