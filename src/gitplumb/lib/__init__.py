"""Core gitplumb library exports."""

from gitplumb.lib.domain import CommandStatus, ExitOutcome, Invocation
from gitplumb.lib.plumbing import GitPlumbing
from gitplumb.lib.types import RuntimeId, TraceId

__all__ = ["CommandStatus", "ExitOutcome", "GitPlumbing", "Invocation", "RuntimeId", "TraceId"]
