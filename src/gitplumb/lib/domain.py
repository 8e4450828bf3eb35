"""Core execution data models."""

from __future__ import annotations

from collections.abc import AsyncIterable, Awaitable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path
from typing import Protocol

from gitplumb.lib.types import RuntimeId, TraceId


def _empty_env() -> dict[str, str]:
    return {}


@dataclass(frozen=True, slots=True)
class Invocation:
    """One request to run the binary with a validated argument tuple."""

    binary: str
    args: tuple[str, ...]
    cwd: Path
    input: str | bytes | None = None
    env_overrides: Mapping[str, str] = field(default_factory=_empty_env)
    # Resolved, filtered environment handed to the child as-is.
    environment: Mapping[str, str] = field(default_factory=_empty_env)
    timeout_seconds: float | None = None
    trace_id: TraceId | None = None

    @property
    def argv(self) -> tuple[str, ...]:
        return (self.binary, *self.args)

    def input_bytes(self) -> bytes | None:
        if self.input is None:
            return None
        if isinstance(self.input, str):
            return self.input.encode("utf-8")
        return bytes(self.input)


@dataclass(frozen=True, slots=True)
class ExitOutcome:
    """How one spawned process ended."""

    exit_code: int
    stderr: str = ""
    timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass(frozen=True, slots=True)
class CommandStatus:
    """Output and exit status of a command whose failure is not an error."""

    output: str
    exit_status: int
    timed_out: bool = False
    latency_seconds: float = 0.0


class HandleState(StrEnum):
    """Per-process lifecycle state."""

    SPAWNED = "spawned"
    RUNNING = "running"
    COMPLETED = "completed"
    KILLED = "killed"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({HandleState.COMPLETED, HandleState.KILLED, HandleState.ERRORED})


class ChunkReader(Protocol):
    """Pull-style native output (e.g. ``asyncio.StreamReader``)."""

    async def read(self, n: int = -1) -> bytes: ...


OutputSource = ChunkReader | AsyncIterable[bytes]


class ExecutionHandle(Protocol):
    """Live process created by a runtime adapter.

    ``output`` may be drained at most once. ``completion`` resolves exactly
    once to the process's ``ExitOutcome``; a timeout resolves it with
    ``timed_out=True`` instead of raising. ``close`` releases the native
    resources and terminates the process if its output was abandoned.
    """

    @property
    def output(self) -> OutputSource: ...

    @property
    def completion(self) -> Awaitable[ExitOutcome]: ...

    @property
    def state(self) -> HandleState: ...

    @property
    def runtime_id(self) -> RuntimeId: ...

    async def close(self) -> None: ...
