"""Runtime adapter built on asyncio's subprocess transport."""

from __future__ import annotations

import asyncio
import contextlib
from dataclasses import dataclass

import structlog

from gitplumb.lib.config.settings import DEFAULT_MAX_STDERR_BYTES
from gitplumb.lib.domain import ExitOutcome, HandleState, Invocation
from gitplumb.lib.exec.errors import SpawnError
from gitplumb.lib.exec.timeout import (
    DEFAULT_KILL_GRACE_SECONDS,
    RunTimeoutError,
    terminate_process,
    wait_for_process_exit,
)
from gitplumb.lib.runtime.adapter import CHUNK_SIZE, BoundedBuffer
from gitplumb.lib.types import RuntimeId

logger = structlog.get_logger(__name__)

ASYNCIO_RUNTIME_ID = RuntimeId("asyncio")


async def _feed_stdin(writer: asyncio.StreamWriter, payload: bytes | None) -> None:
    try:
        if payload:
            writer.write(payload)
            await writer.drain()
    except (BrokenPipeError, ConnectionResetError):
        # The child exited without reading all of its input; its exit status
        # tells the real story.
        logger.debug("Child closed stdin before the payload was written.")
    finally:
        writer.close()
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            await writer.wait_closed()


async def _capture_stderr(reader: asyncio.StreamReader, buffer: BoundedBuffer) -> None:
    while True:
        chunk = await reader.read(CHUNK_SIZE)
        if not chunk:
            return
        buffer.extend(chunk)


async def _discard(reader: asyncio.StreamReader) -> None:
    while await reader.read(CHUNK_SIZE):
        pass


class AsyncioExecution:
    """One child process owned by the asyncio runtime."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        invocation: Invocation,
        *,
        max_stderr_bytes: int,
        kill_grace_seconds: float,
    ) -> None:
        if process.stdin is None or process.stdout is None or process.stderr is None:
            raise RuntimeError("Subprocess did not expose stdin/stdout/stderr pipes.")
        self._process = process
        self._stdout = process.stdout
        self._invocation = invocation
        self._kill_grace_seconds = kill_grace_seconds
        self._stderr = BoundedBuffer(max_stderr_bytes)
        self._terminated = False
        self._state = HandleState.SPAWNED
        self._feed_task = asyncio.create_task(
            _feed_stdin(process.stdin, invocation.input_bytes())
        )
        self._stderr_task = asyncio.create_task(_capture_stderr(process.stderr, self._stderr))
        self._completion = asyncio.create_task(self._supervise())
        self._state = HandleState.RUNNING

    @property
    def output(self) -> asyncio.StreamReader:
        return self._stdout

    @property
    def completion(self) -> asyncio.Task[ExitOutcome]:
        return self._completion

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def runtime_id(self) -> RuntimeId:
        return ASYNCIO_RUNTIME_ID

    @property
    def pid(self) -> int:
        return self._process.pid

    async def _supervise(self) -> ExitOutcome:
        timed_out = False
        try:
            returncode = await wait_for_process_exit(
                self._process,
                timeout_seconds=self._invocation.timeout_seconds,
                kill_grace_seconds=self._kill_grace_seconds,
            )
        except RunTimeoutError:
            timed_out = True
            returncode = self._process.returncode if self._process.returncode is not None else -1
            logger.warning(
                "Git command timed out; process terminated.",
                trace_id=self._invocation.trace_id,
                args=list(self._invocation.args),
                timeout_seconds=self._invocation.timeout_seconds,
            )
        except asyncio.CancelledError:
            await terminate_process(self._process, grace_seconds=self._kill_grace_seconds)
            self._state = HandleState.KILLED
            raise

        await self._stderr_task
        await self._feed_task
        killed = timed_out or self._terminated
        self._state = HandleState.KILLED if killed else HandleState.COMPLETED
        if self._stderr.dropped:
            logger.debug("Dropped stderr overflow.", dropped_bytes=self._stderr.dropped)
        return ExitOutcome(exit_code=returncode, stderr=self._stderr.text(), timed_out=timed_out)

    async def close(self) -> None:
        abandoned = self._process.returncode is None and not self._stdout.at_eof()
        # process.wait() only resolves once every pipe is disconnected, so
        # leftover stdout has to be drained while the child shuts down.
        drain = asyncio.create_task(_discard(self._stdout))
        try:
            if abandoned:
                logger.debug(
                    "Output abandoned; terminating git process.",
                    pid=self._process.pid,
                    trace_id=self._invocation.trace_id,
                )
                self._terminated = True
                await terminate_process(self._process, grace_seconds=self._kill_grace_seconds)
            await self._completion
        finally:
            drain.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await drain


@dataclass(frozen=True, slots=True)
class AsyncioRuntime:
    """Spawns git with ``asyncio.create_subprocess_exec``."""

    max_stderr_bytes: int = DEFAULT_MAX_STDERR_BYTES
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS

    @property
    def id(self) -> RuntimeId:
        return ASYNCIO_RUNTIME_ID

    async def run(self, invocation: Invocation) -> AsyncioExecution:
        try:
            process = await asyncio.create_subprocess_exec(
                *invocation.argv,
                cwd=str(invocation.cwd),
                env=dict(invocation.environment),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (OSError, NotImplementedError) as exc:
            raise SpawnError(
                f"Failed to spawn '{invocation.binary}': {exc}",
                "AsyncioRuntime.run",
                args=invocation.args,
                trace_id=invocation.trace_id,
                details={"state": HandleState.ERRORED.value, "runtime": ASYNCIO_RUNTIME_ID},
            ) from exc

        logger.debug(
            "Spawned git process.",
            runtime=ASYNCIO_RUNTIME_ID,
            pid=process.pid,
            trace_id=invocation.trace_id,
            args=list(invocation.args),
        )
        return AsyncioExecution(
            process,
            invocation,
            max_stderr_bytes=self.max_stderr_bytes,
            kill_grace_seconds=self.kill_grace_seconds,
        )
