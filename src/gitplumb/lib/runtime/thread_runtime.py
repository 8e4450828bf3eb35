"""Runtime adapter that drives blocking ``subprocess.Popen`` from worker threads.

Used where the running event loop cannot spawn subprocesses itself (for
example selector loops on Windows). Stdout reads go through
``asyncio.to_thread``; the stdin feeder, stderr pump and exit waiter each run
on a dedicated thread so concurrent executions never compete for the shared
executor.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import subprocess
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import IO, Any

import structlog

from gitplumb.lib.config.settings import DEFAULT_MAX_STDERR_BYTES
from gitplumb.lib.domain import ExitOutcome, HandleState, Invocation
from gitplumb.lib.exec.errors import SpawnError
from gitplumb.lib.exec.timeout import (
    DEFAULT_KILL_GRACE_SECONDS,
    RunTimeoutError,
    terminate_popen,
    wait_for_popen_exit,
)
from gitplumb.lib.runtime.adapter import CHUNK_SIZE, BoundedBuffer
from gitplumb.lib.types import RuntimeId

logger = structlog.get_logger(__name__)

THREAD_RUNTIME_ID = RuntimeId("thread")


def _resolve(future: asyncio.Future[Any], result: Any) -> None:
    if not future.done():
        future.set_result(result)


def _reject(future: asyncio.Future[Any], exc: BaseException) -> None:
    if not future.done():
        future.set_exception(exc)


def _in_thread(
    name: str,
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> asyncio.Future[Any]:
    """Run `func` on its own daemon thread and resolve a loop future with the result."""

    loop = asyncio.get_running_loop()
    future: asyncio.Future[Any] = loop.create_future()

    def target() -> None:
        try:
            result = func(*args, **kwargs)
        except Exception as exc:
            loop.call_soon_threadsafe(_reject, future, exc)
        else:
            loop.call_soon_threadsafe(_resolve, future, result)

    threading.Thread(target=target, name=name, daemon=True).start()
    return future


def _feed_stdin(stream: IO[bytes], payload: bytes | None) -> None:
    try:
        if payload:
            stream.write(payload)
            stream.flush()
    except (BrokenPipeError, ConnectionResetError):
        logger.debug("Child closed stdin before the payload was written.")
    finally:
        with contextlib.suppress(BrokenPipeError, ConnectionResetError):
            stream.close()


def _capture_stderr(stream: IO[bytes], buffer: BoundedBuffer) -> None:
    with stream:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                return
            buffer.extend(chunk)


def _spawn(invocation: Invocation) -> subprocess.Popen[bytes]:
    return subprocess.Popen(
        list(invocation.argv),
        cwd=str(invocation.cwd),
        env=dict(invocation.environment),
        stdin=subprocess.PIPE,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        start_new_session=os.name == "posix",
    )


class ThreadedExecution:
    """One child process owned by the threaded runtime."""

    def __init__(
        self,
        process: subprocess.Popen[bytes],
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
        self._stdout_done = False
        self._state = HandleState.SPAWNED
        self._feed_task = _in_thread(
            f"gitplumb-stdin-{process.pid}", _feed_stdin, process.stdin, invocation.input_bytes()
        )
        self._stderr_task = _in_thread(
            f"gitplumb-stderr-{process.pid}", _capture_stderr, process.stderr, self._stderr
        )
        self._completion = asyncio.create_task(self._supervise())
        self._output = self._chunks()
        self._state = HandleState.RUNNING

    @property
    def output(self) -> AsyncIterator[bytes]:
        return self._output

    @property
    def completion(self) -> asyncio.Task[ExitOutcome]:
        return self._completion

    @property
    def state(self) -> HandleState:
        return self._state

    @property
    def runtime_id(self) -> RuntimeId:
        return THREAD_RUNTIME_ID

    @property
    def pid(self) -> int:
        return self._process.pid

    async def _chunks(self) -> AsyncIterator[bytes]:
        while True:
            chunk = await asyncio.to_thread(self._stdout.read1, CHUNK_SIZE)
            if not chunk:
                self._stdout_done = True
                return
            yield chunk

    async def _supervise(self) -> ExitOutcome:
        timed_out = False
        try:
            returncode = await _in_thread(
                f"gitplumb-wait-{self._process.pid}",
                wait_for_popen_exit,
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
            await _in_thread(
                f"gitplumb-kill-{self._process.pid}",
                terminate_popen,
                self._process,
                grace_seconds=self._kill_grace_seconds,
            )
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
        if self._process.poll() is None and not self._stdout_done:
            self._terminated = True
            await _in_thread(
                f"gitplumb-kill-{self._process.pid}",
                terminate_popen,
                self._process,
                grace_seconds=self._kill_grace_seconds,
            )
        await self._output.aclose()
        try:
            await self._completion
        finally:
            self._stdout.close()


@dataclass(frozen=True, slots=True)
class ThreadedRuntime:
    """Spawns git with ``subprocess.Popen`` and waits on it from worker threads."""

    max_stderr_bytes: int = DEFAULT_MAX_STDERR_BYTES
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS

    @property
    def id(self) -> RuntimeId:
        return THREAD_RUNTIME_ID

    async def run(self, invocation: Invocation) -> ThreadedExecution:
        try:
            process = await asyncio.to_thread(_spawn, invocation)
        except OSError as exc:
            raise SpawnError(
                f"Failed to spawn '{invocation.binary}': {exc}",
                "ThreadedRuntime.run",
                args=invocation.args,
                trace_id=invocation.trace_id,
                details={"state": HandleState.ERRORED.value, "runtime": THREAD_RUNTIME_ID},
            ) from exc

        logger.debug(
            "Spawned git process.",
            runtime=THREAD_RUNTIME_ID,
            pid=process.pid,
            trace_id=invocation.trace_id,
            args=list(invocation.args),
        )
        return ThreadedExecution(
            process,
            invocation,
            max_stderr_bytes=self.max_stderr_bytes,
            kill_grace_seconds=self.kill_grace_seconds,
        )
