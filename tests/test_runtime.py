"""Runtime adapter tests against real child processes."""

from __future__ import annotations

import asyncio
import json
import os
import sys
import textwrap
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from gitplumb.lib.config.settings import PlumbingConfig
from gitplumb.lib.domain import TERMINAL_STATES, HandleState, Invocation
from gitplumb.lib.exec.errors import InputError, SpawnError
from gitplumb.lib.exec.stream import OutputStream
from gitplumb.lib.runtime import (
    ASYNCIO_RUNTIME_ID,
    THREAD_RUNTIME_ID,
    AsyncioRuntime,
    RuntimeRegistry,
    ThreadedRuntime,
    detect_runtime,
)

RUNTIMES = [
    pytest.param(AsyncioRuntime, id="asyncio"),
    pytest.param(ThreadedRuntime, id="thread"),
]


def _python(script: str, cwd: Path, **kwargs: object) -> Invocation:
    return Invocation(
        binary=sys.executable,
        args=("-c", textwrap.dedent(script)),
        cwd=cwd,
        environment={"PATH": os.environ.get("PATH", ""), "LANG": "C"},
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_stdin_payload_round_trips_byte_identical(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    payload = bytes(range(256)) * 512
    invocation = _python(
        """
        import sys
        sys.stdout.buffer.write(sys.stdin.buffer.read())
        """,
        tmp_path,
        input=payload,
        timeout_seconds=10.0,
    )

    handle = await runtime_type().run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        output = await stream.collect()
        outcome = await stream.finished

    assert output == payload
    assert outcome.exit_code == 0
    assert outcome.succeeded
    assert handle.state is HandleState.COMPLETED
    assert handle.state in TERMINAL_STATES


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_stdin_is_closed_when_there_is_no_input(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python(
        "import sys; print(len(sys.stdin.buffer.read()))",
        tmp_path,
        timeout_seconds=10.0,
    )

    handle = await runtime_type().run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        output = await stream.collect(as_text=True)

    assert output.strip() == "0"


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_child_sees_only_the_resolved_environment(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python(
        "import json, os; print(json.dumps(sorted(os.environ)))",
        tmp_path,
        timeout_seconds=10.0,
    )

    handle = await runtime_type().run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        names = json.loads(await stream.collect(as_text=True))

    assert "PATH" in names
    assert "HOME" not in names
    assert "GIT_DIR" not in names


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_timeout_kills_process_and_flags_outcome(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python("import time; time.sleep(30)", tmp_path, timeout_seconds=0.3)

    started = time.monotonic()
    handle = await runtime_type(kill_grace_seconds=0.2).run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        await stream.collect()
        outcome = await stream.finished

    assert outcome.timed_out is True
    assert not outcome.succeeded
    assert handle.state is HandleState.KILLED
    assert time.monotonic() - started < 10.0


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_stderr_is_capped_but_still_drained(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python(
        """
        import sys
        sys.stderr.write("e" * 200000)
        sys.stderr.flush()
        print("done")
        """,
        tmp_path,
        timeout_seconds=10.0,
    )

    handle = await runtime_type(max_stderr_bytes=100).run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        output = await stream.collect(as_text=True)
        outcome = await stream.finished

    assert output.strip() == "done"
    assert outcome.exit_code == 0
    assert outcome.stderr == "e" * 100


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_nonzero_exit_reports_code_and_stderr(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python(
        "import sys; sys.stderr.write('fatal: nope'); sys.exit(128)",
        tmp_path,
        timeout_seconds=10.0,
    )

    handle = await runtime_type().run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        await stream.collect()
        outcome = await stream.finished

    assert outcome.exit_code == 128
    assert outcome.stderr == "fatal: nope"
    assert outcome.timed_out is False


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_abandoned_output_terminates_process(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python(
        """
        import sys
        while True:
            sys.stdout.write("x" * 65536)
            sys.stdout.flush()
        """,
        tmp_path,
        timeout_seconds=30.0,
    )

    handle = await runtime_type(kill_grace_seconds=0.5).run(invocation)
    async with OutputStream.from_handle(handle) as stream:
        async for chunk in stream:
            assert chunk
            break

    outcome = await handle.completion
    assert handle.state is HandleState.KILLED
    assert outcome.timed_out is False
    assert outcome.exit_code != 0


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="checks POSIX process table")
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_cancelling_completion_kills_process(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = _python("import time; time.sleep(30)", tmp_path, timeout_seconds=30.0)

    handle = await runtime_type(kill_grace_seconds=0.5).run(invocation)
    await asyncio.sleep(0.1)
    handle.completion.cancel()
    with pytest.raises(asyncio.CancelledError):
        await handle.completion

    assert handle.state is HandleState.KILLED
    with pytest.raises(ProcessLookupError):
        os.kill(handle.pid, 0)


@pytest.mark.asyncio
@pytest.mark.parametrize("runtime_type", RUNTIMES)
async def test_missing_binary_raises_spawn_error(
    runtime_type: type[AsyncioRuntime] | type[ThreadedRuntime],
    tmp_path: Path,
) -> None:
    invocation = Invocation(
        binary=str(tmp_path / "no-such-git"),
        args=("--version",),
        cwd=tmp_path,
        trace_id=None,
    )

    with pytest.raises(SpawnError) as exc_info:
        await runtime_type().run(invocation)

    assert exc_info.value.details["state"] == HandleState.ERRORED.value
    assert exc_info.value.command_args == ("--version",)


def test_registry_builds_default_runtimes_from_config() -> None:
    registry = RuntimeRegistry.with_defaults()
    config = PlumbingConfig(max_stderr_bytes=42, kill_grace_seconds=0.5)

    asyncio_runtime = registry.get("asyncio", config)
    thread_runtime = registry.get("thread", config)

    assert registry.ids() == (ASYNCIO_RUNTIME_ID, THREAD_RUNTIME_ID)
    assert isinstance(asyncio_runtime, AsyncioRuntime)
    assert isinstance(thread_runtime, ThreadedRuntime)
    assert asyncio_runtime.max_stderr_bytes == 42
    assert thread_runtime.kill_grace_seconds == pytest.approx(0.5)


def test_registry_accepts_named_custom_runtime() -> None:
    registry = RuntimeRegistry.with_defaults()
    custom = ThreadedRuntime(max_stderr_bytes=1)
    registry.register("remote", lambda config: custom)

    assert "remote" in registry
    assert registry.get("remote") is custom


def test_registry_rejects_unknown_runtime() -> None:
    with pytest.raises(InputError) as exc_info:
        RuntimeRegistry.with_defaults().get("deno")

    assert exc_info.value.details["available"] == ["asyncio", "thread"]


def test_detect_runtime_prefers_explicit_config() -> None:
    assert detect_runtime(PlumbingConfig(runtime="thread")) == THREAD_RUNTIME_ID


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX loops always spawn natively")
def test_detect_runtime_defaults_to_asyncio_on_posix() -> None:
    assert detect_runtime() == ASYNCIO_RUNTIME_ID
    assert detect_runtime(PlumbingConfig()) == ASYNCIO_RUNTIME_ID


@pytest.mark.asyncio
async def test_threaded_runtime_concurrent_large_outputs_share_small_executor(
    tmp_path: Path,
) -> None:
    loop = asyncio.get_running_loop()
    executor = ThreadPoolExecutor(max_workers=2)
    loop.set_default_executor(executor)
    invocation = _python(
        """
        import sys
        sys.stdout.buffer.write(b"y" * (1024 * 1024))
        """,
        tmp_path,
        timeout_seconds=20.0,
    )
    runtime = ThreadedRuntime()

    async def run_one() -> tuple[int, bool]:
        handle = await runtime.run(invocation)
        async with OutputStream.from_handle(handle) as stream:
            output = await stream.collect(2 * 1024 * 1024)
            outcome = await stream.finished
        return len(output), outcome.timed_out

    started = time.monotonic()
    results = await asyncio.wait_for(asyncio.gather(*(run_one() for _ in range(4))), 15.0)

    assert results == [(1024 * 1024, False)] * 4
    assert time.monotonic() - started < 15.0
