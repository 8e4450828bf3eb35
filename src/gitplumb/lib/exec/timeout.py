"""Timeout and termination helpers for git child processes."""

from __future__ import annotations

import asyncio
import os
import signal
import subprocess

from gitplumb.lib.config.settings import PlumbingConfig

DEFAULT_KILL_GRACE_SECONDS = PlumbingConfig().kill_grace_seconds
_POSIX = os.name == "posix"


class RunTimeoutError(TimeoutError):
    """Raised when a git process exceeds its per-attempt timeout."""

    def __init__(self, timeout_seconds: float) -> None:
        self.timeout_seconds = timeout_seconds
        super().__init__(f"Command exceeded timeout after {timeout_seconds:.3f}s")


def signal_process_group(pid: int | None, signum: signal.Signals) -> bool:
    """Send one signal to the process group led by `pid`.

    Children are spawned in their own session, so the group also covers any
    helpers git forks. Returns False when the process is already gone.
    """

    if pid is None:
        return False
    try:
        if _POSIX:
            os.killpg(os.getpgid(pid), signum)
        else:
            os.kill(pid, signum)
    except ProcessLookupError:
        return False
    return True


async def terminate_process(
    process: asyncio.subprocess.Process,
    *,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Gracefully terminate a process and force-kill if it does not exit."""

    if process.returncode is not None:
        return

    if not signal_process_group(process.pid, signal.SIGTERM):
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=grace_seconds)
    except TimeoutError:
        if process.returncode is None:
            signal_process_group(process.pid, signal.SIGKILL if _POSIX else signal.SIGTERM)
            await process.wait()


async def wait_for_process_exit(
    process: asyncio.subprocess.Process,
    *,
    timeout_seconds: float | None,
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> int:
    """Wait for process completion with timeout-triggered termination."""

    if timeout_seconds is None:
        return await process.wait()

    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0 when provided.")

    try:
        return await asyncio.wait_for(process.wait(), timeout=timeout_seconds)
    except TimeoutError as exc:
        await terminate_process(process, grace_seconds=kill_grace_seconds)
        raise RunTimeoutError(timeout_seconds) from exc


def terminate_popen(
    process: subprocess.Popen[bytes],
    *,
    grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> None:
    """Blocking counterpart of `terminate_process` for `subprocess.Popen`."""

    if process.poll() is not None:
        return

    if not signal_process_group(process.pid, signal.SIGTERM):
        return
    try:
        process.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        if process.poll() is None:
            if _POSIX:
                signal_process_group(process.pid, signal.SIGKILL)
            else:
                process.kill()
            process.wait()


def wait_for_popen_exit(
    process: subprocess.Popen[bytes],
    *,
    timeout_seconds: float | None,
    kill_grace_seconds: float = DEFAULT_KILL_GRACE_SECONDS,
) -> int:
    """Blocking wait with timeout-triggered termination."""

    if timeout_seconds is not None and timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0 when provided.")

    try:
        return process.wait(timeout=timeout_seconds)
    except subprocess.TimeoutExpired as exc:
        terminate_popen(process, grace_seconds=kill_grace_seconds)
        raise RunTimeoutError(timeout_seconds or 0.0) from exc
