"""GitPlumbing facade: sanitize, spawn, stream and retry git commands."""

from __future__ import annotations

import dataclasses
import os
import time
from collections.abc import Mapping, Sequence
from pathlib import Path

import structlog

from gitplumb.lib.config.settings import PlumbingConfig, load_config
from gitplumb.lib.domain import CommandStatus, ExitOutcome, Invocation
from gitplumb.lib.exec.env import EnvironmentPolicy
from gitplumb.lib.exec.errors import (
    ExecutionFailure,
    GenericExecutionError,
    InputError,
    PlumbingError,
)
from gitplumb.lib.exec.orchestrator import ExecutionOrchestrator
from gitplumb.lib.exec.retry import RetryPolicy
from gitplumb.lib.exec.sanitize import CommandSanitizer
from gitplumb.lib.exec.stream import OutputStream
from gitplumb.lib.logging import new_trace_id, trace_context
from gitplumb.lib.runtime.adapter import RuntimeAdapter
from gitplumb.lib.runtime.registry import RuntimeRegistry, detect_runtime
from gitplumb.lib.types import TraceId

logger = structlog.get_logger(__name__)

DEFAULT_BINARY = "git"


def _resolve_cwd(cwd: str | os.PathLike[str] | None) -> Path:
    resolved = Path(cwd if cwd is not None else os.getcwd()).expanduser().resolve()
    if not resolved.is_dir():
        raise InputError(
            f"Invalid working directory: {cwd}",
            "GitPlumbing.__init__",
            {"cwd": str(cwd)},
        )
    return resolved


def _check_input(payload: object) -> str | bytes | None:
    if payload is None or isinstance(payload, str | bytes):
        return payload
    raise InputError(
        "Input must be str, bytes or None.",
        "GitPlumbing.build_invocation",
        {"type": type(payload).__name__},
    )


def _check_env(env: object) -> dict[str, str]:
    if env is None:
        return {}
    if not isinstance(env, Mapping):
        raise InputError(
            "Environment overrides must be a mapping.",
            "GitPlumbing.build_invocation",
            {"type": type(env).__name__},
        )
    for key, value in env.items():
        if not isinstance(key, str) or not isinstance(value, str):
            raise InputError(
                "Environment overrides must map str to str.",
                "GitPlumbing.build_invocation",
                {"key": repr(key)},
            )
    return dict(env)


def _within_budget(invocation: Invocation, remaining: float | None) -> Invocation:
    if remaining is None:
        return invocation
    if invocation.timeout_seconds is not None and invocation.timeout_seconds <= remaining:
        return invocation
    return dataclasses.replace(invocation, timeout_seconds=remaining)


class GitPlumbing:
    """Safe entry point for running allow-listed git commands in one repository.

    Every command goes through the sanitizer, the environment policy and the
    selected runtime adapter. ``execute`` buffers output and retries lock
    contention; ``execute_stream`` hands back a live ``OutputStream`` with no
    retry; ``execute_with_status`` reports the exit status instead of raising.
    """

    def __init__(
        self,
        cwd: str | os.PathLike[str] | None = None,
        *,
        runtime: RuntimeAdapter | None = None,
        sanitizer: CommandSanitizer | None = None,
        orchestrator: ExecutionOrchestrator | None = None,
        environment_policy: EnvironmentPolicy | None = None,
        config: PlumbingConfig | None = None,
        binary: str = DEFAULT_BINARY,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.cwd = _resolve_cwd(cwd)
        self.config = config or PlumbingConfig()
        self.runtime = runtime or RuntimeRegistry.with_defaults().get(
            detect_runtime(self.config), self.config
        )
        self.sanitizer = sanitizer or CommandSanitizer.from_config(self.config)
        self.orchestrator = orchestrator or ExecutionOrchestrator()
        self.environment_policy = environment_policy or EnvironmentPolicy()
        self.retry_policy = RetryPolicy.from_config(self.config)
        self.binary = binary
        self._environ = environ

    @classmethod
    def create_default(
        cls,
        cwd: str | os.PathLike[str] | None = None,
        *,
        runtime_id: str | None = None,
        registry: RuntimeRegistry | None = None,
        config: PlumbingConfig | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> GitPlumbing:
        """Build a facade whose runtime is picked once from config or the host."""

        resolved_config = config or load_config(environ=environ, base_dir=_resolve_cwd(cwd))
        runtimes = registry or RuntimeRegistry.with_defaults()
        selected = runtime_id or detect_runtime(resolved_config)
        logger.debug("Selected git runtime.", runtime=selected, available=list(runtimes.ids()))
        return cls(
            cwd,
            runtime=runtimes.get(selected, resolved_config),
            config=resolved_config,
            environ=environ,
        )

    def build_invocation(
        self,
        args: Sequence[str],
        *,
        input: str | bytes | None = None,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> Invocation:
        """Validate `args` and resolve the child environment for one command."""

        sanitized = self.sanitizer.sanitize(args)
        payload = _check_input(input)
        overrides = _check_env(env)
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise InputError(
                "timeout_seconds must be > 0 when provided.",
                "GitPlumbing.build_invocation",
                {"timeout_seconds": timeout_seconds},
            )

        ambient = os.environ if self._environ is None else self._environ
        return Invocation(
            binary=self.binary,
            args=sanitized,
            cwd=self.cwd,
            input=payload,
            env_overrides=overrides,
            environment=self.environment_policy.merge(ambient, overrides),
            timeout_seconds=(
                timeout_seconds
                if timeout_seconds is not None
                else self.config.command_timeout_seconds
            ),
            trace_id=TraceId(trace_id) if trace_id else new_trace_id(),
        )

    async def execute(
        self,
        args: Sequence[str],
        *,
        input: str | bytes | None = None,
        env: Mapping[str, str] | None = None,
        max_bytes: int | None = None,
        trace_id: str | None = None,
        retry_policy: RetryPolicy | None = None,
        timeout_seconds: float | None = None,
    ) -> str:
        """Run one command to completion and return its stripped stdout."""

        invocation = self.build_invocation(
            args,
            input=input,
            env=env,
            timeout_seconds=timeout_seconds,
            trace_id=trace_id,
        )
        limit = max_bytes if max_bytes is not None else self.config.max_output_bytes

        async def attempt(remaining: float | None) -> tuple[str, ExitOutcome]:
            handle = await self.runtime.run(_within_budget(invocation, remaining))
            async with OutputStream.from_handle(handle) as stream:
                output = await stream.collect(limit, as_text=True)
                outcome = await stream.finished
            return output, outcome

        with trace_context(invocation.trace_id or "", runtime=self.runtime.id):
            return await self.orchestrator.orchestrate(
                attempt,
                retry_policy=retry_policy or self.retry_policy,
                args=invocation.args,
                trace_id=invocation.trace_id,
                operation="GitPlumbing.execute",
            )

    async def execute_stream(
        self,
        args: Sequence[str],
        *,
        input: str | bytes | None = None,
        env: Mapping[str, str] | None = None,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> OutputStream:
        """Spawn one command and return its unbuffered stdout stream.

        The caller owns the stream: iterate or ``collect`` it, then await
        ``finished``. Always use ``async with`` (or call ``aclose``); breaking
        out of ``async for`` alone leaves the process running until its
        timeout.
        """

        invocation = self.build_invocation(
            args,
            input=input,
            env=env,
            timeout_seconds=timeout_seconds,
            trace_id=trace_id,
        )
        try:
            handle = await self.runtime.run(invocation)
        except PlumbingError:
            raise
        except Exception as exc:
            raise GenericExecutionError(
                str(exc) or type(exc).__name__,
                "GitPlumbing.execute_stream",
                args=invocation.args,
                trace_id=invocation.trace_id,
                details={"cause": type(exc).__name__},
            ) from exc
        return OutputStream.from_handle(handle)

    async def execute_with_status(
        self,
        args: Sequence[str],
        *,
        input: str | bytes | None = None,
        env: Mapping[str, str] | None = None,
        max_bytes: int | None = None,
        timeout_seconds: float | None = None,
        trace_id: str | None = None,
    ) -> CommandStatus:
        """Run one command once and report its exit status instead of raising."""

        started = time.monotonic()
        invocation = self.build_invocation(
            args,
            input=input,
            env=env,
            timeout_seconds=timeout_seconds,
            trace_id=trace_id,
        )
        limit = max_bytes if max_bytes is not None else self.config.max_output_bytes
        try:
            with trace_context(invocation.trace_id or "", runtime=self.runtime.id):
                handle = await self.runtime.run(invocation)
                async with OutputStream.from_handle(handle) as stream:
                    output = await stream.collect(limit, as_text=True)
                    outcome = await stream.finished
        except PlumbingError:
            raise
        except Exception as exc:
            raise GenericExecutionError(
                str(exc) or type(exc).__name__,
                "GitPlumbing.execute_with_status",
                args=invocation.args,
                trace_id=invocation.trace_id,
                latency_seconds=time.monotonic() - started,
                details={"cause": type(exc).__name__},
            ) from exc

        return CommandStatus(
            output=output.strip(),
            exit_status=outcome.exit_code,
            timed_out=outcome.timed_out,
            latency_seconds=time.monotonic() - started,
        )

    async def verify_installation(self) -> None:
        """Check that the binary runs and that `cwd` is inside a work tree."""

        try:
            await self.execute(["--version"], retry_policy=RetryPolicy.none())
        except ExecutionFailure as exc:
            raise GenericExecutionError(
                f"Git binary verification failed: {exc.message}",
                "GitPlumbing.verify_installation",
                args=("--version",),
                stderr=exc.stderr,
                exit_code=exc.exit_code,
                trace_id=exc.trace_id,
                details={"code": "GIT_BINARY_NOT_FOUND"},
            ) from exc

        args = ("rev-parse", "--is-inside-work-tree")
        try:
            inside = await self.execute(args, retry_policy=RetryPolicy.none())
        except ExecutionFailure as exc:
            raise GenericExecutionError(
                f"Git repository verification failed: {exc.message}",
                "GitPlumbing.verify_installation",
                args=args,
                stderr=exc.stderr,
                exit_code=exc.exit_code,
                trace_id=exc.trace_id,
                details={"code": "GIT_NOT_IN_WORK_TREE"},
            ) from exc
        if inside != "true":
            raise GenericExecutionError(
                "Not inside a git work tree",
                "GitPlumbing.verify_installation",
                args=args,
                details={"code": "GIT_NOT_IN_WORK_TREE", "cwd": str(self.cwd)},
            )
