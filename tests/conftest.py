"""Shared pytest fixtures for gitplumb tests."""

from __future__ import annotations

import asyncio
import json
import os
import shlex
import shutil
import subprocess
import sys
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from gitplumb.lib.domain import ExitOutcome, HandleState, Invocation
from gitplumb.lib.types import RuntimeId

PACKAGE_ROOT = Path(__file__).resolve().parents[1]
MOCK_GIT_SCRIPT = PACKAGE_ROOT / "tests" / "mock_git.py"


@pytest.fixture
def package_root() -> Path:
    return PACKAGE_ROOT


@pytest.fixture
def git_binary() -> str:
    binary = shutil.which("git")
    if binary is None:
        pytest.skip("git binary not available")
    return binary


@pytest.fixture
def git_repo(tmp_path: Path, git_binary: str) -> Path:
    repo = tmp_path / "repo"
    repo.mkdir()
    subprocess.run(
        [git_binary, "init", "--quiet", str(repo)],
        check=True,
        capture_output=True,
        text=True,
    )
    return repo


@dataclass(slots=True)
class MockGit:
    """Executable wrapper around tests/mock_git.py rooted in one directory."""

    binary: str
    cwd: Path

    def script(self, *responses: dict[str, object]) -> None:
        (self.cwd / "mock_git.json").write_text(
            json.dumps({"responses": list(responses)}),
            encoding="utf-8",
        )

    def calls(self) -> list[dict[str, object]]:
        path = self.cwd / "mock_git.calls.jsonl"
        if not path.exists():
            return []
        return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


@pytest.fixture
def mock_git(tmp_path: Path) -> MockGit:
    if os.name != "posix":
        pytest.skip("mock git wrapper requires a POSIX shell")
    workdir = tmp_path / "mock-repo"
    workdir.mkdir()
    wrapper = tmp_path / "fake-git"
    wrapper.write_text(
        "#!/bin/sh\n"
        f"exec {shlex.quote(sys.executable)} {shlex.quote(str(MOCK_GIT_SCRIPT))} \"$@\"\n",
        encoding="utf-8",
    )
    wrapper.chmod(0o755)
    mock = MockGit(binary=str(wrapper), cwd=workdir)
    mock.script({"exit_code": 0})
    return mock


async def _iterate(chunks: tuple[bytes, ...]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


@dataclass(slots=True)
class StubHandle:
    """In-memory execution handle with a scripted stdout and outcome."""

    chunks: tuple[bytes, ...]
    completion: asyncio.Future[ExitOutcome]
    closed: int = 0

    @property
    def output(self) -> AsyncIterator[bytes]:
        return _iterate(self.chunks)

    @property
    def state(self) -> HandleState:
        return HandleState.COMPLETED if self.completion.done() else HandleState.RUNNING

    @property
    def runtime_id(self) -> RuntimeId:
        return RuntimeId("stub")

    async def close(self) -> None:
        self.closed += 1


@dataclass(slots=True)
class RecordingRuntime:
    """Runtime adapter stub that records every invocation it is asked to run."""

    outcomes: list[tuple[bytes, ExitOutcome]] = field(default_factory=list)
    invocations: list[Invocation] = field(default_factory=list)
    handles: list[StubHandle] = field(default_factory=list)

    @property
    def id(self) -> RuntimeId:
        return RuntimeId("stub")

    async def run(self, invocation: Invocation) -> StubHandle:
        self.invocations.append(invocation)
        index = min(len(self.invocations) - 1, len(self.outcomes) - 1)
        stdout, outcome = self.outcomes[index] if self.outcomes else (b"", ExitOutcome(0))
        completion: asyncio.Future[ExitOutcome] = asyncio.get_running_loop().create_future()
        completion.set_result(outcome)
        handle = StubHandle(chunks=(stdout,) if stdout else (), completion=completion)
        self.handles.append(handle)
        return handle


@pytest.fixture
def recording_runtime() -> RecordingRuntime:
    return RecordingRuntime()
