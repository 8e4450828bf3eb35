"""Uniform async byte stream over each runtime's native stdout primitive."""

from __future__ import annotations

import asyncio
import contextlib
import warnings
from collections.abc import AsyncGenerator, Awaitable, Callable
from types import TracebackType
from typing import Literal, overload

import structlog

from gitplumb.lib.config.settings import DEFAULT_MAX_OUTPUT_BYTES
from gitplumb.lib.domain import ExecutionHandle, ExitOutcome, OutputSource
from gitplumb.lib.exec.errors import OutputLimitError, StreamConsumedError
from gitplumb.lib.runtime.adapter import CHUNK_SIZE

logger = structlog.get_logger(__name__)


async def _exited_cleanly() -> ExitOutcome:
    return ExitOutcome(exit_code=0)


def _as_bytes(chunk: bytes | bytearray | memoryview | str) -> bytes:
    if isinstance(chunk, str):
        return chunk.encode("utf-8")
    return bytes(chunk)


class OutputStream:
    """Single-owner async iterator of stdout chunks.

    Accepts either a pull reader (anything with an ``async read(n)``, such as
    ``asyncio.StreamReader``) or an async iterable of chunks. ``finished``
    resolves to the process's ``ExitOutcome`` and may be awaited any number of
    times. ``aclose`` runs the teardown hook at most once; leaving an
    ``async with`` block always calls it. A stream with a teardown hook that is
    garbage-collected without being closed emits ``ResourceWarning``.
    """

    def __init__(
        self,
        source: OutputSource,
        finished: Awaitable[ExitOutcome] | None = None,
        *,
        close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._source = source
        self._finished = finished
        self._close = close
        self._consumed = False
        self._closed = False

    @classmethod
    def from_handle(cls, handle: ExecutionHandle) -> OutputStream:
        return cls(handle.output, handle.completion, close=handle.close)

    @property
    def finished(self) -> asyncio.Future[ExitOutcome]:
        if not isinstance(self._finished, asyncio.Future):
            self._finished = asyncio.ensure_future(
                self._finished if self._finished is not None else _exited_cleanly()
            )
        return self._finished

    @property
    def consumed(self) -> bool:
        return self._consumed

    def __aiter__(self) -> AsyncGenerator[bytes, None]:
        if self._consumed:
            raise StreamConsumedError()
        self._consumed = True
        return self._chunks()

    async def _chunks(self) -> AsyncGenerator[bytes, None]:
        read = getattr(self._source, "read", None)
        if read is not None:
            while True:
                chunk = await read(CHUNK_SIZE)
                if not chunk:
                    return
                yield _as_bytes(chunk)
        else:
            async for chunk in self._source:  # type: ignore[union-attr]
                if chunk:
                    yield _as_bytes(chunk)

    @overload
    async def collect(
        self, max_bytes: int = ..., *, as_text: Literal[False] = ...
    ) -> bytes: ...

    @overload
    async def collect(self, max_bytes: int = ..., *, as_text: Literal[True]) -> str: ...

    async def collect(
        self,
        max_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        *,
        as_text: bool = False,
    ) -> bytes | str:
        """Drain the stream into memory, tearing it down on any exit path.

        Raises ``OutputLimitError`` once more than `max_bytes` arrive.
        """

        chunks: list[bytes] = []
        total = 0
        try:
            async with contextlib.aclosing(self.__aiter__()) as source:
                async for chunk in source:
                    total += len(chunk)
                    if total > max_bytes:
                        logger.warning(
                            "Command output exceeded buffer limit.",
                            max_bytes=max_bytes,
                        )
                        raise OutputLimitError(max_bytes)
                    chunks.append(chunk)
        finally:
            await self.aclose()

        data = b"".join(chunks)
        if as_text:
            return data.decode("utf-8", errors="replace")
        return data

    async def aclose(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._close is not None:
            await self._close()

    def __del__(self) -> None:
        if self._close is not None and not self._closed:
            warnings.warn(
                f"unclosed {self!r}; use 'async with' or call aclose()",
                ResourceWarning,
                stacklevel=2,
            )

    async def __aenter__(self) -> OutputStream:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()
