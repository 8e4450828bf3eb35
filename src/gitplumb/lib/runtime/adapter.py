"""Runtime adapter protocol and shared process plumbing."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from gitplumb.lib.domain import ExecutionHandle, Invocation
    from gitplumb.lib.types import RuntimeId

CHUNK_SIZE = 64 * 1024


class RuntimeAdapter(Protocol):
    """Spawns one invocation with a host environment's native process API."""

    @property
    def id(self) -> RuntimeId: ...

    async def run(self, invocation: Invocation) -> ExecutionHandle: ...


class BoundedBuffer:
    """Byte buffer that silently drops everything past `limit`."""

    __slots__ = ("_data", "dropped", "limit")

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.dropped = 0
        self._data = bytearray()

    def extend(self, chunk: bytes) -> None:
        remaining = self.limit - len(self._data)
        if remaining > 0:
            self._data.extend(chunk[:remaining])
        self.dropped += max(0, len(chunk) - max(remaining, 0))

    def text(self) -> str:
        return self._data.decode("utf-8", errors="replace")
