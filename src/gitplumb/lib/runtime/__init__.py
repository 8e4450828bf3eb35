"""Process runtime adapters."""

from gitplumb.lib.runtime.adapter import RuntimeAdapter
from gitplumb.lib.runtime.asyncio_runtime import ASYNCIO_RUNTIME_ID, AsyncioRuntime
from gitplumb.lib.runtime.registry import RuntimeRegistry, detect_runtime
from gitplumb.lib.runtime.thread_runtime import THREAD_RUNTIME_ID, ThreadedRuntime

__all__ = [
    "ASYNCIO_RUNTIME_ID",
    "THREAD_RUNTIME_ID",
    "AsyncioRuntime",
    "RuntimeAdapter",
    "RuntimeRegistry",
    "ThreadedRuntime",
    "detect_runtime",
]
