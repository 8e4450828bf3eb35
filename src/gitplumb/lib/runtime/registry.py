"""Runtime registry and startup runtime selection."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from gitplumb.lib.config.settings import PlumbingConfig
from gitplumb.lib.exec.errors import InputError
from gitplumb.lib.runtime.adapter import RuntimeAdapter
from gitplumb.lib.runtime.asyncio_runtime import ASYNCIO_RUNTIME_ID, AsyncioRuntime
from gitplumb.lib.runtime.thread_runtime import THREAD_RUNTIME_ID, ThreadedRuntime
from gitplumb.lib.types import RuntimeId

logger = structlog.get_logger(__name__)

RuntimeFactory = Callable[[PlumbingConfig], RuntimeAdapter]


def _asyncio_factory(config: PlumbingConfig) -> RuntimeAdapter:
    return AsyncioRuntime(
        max_stderr_bytes=config.max_stderr_bytes,
        kill_grace_seconds=config.kill_grace_seconds,
    )


def _thread_factory(config: PlumbingConfig) -> RuntimeAdapter:
    return ThreadedRuntime(
        max_stderr_bytes=config.max_stderr_bytes,
        kill_grace_seconds=config.kill_grace_seconds,
    )


def _empty_factories() -> dict[RuntimeId, RuntimeFactory]:
    return {}


@dataclass(slots=True)
class RuntimeRegistry:
    """Registry of runtime adapter factories keyed by RuntimeId."""

    _factories: dict[RuntimeId, RuntimeFactory] = field(default_factory=_empty_factories)

    @classmethod
    def with_defaults(cls) -> RuntimeRegistry:
        registry = cls()
        registry.register(ASYNCIO_RUNTIME_ID, _asyncio_factory)
        registry.register(THREAD_RUNTIME_ID, _thread_factory)
        return registry

    def register(self, runtime_id: str, factory: RuntimeFactory) -> None:
        self._factories[RuntimeId(runtime_id)] = factory

    def get(self, runtime_id: str, config: PlumbingConfig | None = None) -> RuntimeAdapter:
        """Build the adapter registered under `runtime_id`."""

        factory = self._factories.get(RuntimeId(runtime_id))
        if factory is None:
            raise InputError(
                f"Unknown runtime '{runtime_id}'",
                "RuntimeRegistry.get",
                {"runtime": runtime_id, "available": list(self.ids())},
            )
        return factory(config or PlumbingConfig())

    def ids(self) -> tuple[RuntimeId, ...]:
        return tuple(sorted(self._factories))

    def __contains__(self, runtime_id: object) -> bool:
        return runtime_id in self._factories


def _loop_supports_subprocesses() -> bool:
    if sys.platform != "win32":
        return True
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        policy = asyncio.get_event_loop_policy()
        return isinstance(policy, asyncio.WindowsProactorEventLoopPolicy)
    return isinstance(loop, asyncio.ProactorEventLoop)


def detect_runtime(config: PlumbingConfig | None = None) -> RuntimeId:
    """Pick the runtime id once at startup.

    An explicit ``runtime`` setting (``GITPLUMB_RUNTIME``) always wins.
    Otherwise Windows selector loops, which cannot spawn subprocesses, get the
    threaded runtime and everything else uses asyncio's native transport.
    """

    if config is not None and config.runtime:
        return RuntimeId(config.runtime)
    if _loop_supports_subprocesses():
        return ASYNCIO_RUNTIME_ID
    logger.debug("Event loop cannot spawn subprocesses; using threaded runtime.")
    return THREAD_RUNTIME_ID
