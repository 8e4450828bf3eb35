"""Retry policy value object."""

from __future__ import annotations

from dataclasses import dataclass

from gitplumb.lib.config.settings import PlumbingConfig
from gitplumb.lib.exec.errors import InputError


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Backoff and budget configuration for one logical command."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.1
    backoff_factor: float = 2.0
    total_budget_seconds: float | None = None

    def __post_init__(self) -> None:
        if isinstance(self.max_attempts, bool) or not isinstance(self.max_attempts, int):
            raise InputError("max_attempts must be an int.", "RetryPolicy")
        if self.max_attempts < 1:
            raise InputError("max_attempts must be at least 1.", "RetryPolicy")
        if self.initial_delay_seconds < 0:
            raise InputError("initial_delay_seconds must be >= 0.", "RetryPolicy")
        if self.backoff_factor <= 0:
            raise InputError("backoff_factor must be > 0.", "RetryPolicy")
        if self.total_budget_seconds is not None and self.total_budget_seconds <= 0:
            raise InputError("total_budget_seconds must be > 0 when provided.", "RetryPolicy")

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def none(cls) -> RetryPolicy:
        """Single attempt, no retries."""

        return cls(max_attempts=1)

    @classmethod
    def from_config(cls, config: PlumbingConfig) -> RetryPolicy:
        return cls(
            max_attempts=config.max_attempts,
            initial_delay_seconds=config.initial_delay_seconds,
            backoff_factor=config.backoff_factor,
            total_budget_seconds=config.total_budget_seconds,
        )

    def delay(self, attempt: int) -> float:
        """Seconds to wait before 1-based `attempt`; the first attempt never waits."""

        if attempt <= 1:
            return 0.0
        return (self.backoff_factor ** (attempt - 1)) * self.initial_delay_seconds
