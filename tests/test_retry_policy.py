"""Retry policy tests."""

from __future__ import annotations

import pytest

from gitplumb.lib.config.settings import PlumbingConfig
from gitplumb.lib.exec.errors import InputError
from gitplumb.lib.exec.retry import RetryPolicy


def test_default_policy_values() -> None:
    policy = RetryPolicy.default()

    assert policy.max_attempts == 3
    assert policy.initial_delay_seconds == pytest.approx(0.1)
    assert policy.backoff_factor == pytest.approx(2.0)
    assert policy.total_budget_seconds is None


def test_none_policy_allows_a_single_attempt() -> None:
    assert RetryPolicy.none().max_attempts == 1


@pytest.mark.parametrize(
    ("attempt", "expected"),
    [
        pytest.param(0, 0.0, id="zero"),
        pytest.param(1, 0.0, id="first"),
        pytest.param(2, 1.0, id="second"),
        pytest.param(3, 2.0, id="third"),
        pytest.param(5, 8.0, id="fifth"),
    ],
)
def test_delay_grows_exponentially(attempt: int, expected: float) -> None:
    policy = RetryPolicy(max_attempts=5, initial_delay_seconds=0.5, backoff_factor=2.0)

    assert policy.delay(attempt) == pytest.approx(expected)


def test_from_config_copies_retry_settings() -> None:
    config = PlumbingConfig(
        max_attempts=5,
        initial_delay_seconds=0.25,
        backoff_factor=3.0,
        total_budget_seconds=4.0,
    )

    assert RetryPolicy.from_config(config) == RetryPolicy(
        max_attempts=5,
        initial_delay_seconds=0.25,
        backoff_factor=3.0,
        total_budget_seconds=4.0,
    )


@pytest.mark.parametrize(
    "kwargs",
    [
        pytest.param({"max_attempts": 0}, id="zero-attempts"),
        pytest.param({"max_attempts": 1.5}, id="float-attempts"),
        pytest.param({"max_attempts": True}, id="bool-attempts"),
        pytest.param({"initial_delay_seconds": -0.1}, id="negative-delay"),
        pytest.param({"backoff_factor": 0}, id="zero-factor"),
        pytest.param({"total_budget_seconds": 0}, id="zero-budget"),
    ],
)
def test_invalid_policy_is_rejected(kwargs: dict[str, object]) -> None:
    with pytest.raises(InputError):
        RetryPolicy(**kwargs)  # type: ignore[arg-type]
