"""Child environment policy tests."""

from __future__ import annotations

import pytest

from gitplumb.lib.exec.env import (
    DEFAULT_ALLOWED_ENV,
    EnvironmentPolicy,
    filter_environment,
    is_denied_env_var,
)


def test_filter_keeps_only_allow_listed_names() -> None:
    raw = {
        "PATH": "/usr/bin",
        "HOME": "/home/alice",
        "GIT_AUTHOR_NAME": "Alice",
        "LC_ALL": "C",
        "AWS_SECRET_ACCESS_KEY": "nope",
    }

    assert filter_environment(raw) == {
        "PATH": "/usr/bin",
        "GIT_AUTHOR_NAME": "Alice",
        "LC_ALL": "C",
    }


def test_filter_compares_names_case_insensitively() -> None:
    assert filter_environment({"Path": "C:\\Windows", "SystemRoot": "C:\\Windows"}) == {
        "Path": "C:\\Windows",
        "SystemRoot": "C:\\Windows",
    }


@pytest.mark.parametrize(
    "name",
    [
        pytest.param("GIT_CONFIG_PARAMETERS", id="parameters"),
        pytest.param("GIT_CONFIG_COUNT", id="count"),
        pytest.param("GIT_CONFIG_KEY_0", id="key-prefix"),
        pytest.param("git_config_value_3", id="value-prefix-lowercase"),
        pytest.param("GIT_DIR", id="git-dir"),
        pytest.param("GIT_EXEC_PATH", id="exec-path"),
        pytest.param("GIT_SSH_COMMAND", id="ssh-command"),
    ],
)
def test_injection_variables_are_denied_even_when_allow_listed(name: str) -> None:
    policy = EnvironmentPolicy.extended([name])

    assert is_denied_env_var(name)
    assert policy.filter({name: "x", "PATH": "/bin"}) == {"PATH": "/bin"}


def test_extended_policy_passes_extra_names() -> None:
    policy = EnvironmentPolicy.extended(["gnupghome"])

    assert policy.filter({"GNUPGHOME": "/keys", "HOME": "/home"}) == {"GNUPGHOME": "/keys"}
    assert DEFAULT_ALLOWED_ENV < policy.allowed


def test_merge_applies_overrides_before_filtering() -> None:
    policy = EnvironmentPolicy()

    merged = policy.merge(
        {"PATH": "/usr/bin", "LANG": "en_US.UTF-8"},
        {"LANG": "C", "GIT_DIR": "/tmp/evil", "GIT_COMMITTER_DATE": "1700000000 +0000"},
    )

    assert merged == {
        "PATH": "/usr/bin",
        "LANG": "C",
        "GIT_COMMITTER_DATE": "1700000000 +0000",
    }


def test_filter_handles_missing_environment() -> None:
    assert filter_environment(None) == {}
    assert EnvironmentPolicy().merge({}, None) == {}
