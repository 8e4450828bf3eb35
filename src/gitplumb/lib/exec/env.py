"""Child environment policy for git processes."""

from __future__ import annotations

from collections.abc import Collection, Mapping
from dataclasses import dataclass

DEFAULT_ALLOWED_ENV: frozenset[str] = frozenset(
    {
        "PATH",
        # Windows needs this to bootstrap any child process.
        "SYSTEMROOT",
        "GIT_CONFIG_NOSYSTEM",
        "GIT_ATTR_NOSYSTEM",
        "GIT_AUTHOR_NAME",
        "GIT_AUTHOR_EMAIL",
        "GIT_AUTHOR_DATE",
        "GIT_COMMITTER_NAME",
        "GIT_COMMITTER_EMAIL",
        "GIT_COMMITTER_DATE",
        "LANG",
        "LANGUAGE",
        "LC_ALL",
        "LC_CTYPE",
        "LC_MESSAGES",
    }
)

# Variables that let the environment rewrite configuration, relocate the
# repository, or swap helper programs. Never passed through.
DENIED_ENV: frozenset[str] = frozenset(
    {
        "GIT_CONFIG",
        "GIT_CONFIG_PARAMETERS",
        "GIT_CONFIG_COUNT",
        "GIT_CONFIG_GLOBAL",
        "GIT_CONFIG_SYSTEM",
        "GIT_DIR",
        "GIT_WORK_TREE",
        "GIT_COMMON_DIR",
        "GIT_INDEX_FILE",
        "GIT_OBJECT_DIRECTORY",
        "GIT_ALTERNATE_OBJECT_DIRECTORIES",
        "GIT_NAMESPACE",
        "GIT_EXEC_PATH",
        "GIT_TEMPLATE_DIR",
        "GIT_SSH",
        "GIT_SSH_COMMAND",
        "GIT_ASKPASS",
        "GIT_EDITOR",
        "GIT_PAGER",
        "GIT_EXTERNAL_DIFF",
        "GIT_PROXY_COMMAND",
    }
)
DENIED_ENV_PREFIXES: tuple[str, ...] = ("GIT_CONFIG_KEY_", "GIT_CONFIG_VALUE_")


def is_denied_env_var(key: str) -> bool:
    normalized = key.upper()
    if normalized in DENIED_ENV:
        return True
    return any(normalized.startswith(prefix) for prefix in DENIED_ENV_PREFIXES)


@dataclass(frozen=True, slots=True)
class EnvironmentPolicy:
    """Allow-list of environment variable names passed to git."""

    allowed: frozenset[str] = DEFAULT_ALLOWED_ENV

    @classmethod
    def extended(cls, extra: Collection[str]) -> EnvironmentPolicy:
        """Return a policy that also passes `extra`; denied names stay denied."""

        return cls(allowed=DEFAULT_ALLOWED_ENV | {name.upper() for name in extra})

    def filter(self, raw_env: Mapping[str, str] | None) -> dict[str, str]:
        """Return the allow-listed subset of `raw_env`."""

        sanitized: dict[str, str] = {}
        if not raw_env:
            return sanitized
        for key, value in raw_env.items():
            if is_denied_env_var(key):
                continue
            if key.upper() in self.allowed:
                sanitized[key] = value
        return sanitized

    def merge(
        self,
        base_env: Mapping[str, str],
        env_overrides: Mapping[str, str] | None,
    ) -> dict[str, str]:
        """Apply overrides on top of `base_env`, then filter the result."""

        merged = dict(base_env)
        if env_overrides is not None:
            merged.update(env_overrides)
        return self.filter(merged)


DEFAULT_ENVIRONMENT_POLICY = EnvironmentPolicy()


def filter_environment(raw_env: Mapping[str, str] | None) -> dict[str, str]:
    """Filter one environment with the default policy."""

    return DEFAULT_ENVIRONMENT_POLICY.filter(raw_env)
