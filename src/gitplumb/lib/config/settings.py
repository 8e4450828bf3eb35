"""Operational config loader for command execution."""

from __future__ import annotations

import logging
import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "GITPLUMB_CONFIG"
CONFIG_FILE_NAME = "gitplumb.toml"

DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
DEFAULT_MAX_STDERR_BYTES = 1024 * 1024


@dataclass(frozen=True, slots=True)
class PlumbingConfig:
    """Resolved operational configuration for gitplumb."""

    runtime: str | None = None
    max_attempts: int = 3
    initial_delay_seconds: float = 0.1
    backoff_factor: float = 2.0
    total_budget_seconds: float | None = None
    command_timeout_seconds: float = 120.0
    kill_grace_seconds: float = 2.0
    max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES
    max_stderr_bytes: int = DEFAULT_MAX_STDERR_BYTES
    max_args: int = 1000
    max_arg_length: int = 8192
    max_total_arg_length: int = 128 * 1024
    sanitizer_cache_size: int = 1000


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "retry": {
        "max_attempts": "max_attempts",
        "initial_delay_seconds": "initial_delay_seconds",
        "backoff_factor": "backoff_factor",
        "total_budget_seconds": "total_budget_seconds",
    },
    "timeouts": {
        "command_seconds": "command_timeout_seconds",
        "command_timeout_seconds": "command_timeout_seconds",
        "kill_grace_seconds": "kill_grace_seconds",
    },
    "limits": {
        "max_output_bytes": "max_output_bytes",
        "max_stderr_bytes": "max_stderr_bytes",
        "max_args": "max_args",
        "max_arg_length": "max_arg_length",
        "max_total_arg_length": "max_total_arg_length",
        "sanitizer_cache_size": "sanitizer_cache_size",
    },
    "runtime": {
        "name": "runtime",
        "id": "runtime",
    },
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "GITPLUMB_RUNTIME": "runtime",
    "GITPLUMB_MAX_ATTEMPTS": "max_attempts",
    "GITPLUMB_INITIAL_DELAY_SECONDS": "initial_delay_seconds",
    "GITPLUMB_BACKOFF_FACTOR": "backoff_factor",
    "GITPLUMB_TOTAL_BUDGET_SECONDS": "total_budget_seconds",
    "GITPLUMB_COMMAND_TIMEOUT_SECONDS": "command_timeout_seconds",
    "GITPLUMB_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "GITPLUMB_MAX_OUTPUT_BYTES": "max_output_bytes",
    "GITPLUMB_MAX_STDERR_BYTES": "max_stderr_bytes",
}

_INT_FIELDS = frozenset(
    {
        "max_attempts",
        "max_output_bytes",
        "max_stderr_bytes",
        "max_args",
        "max_arg_length",
        "max_total_arg_length",
        "sanitizer_cache_size",
    }
)
_FLOAT_FIELDS = frozenset(
    {
        "initial_delay_seconds",
        "backoff_factor",
        "total_budget_seconds",
        "command_timeout_seconds",
        "kill_grace_seconds",
    }
)
_TOP_LEVEL_KEYS = frozenset(_INT_FIELDS | _FLOAT_FIELDS | {"runtime"})


def _expected_type_name(field_name: str) -> str:
    if field_name in _INT_FIELDS:
        return "int"
    if field_name in _FLOAT_FIELDS:
        return "float"
    return "str"


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int):
            raise ValueError(
                f"Invalid value for '{source}': expected int, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return raw_value

    if expected == "float":
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return float(raw_value)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    normalized = raw_value.strip().lower()
    if not normalized:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    return normalized


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    expected = _expected_type_name(field_name)
    if expected == "int":
        try:
            return int(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected int, got {raw_value!r}."
            ) from error

    if expected == "float":
        try:
            return float(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error

    normalized = raw_value.strip().lower()
    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return normalized


def _default_values() -> dict[str, object]:
    defaults = PlumbingConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(PlumbingConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None and isinstance(raw_value, dict):
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown gitplumb config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue
        if section_map is not None and key != "runtime":
            raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")

        if key not in _TOP_LEVEL_KEYS:
            logger.warning("Ignoring unknown gitplumb config key '%s'.", key)
            continue
        values[key] = _coerce_file_value(field_name=key, raw_value=raw_value, source=key)


def _apply_env_overrides(values: dict[str, object], environ: Mapping[str, str]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = environ.get(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _require_positive(name: str, value: float) -> None:
    if value <= 0:
        raise ValueError(f"Invalid {name}: must be > 0, got {value!r}.")


def _build_config(values: dict[str, object]) -> PlumbingConfig:
    config = PlumbingConfig(
        runtime=cast("str | None", values["runtime"]),
        max_attempts=cast("int", values["max_attempts"]),
        initial_delay_seconds=cast("float", values["initial_delay_seconds"]),
        backoff_factor=cast("float", values["backoff_factor"]),
        total_budget_seconds=cast("float | None", values["total_budget_seconds"]),
        command_timeout_seconds=cast("float", values["command_timeout_seconds"]),
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        max_output_bytes=cast("int", values["max_output_bytes"]),
        max_stderr_bytes=cast("int", values["max_stderr_bytes"]),
        max_args=cast("int", values["max_args"]),
        max_arg_length=cast("int", values["max_arg_length"]),
        max_total_arg_length=cast("int", values["max_total_arg_length"]),
        sanitizer_cache_size=cast("int", values["sanitizer_cache_size"]),
    )
    if config.max_attempts < 1:
        raise ValueError(f"Invalid max_attempts: must be >= 1, got {config.max_attempts!r}.")
    if config.initial_delay_seconds < 0:
        raise ValueError("Invalid initial_delay_seconds: must be >= 0.")
    if config.total_budget_seconds is not None:
        _require_positive("total_budget_seconds", config.total_budget_seconds)
    _require_positive("command_timeout_seconds", config.command_timeout_seconds)
    _require_positive("max_output_bytes", config.max_output_bytes)
    _require_positive("max_stderr_bytes", config.max_stderr_bytes)
    _require_positive("sanitizer_cache_size", config.sanitizer_cache_size)
    return config


def resolve_config_path(
    environ: Mapping[str, str],
    base_dir: Path | None = None,
) -> Path:
    """Return `GITPLUMB_CONFIG` when set, else `gitplumb.toml` under `base_dir` (or cwd)."""

    explicit = environ.get(CONFIG_PATH_ENV, "").strip()
    if explicit:
        return Path(explicit).expanduser()
    return (base_dir if base_dir is not None else Path.cwd()) / CONFIG_FILE_NAME


def load_config(
    path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    base_dir: Path | None = None,
) -> PlumbingConfig:
    """Load the TOML config file and apply `GITPLUMB_*` overrides.

    Without an explicit `path` the file is located with `resolve_config_path`.
    A missing file leaves the defaults in place.
    """

    env = os.environ if environ is None else environ
    values = _default_values()
    if path is None:
        path = resolve_config_path(env, base_dir)
        if CONFIG_PATH_ENV in env and not path.is_file():
            logger.warning("Config file from %s not found: %s", CONFIG_PATH_ENV, path)
    if path.is_file():
        payload_obj = tomllib.loads(path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=path)

    _apply_env_overrides(values, env)
    return _build_config(values)
