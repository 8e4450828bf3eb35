"""Argument sanitization for git invocations."""

from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field

import structlog

from gitplumb.lib.config.settings import PlumbingConfig
from gitplumb.lib.exec.errors import (
    InputError,
    ProhibitedCommandError,
    ProhibitedFlagError,
    ValidationError,
)
from gitplumb.lib.types import CommandName

logger = structlog.get_logger(__name__)
_DEFAULT_CONFIG = PlumbingConfig()

_OPERATION = "CommandSanitizer.sanitize"
END_OF_OPTIONS = "--"

DEFAULT_ALLOWED_COMMANDS: tuple[str, ...] = (
    "rev-parse",
    "update-ref",
    "cat-file",
    "hash-object",
    "ls-tree",
    "commit-tree",
    "write-tree",
    "read-tree",
    "rev-list",
    "mktree",
    "unpack-objects",
    "symbolic-ref",
    "for-each-ref",
    "show-ref",
    "--version",
    "help",
)

# Global flags that relocate the repository, override configuration, or swap
# the helper binaries git shells out to.
PROHIBITED_FLAGS: frozenset[str] = frozenset(
    {
        "--git-dir",
        "--work-tree",
        "-c",
        "--config",
        "--config-env",
        "--exec-path",
        "--namespace",
        "--super-prefix",
        "--upload-pack",
        "--receive-pack",
        "--ext-cmd",
        "--template",
    }
)

RESTRICTED_COMMAND_FLAGS: Mapping[str, frozenset[str]] = {
    "cat-file": frozenset(
        {
            "-t",
            "-s",
            "-e",
            "-p",
            "--batch",
            "--batch-check",
            "--batch-command",
            "--batch-all-objects",
            "--buffer",
            "--unordered",
            "--follow-symlinks",
            "--allow-unknown-type",
            "-z",
        }
    ),
    "ls-tree": frozenset(
        {
            "-d",
            "-r",
            "-t",
            "-l",
            "-z",
            "--long",
            "--name-only",
            "--name-status",
            "--object-only",
            "--full-name",
            "--full-tree",
            "--abbrev",
            "--format",
        }
    ),
    "rev-list": frozenset(
        {
            "--all",
            "--max-count",
            "-n",
            "--skip",
            "--since",
            "--until",
            "--reverse",
            "--topo-order",
            "--date-order",
            "--parents",
            "--children",
            "--count",
            "--first-parent",
            "--no-walk",
            "--objects",
            "--boundary",
            "--not",
            "--ancestry-path",
        }
    ),
    "for-each-ref": frozenset(
        {
            "--format",
            "--sort",
            "--count",
            "--points-at",
            "--merged",
            "--no-merged",
            "--contains",
            "--no-contains",
            "--ignore-case",
        }
    ),
    "show-ref": frozenset(
        {
            "--head",
            "--heads",
            "--tags",
            "--branches",
            "-d",
            "--dereference",
            "-s",
            "--hash",
            "--abbrev",
            "--verify",
            "--exists",
            "-q",
            "--quiet",
        }
    ),
}


def _flag_name(token: str) -> str:
    return token.split("=", 1)[0]


@dataclass(slots=True)
class CommandRegistry:
    """Capability set of subcommands a sanitizer will let through."""

    _commands: set[str] = field(default_factory=set)

    @classmethod
    def with_defaults(cls) -> CommandRegistry:
        return cls.of(DEFAULT_ALLOWED_COMMANDS)

    @classmethod
    def of(cls, commands: Iterable[str]) -> CommandRegistry:
        registry = cls()
        for command in commands:
            registry.allow(command)
        return registry

    def allow(self, command: str) -> None:
        normalized = command.strip().lower()
        if not normalized:
            raise InputError("Command name must be a non-empty string.", "CommandRegistry.allow")
        self._commands.add(normalized)

    def revoke(self, command: str) -> None:
        self._commands.discard(command.strip().lower())

    def clear(self) -> None:
        self._commands.clear()

    def commands(self) -> tuple[str, ...]:
        return tuple(sorted(self._commands))

    def __contains__(self, command: object) -> bool:
        return isinstance(command, str) and command.lower() in self._commands


class SanitizerCache:
    """Bounded set of validated fingerprints; the oldest entry is evicted first."""

    __slots__ = ("_entries", "max_size")

    def __init__(self, max_size: int = 1000) -> None:
        if max_size < 1:
            raise InputError("Cache size must be >= 1.", "SanitizerCache")
        self.max_size = max_size
        self._entries: OrderedDict[str, None] = OrderedDict()

    def __contains__(self, fingerprint: object) -> bool:
        return fingerprint in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def add(self, fingerprint: str) -> None:
        if fingerprint in self._entries:
            return
        self._entries[fingerprint] = None
        while len(self._entries) > self.max_size:
            self._entries.popitem(last=False)

    def clear(self) -> None:
        self._entries.clear()


def fingerprint(args: Sequence[str]) -> str:
    """Cheap structural key for one argument sequence.

    NUL cannot appear inside a valid token, so joining on it is unambiguous.
    """

    return f"{len(args)}\x00" + "\x00".join(args)


class CommandSanitizer:
    """Validates git argument sequences before any process is spawned.

    Validation has no suspension points, so concurrent callers on one event
    loop can share an instance (and its cache) without locking.
    """

    def __init__(
        self,
        *,
        registry: CommandRegistry | None = None,
        max_args: int = _DEFAULT_CONFIG.max_args,
        max_arg_length: int = _DEFAULT_CONFIG.max_arg_length,
        max_total_length: int = _DEFAULT_CONFIG.max_total_arg_length,
        max_cache_size: int = _DEFAULT_CONFIG.sanitizer_cache_size,
    ) -> None:
        self.registry = registry if registry is not None else CommandRegistry.with_defaults()
        self.max_args = max_args
        self.max_arg_length = max_arg_length
        self.max_total_length = max_total_length
        self.cache = SanitizerCache(max_cache_size)

    @classmethod
    def from_config(
        cls,
        config: PlumbingConfig,
        *,
        registry: CommandRegistry | None = None,
    ) -> CommandSanitizer:
        return cls(
            registry=registry,
            max_args=config.max_args,
            max_arg_length=config.max_arg_length,
            max_total_length=config.max_total_arg_length,
            max_cache_size=config.sanitizer_cache_size,
        )

    def sanitize(self, args: Sequence[str]) -> tuple[str, ...]:
        """Return the validated arguments as an immutable tuple or raise."""

        if isinstance(args, str | bytes) or not isinstance(args, Sequence):
            raise InputError(
                "Arguments must be a sequence of strings.",
                _OPERATION,
                {"type": type(args).__name__},
            )
        if not args:
            raise InputError("Arguments cannot be empty.", _OPERATION)

        validated = tuple(args)
        self._check_shape(validated)

        key = fingerprint(validated)
        if key in self.cache:
            return validated

        self._check_prohibited_flags(validated)
        command = self._check_command(validated)
        self._check_command_flags(command, validated)

        self.cache.add(key)
        return validated

    def _check_shape(self, args: tuple[str, ...]) -> None:
        if len(args) > self.max_args:
            raise ValidationError(
                f"Too many arguments: {len(args)} > {self.max_args}",
                _OPERATION,
                {"count": len(args), "max_args": self.max_args},
            )

        total = 0
        for index, arg in enumerate(args):
            if not isinstance(arg, str):
                raise InputError(
                    "Each argument must be a string.",
                    _OPERATION,
                    {"index": index, "type": type(arg).__name__},
                )
            if "\x00" in arg:
                raise InputError(
                    "Arguments cannot contain NUL bytes.",
                    _OPERATION,
                    {"index": index},
                )
            if len(arg) > self.max_arg_length:
                raise ValidationError(
                    f"Argument {index} is too long: {len(arg)} > {self.max_arg_length}",
                    _OPERATION,
                    {"index": index, "length": len(arg)},
                )
            total += len(arg)

        if total > self.max_total_length:
            raise ValidationError(
                f"Arguments are too long in aggregate: {total} > {self.max_total_length}",
                _OPERATION,
                {"total_length": total},
            )

    def _check_command(self, args: tuple[str, ...]) -> CommandName:
        command = next((arg for arg in args if not arg.startswith("-")), args[0])
        if command not in self.registry:
            logger.warning("Rejected git command.", command=command)
            raise ProhibitedCommandError(command, _OPERATION)
        return CommandName(command.lower())

    def _check_prohibited_flags(self, args: tuple[str, ...]) -> None:
        for arg in args:
            if arg.startswith("-") and _flag_name(arg).lower() in PROHIBITED_FLAGS:
                logger.warning("Rejected prohibited git flag.", flag=arg)
                raise ProhibitedFlagError(arg, _OPERATION)

    def _check_command_flags(self, command: str, args: tuple[str, ...]) -> None:
        allowed = RESTRICTED_COMMAND_FLAGS.get(command)
        if allowed is None:
            return

        seen_command = False
        for arg in args:
            if arg == END_OF_OPTIONS:
                return
            if not seen_command:
                # Tokens up to and including the subcommand are global options.
                seen_command = arg.lower() == command
                continue
            if arg.startswith("-") and arg != "-" and _flag_name(arg) not in allowed:
                logger.warning("Rejected git flag for restricted command.", command=command, flag=arg)
                raise ProhibitedFlagError(
                    arg,
                    _OPERATION,
                    command=command,
                    remediation=(
                        f"'git {command}' only accepts: {', '.join(sorted(allowed))}. "
                        "Place positional data after '--'."
                    ),
                )
