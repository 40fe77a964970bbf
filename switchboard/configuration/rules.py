from __future__ import annotations

import posixpath
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Callable

# First command token (basename) that is never allowed to launch a backend.
FORBIDDEN_COMMANDS: frozenset[str] = frozenset(
    {
        # recursive / bulk deletion
        "rm",
        "rmdir",
        "del",
        "rd",
        "shred",
        # filesystem formatting and raw disk writes
        "mkfs",
        "format",
        "fdisk",
        "parted",
        "dd",
        "wipefs",
        # privilege escalation
        "sudo",
        "su",
        "doas",
        "pkexec",
        "runas",
        # process termination by name and host shutdown
        "kill",
        "killall",
        "pkill",
        "taskkill",
        "shutdown",
        "reboot",
        "halt",
        "poweroff",
    }
)

FORBIDDEN_COMMAND_PREFIXES: tuple[str, ...] = ("mkfs.",)

FORBIDDEN_PATH_PREFIXES: tuple[str, ...] = ("/etc", "/sys", "/proc", "/boot", "/dev")

SENSITIVE_ENV_KEYWORDS: tuple[str, ...] = ("PASSWORD", "SECRET", "TOKEN", "KEY", "CREDENTIAL")

SHELL_METACHARACTERS = re.compile(r"[;&|`$()<>]")
PATH_TRAVERSAL = re.compile(r"(?:^|[\\/])\.\.(?:[\\/]|$)")


def command_token(command: str) -> str:
    """Return the basename of the first whitespace-separated token of ``command``."""

    parts = command.strip().split()
    if not parts:
        return ""
    return posixpath.basename(parts[0].replace("\\", "/"))


def is_forbidden_command(command: str) -> bool:
    token = command_token(command).lower()
    if token.endswith(".exe"):
        token = token[: -len(".exe")]
    return token in FORBIDDEN_COMMANDS or token.startswith(FORBIDDEN_COMMAND_PREFIXES)


def forbidden_path_prefix(command: str) -> str | None:
    parts = command.strip().split()
    if not parts or not parts[0].startswith(("/", "\\")):
        return None
    normalized = posixpath.normpath(parts[0].replace("\\", "/"))
    for prefix in FORBIDDEN_PATH_PREFIXES:
        if normalized == prefix or normalized.startswith(prefix + "/"):
            return prefix
    return None


def sensitive_keyword(env_key: str) -> str | None:
    upper = env_key.upper()
    for keyword in SENSITIVE_ENV_KEYWORDS:
        if keyword in upper:
            return keyword
    return None


def has_shell_metacharacters(value: str) -> bool:
    return bool(SHELL_METACHARACTERS.search(value))


def has_path_traversal(value: str) -> bool:
    return bool(PATH_TRAVERSAL.search(value))


def _is_string_sequence_container(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


@dataclass(slots=True, frozen=True)
class FieldRule:
    """Default-and-repair rule for one backend field.

    ``accepts`` decides whether a present value keeps its shape; anything
    else (including an absent field) is replaced by ``default()``.
    """

    name: str
    accepts: Callable[[Any], bool]
    default: Callable[[], Any]
    description: str
    missing_description: str

    def repair(self, server: dict[str, Any]) -> str | None:
        if self.name in server and self.accepts(server[self.name]):
            return None
        present = self.name in server
        server[self.name] = self.default()
        return self.description if present else self.missing_description


SERVER_FIELD_RULES: tuple[FieldRule, ...] = (
    FieldRule(
        name="args",
        accepts=_is_string_sequence_container,
        default=list,
        description="args was not a list; reset to an empty list",
        missing_description="args missing; set to an empty list",
    ),
    FieldRule(
        name="env",
        accepts=lambda value: isinstance(value, Mapping),
        default=dict,
        description="env was not an object; reset to an empty object",
        missing_description="env missing; set to an empty object",
    ),
    FieldRule(
        name="enabled",
        accepts=lambda value: isinstance(value, bool),
        default=lambda: True,
        description="enabled was not a boolean; set to true",
        missing_description="enabled missing; set to true",
    ),
)


__all__ = [
    "FORBIDDEN_COMMANDS",
    "FORBIDDEN_PATH_PREFIXES",
    "FieldRule",
    "SENSITIVE_ENV_KEYWORDS",
    "SERVER_FIELD_RULES",
    "command_token",
    "forbidden_path_prefix",
    "has_path_traversal",
    "has_shell_metacharacters",
    "is_forbidden_command",
    "sensitive_keyword",
]
