from __future__ import annotations

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..core.logging import get_logger
from .migrations import CURRENT_SCHEMA_VERSION
from .rules import (
    SERVER_FIELD_RULES,
    command_token,
    forbidden_path_prefix,
    has_path_traversal,
    has_shell_metacharacters,
    is_forbidden_command,
    sensitive_keyword,
)
from .versions import coerce_version, is_valid_version

logger = get_logger(name=__name__)


@dataclass(slots=True, frozen=True)
class ValidationIssue:
    path: str
    message: str
    suggestion: str | None = None
    value: Any = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"path": self.path, "message": self.message}
        if self.suggestion:
            payload["suggestion"] = self.suggestion
        if self.value is not None:
            payload["value"] = self.value
        return payload


@dataclass(slots=True)
class ValidationReport:
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    normalized: dict[str, Any] | None = None

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, path: str, message: str, *, suggestion: str | None = None, value: Any = None) -> None:
        self.errors.append(ValidationIssue(path, message, suggestion, value))

    def warn(self, path: str, message: str, *, suggestion: str | None = None) -> None:
        self.warnings.append(ValidationIssue(path, message, suggestion))

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"valid": self.valid}
        if self.errors:
            payload["errors"] = [issue.to_payload() for issue in self.errors]
        if self.warnings:
            payload["warnings"] = [issue.to_payload() for issue in self.warnings]
        if self.normalized is not None:
            payload["normalized"] = self.normalized
        return payload


@dataclass(slots=True)
class RepairResult:
    document: dict[str, Any]
    changes: list[str] = field(default_factory=list)

    @property
    def repaired(self) -> bool:
        return bool(self.changes)


def _servers_section(document: Mapping[str, Any]) -> tuple[str, Any]:
    if "mcpServers" in document:
        return "mcpServers", document["mcpServers"]
    if "servers" in document:
        return "servers", document["servers"]
    return "mcpServers", None


def validate_config(document: Any) -> ValidationReport:
    """Check a configuration document for structural and semantic safety.

    Errors make the document invalid; warnings are advisory only. When the
    document is valid the report carries a normalized copy with defaults
    applied and the legacy ``servers`` key renamed.
    """

    report = ValidationReport()
    if not isinstance(document, Mapping):
        report.error("", "Configuration must be a JSON object")
        return report

    version = document.get("version")
    if version is not None and not is_valid_version(version):
        report.error(
            "version",
            f"Version '{version}' is not a dot-separated numeric version",
            suggestion=f"Use a version such as '{CURRENT_SCHEMA_VERSION}'",
            value=version,
        )

    section, servers = _servers_section(document)
    if servers is None:
        report.error(section, "Required field 'mcpServers' is missing", suggestion="Add an 'mcpServers' object")
        servers = {}
    elif not isinstance(servers, Mapping):
        report.error(section, "'mcpServers' must be an object", value=servers)
        servers = {}

    for name, server in servers.items():
        _validate_server(report, f"{section}.{name}", server)

    _validate_profiles(report, document, servers)

    if report.valid:
        report.normalized = _normalize(document)
    else:
        logger.info("config_validation_failed", errors=len(report.errors), warnings=len(report.warnings))
    return report


def _validate_server(report: ValidationReport, path: str, server: Any) -> None:
    if not isinstance(server, Mapping):
        report.error(path, "Backend configuration must be an object", value=server)
        return

    command = server.get("command")
    if command is None:
        report.error(
            f"{path}.command",
            "Required field 'command' is missing",
            suggestion="Add the executable that starts this backend",
        )
    elif not isinstance(command, str) or not command.strip():
        report.error(f"{path}.command", "'command' must be a non-empty string", value=command)
    else:
        if is_forbidden_command(command):
            report.error(
                f"{path}.command",
                f"Dangerous command '{command_token(command)}' is not allowed",
                suggestion="Use the executable of an MCP server instead",
                value=command,
            )
        prefix = forbidden_path_prefix(command)
        if prefix is not None:
            report.error(
                f"{path}.command",
                f"Commands under '{prefix}' are not allowed",
                value=command,
            )
        if has_shell_metacharacters(command):
            report.warn(
                f"{path}.command",
                "Command contains shell metacharacters",
                suggestion="Move arguments into 'args' and avoid shell syntax",
            )

    args = server.get("args")
    if args is not None:
        if not isinstance(args, Sequence) or isinstance(args, (str, bytes)):
            report.error(f"{path}.args", "'args' must be a list of strings", value=args)
        else:
            for index, arg in enumerate(args):
                arg_path = f"{path}.args[{index}]"
                if not isinstance(arg, str):
                    report.error(arg_path, "Arguments must be strings", value=arg)
                    continue
                if has_shell_metacharacters(arg):
                    report.warn(
                        arg_path,
                        "Argument contains shell metacharacters",
                        suggestion="Review the argument and escape it if needed",
                    )
                if has_path_traversal(arg):
                    report.warn(
                        arg_path,
                        "Argument contains a parent-directory traversal",
                        suggestion="Use an absolute or project-relative path",
                    )

    env = server.get("env")
    if env is not None:
        if not isinstance(env, Mapping):
            report.error(f"{path}.env", "'env' must be an object", value=env)
        else:
            for key, value in env.items():
                env_path = f"{path}.env.{key}"
                if sensitive_keyword(str(key)):
                    report.warn(
                        env_path,
                        f"Environment variable '{key}' may hold a secret",
                        suggestion="Keep secrets in an env file or secret manager",
                    )
                if not isinstance(value, str):
                    report.error(env_path, "Environment values must be strings", value=value)

    enabled = server.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        report.error(f"{path}.enabled", "'enabled' must be a boolean", value=enabled)


def _validate_profiles(report: ValidationReport, document: Mapping[str, Any], servers: Mapping[str, Any]) -> None:
    profiles = document.get("profiles")
    if profiles is None:
        profiles = {}
    elif not isinstance(profiles, Mapping):
        report.error("profiles", "'profiles' must be an object", value=profiles)
        profiles = {}

    for profile_name, profile in profiles.items():
        if not isinstance(profile, Mapping):
            report.error(f"profiles.{profile_name}", "A profile must be an object", value=profile)
            continue
        for server_name, flag in profile.items():
            entry_path = f"profiles.{profile_name}.{server_name}"
            if not isinstance(flag, bool):
                report.error(entry_path, "Profile entries must be booleans", value=flag)
            if server_name not in servers:
                report.warn(
                    entry_path,
                    f"Profile references unknown backend '{server_name}'",
                    suggestion="Add the backend to 'mcpServers' or remove it from the profile",
                )

    active = document.get("activeProfile")
    if active is None:
        return
    if not isinstance(active, str):
        report.error("activeProfile", "'activeProfile' must be a string", value=active)
    elif active not in profiles:
        report.error(
            "activeProfile",
            f"Active profile '{active}' does not exist",
            suggestion="Pick one of the names under 'profiles'",
            value=active,
        )


def _normalize(document: Mapping[str, Any]) -> dict[str, Any]:
    normalized = copy.deepcopy(dict(document))
    _, servers = _servers_section(normalized)
    normalized.pop("servers", None)
    normalized.setdefault("version", CURRENT_SCHEMA_VERSION)
    normalized["mcpServers"] = {
        name: {
            "command": server["command"].strip(),
            "args": list(server.get("args") or []),
            "env": dict(server.get("env") or {}),
            "enabled": server.get("enabled", True),
        }
        for name, server in (servers or {}).items()
    }
    normalized.setdefault("profiles", {})
    return normalized


def repair_version(document: dict[str, Any], *, fallback: str | None) -> str | None:
    """Make ``document["version"]`` a usable version string, in place.

    Numbers become their decimal text. A missing or unusable version is set to
    ``fallback``, or removed when ``fallback`` is None so that migrations treat
    the document as unversioned. Returns the change made, if any.
    """

    raw = document.get("version")
    if raw in (None, ""):
        if fallback is None:
            document.pop("version", None)
            return None
        document["version"] = fallback
        return f"stamped missing version as {fallback}"
    coerced = coerce_version(raw)
    if coerced is not None:
        if coerced == raw:
            return None
        document["version"] = coerced
        return f"converted version {raw!r} to '{coerced}'"
    if fallback is None:
        del document["version"]
        return f"dropped invalid version {raw!r}"
    document["version"] = fallback
    return f"replaced invalid version {raw!r} with {fallback}"


def repair_config(document: Any) -> RepairResult:
    """Best-effort normalization of a structurally malformed document.

    Each field is handled by one rule regardless of the input's shape, and
    every change is recorded. Semantic problems (dangerous commands, missing
    commands) are left for :func:`validate_config` to report.
    """

    changes: list[str] = []
    if not isinstance(document, Mapping):
        changes.append("configuration was not an object; replaced with an empty configuration")
        repaired: dict[str, Any] = {}
    else:
        repaired = copy.deepcopy(dict(document))

    if "servers" in repaired:
        legacy = repaired.pop("servers")
        if "mcpServers" not in repaired:
            repaired["mcpServers"] = legacy
            changes.append("renamed legacy 'servers' to 'mcpServers'")
        elif isinstance(legacy, Mapping) and isinstance(repaired["mcpServers"], Mapping):
            merged = dict(legacy)
            merged.update(repaired["mcpServers"])
            repaired["mcpServers"] = merged
            changes.append("merged legacy 'servers' into 'mcpServers'")
        else:
            changes.append("dropped legacy 'servers' because 'mcpServers' is present")

    version_change = repair_version(repaired, fallback=CURRENT_SCHEMA_VERSION)
    if version_change is not None:
        changes.append(version_change)

    servers = repaired.get("mcpServers")
    if not isinstance(servers, Mapping):
        if servers is not None:
            changes.append("mcpServers was not an object; replaced with an empty object")
        else:
            changes.append("mcpServers missing; set to an empty object")
        servers = {}
    repaired_servers: dict[str, Any] = {}
    for name, server in servers.items():
        if not isinstance(server, Mapping):
            repaired_servers[name] = server
            continue
        entry = dict(server)
        for rule in SERVER_FIELD_RULES:
            change = rule.repair(entry)
            if change is not None:
                changes.append(f"{name}: {change}")
        repaired_servers[name] = entry
    repaired["mcpServers"] = repaired_servers

    profiles = repaired.get("profiles")
    if profiles is not None and not isinstance(profiles, Mapping):
        repaired["profiles"] = {}
        changes.append("profiles was not an object; replaced with an empty object")

    if changes:
        logger.info("config_repaired", changes=len(changes))
    return RepairResult(repaired, changes)


__all__ = [
    "RepairResult",
    "ValidationIssue",
    "ValidationReport",
    "repair_config",
    "repair_version",
    "validate_config",
]
