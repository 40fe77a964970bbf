from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from ..core.logging import get_logger
from ..exceptions import ConfigValidationError
from .loader import load_config_document, save_config_document
from .validator import RepairResult

logger = get_logger(name=__name__)

Document = dict[str, Any]


@dataclass(slots=True, frozen=True)
class ProfileConsistency:
    issues: tuple[str, ...] = ()

    @property
    def consistent(self) -> bool:
        return not self.issues


def _servers(document: Mapping[str, Any]) -> Mapping[str, Any]:
    servers = document.get("mcpServers")
    if not isinstance(servers, Mapping):
        raise ConfigValidationError("Configuration has no 'mcpServers' object")
    return servers


def _profiles(document: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    """Profiles that are objects; anything else is left for the validator."""
    profiles = document.get("profiles")
    if not isinstance(profiles, Mapping):
        return {}
    return {name: profile for name, profile in profiles.items() if isinstance(profile, dict)}


def _require_server(document: Mapping[str, Any], server_name: str) -> None:
    if not server_name:
        raise ConfigValidationError("A backend name is required")
    if server_name not in _servers(document):
        raise ConfigValidationError(f"Backend '{server_name}' does not exist")


def check_profile_consistency(document: Mapping[str, Any]) -> ProfileConsistency:
    """Find profile entries for unknown backends and disabled backends switched on."""

    servers = _servers(document)
    issues: list[str] = []
    for profile_name, profile in _profiles(document).items():
        for server_name in profile:
            if server_name not in servers:
                issues.append(f"profile '{profile_name}' references unknown backend '{server_name}'")
        for server_name, server in servers.items():
            if _disabled(server) and profile.get(server_name) is True:
                issues.append(f"profile '{profile_name}' enables disabled backend '{server_name}'")
    return ProfileConsistency(tuple(issues))


def _disabled(server: Any) -> bool:
    return isinstance(server, Mapping) and server.get("enabled") is False


def repair_profile_consistency(document: Mapping[str, Any]) -> RepairResult:
    repaired: Document = copy.deepcopy(dict(document))
    servers = _servers(repaired)
    changes: list[str] = []
    for profile_name, profile in _profiles(repaired).items():
        for server_name in list(profile):
            if server_name not in servers:
                del profile[server_name]
                changes.append(f"removed unknown backend '{server_name}' from profile '{profile_name}'")
        for server_name, server in servers.items():
            if _disabled(server) and profile.get(server_name) is True:
                profile[server_name] = False
                changes.append(f"disabled backend '{server_name}' in profile '{profile_name}'")
    if changes:
        logger.info("profiles_repaired", changes=len(changes))
    return RepairResult(repaired, changes)


def rename_server(
    document: Mapping[str, Any],
    old_name: str,
    new_name: str,
    *,
    preserve_states: bool = True,
) -> Document:
    """Rename a backend and every profile entry that refers to it.

    Backend order is kept. Without ``preserve_states`` the renamed entry is
    switched on in each profile that listed it.
    """

    if not new_name:
        raise ConfigValidationError("A new backend name is required")
    _require_server(document, old_name)
    if old_name != new_name and new_name in _servers(document):
        raise ConfigValidationError(f"Backend '{new_name}' already exists")

    renamed: Document = copy.deepcopy(dict(document))
    renamed["mcpServers"] = {
        (new_name if name == old_name else name): server for name, server in renamed["mcpServers"].items()
    }
    for profile in _profiles(renamed).values():
        if old_name in profile:
            state = profile.pop(old_name)
            profile[new_name] = state if preserve_states else True
    logger.info("backend_renamed", old_name=old_name, new_name=new_name)
    return renamed


def delete_server(document: Mapping[str, Any], server_name: str) -> Document:
    _require_server(document, server_name)
    remaining: Document = copy.deepcopy(dict(document))
    remaining["mcpServers"] = {
        name: server for name, server in remaining["mcpServers"].items() if name != server_name
    }
    for profile in _profiles(remaining).values():
        profile.pop(server_name, None)
    logger.info("backend_deleted", server=server_name)
    return remaining


def set_server_enabled(document: Mapping[str, Any], server_name: str, enabled: bool) -> Document:
    """Set a backend's ``enabled`` flag; disabling also switches it off in every profile listing it."""

    _require_server(document, server_name)
    updated: Document = copy.deepcopy(dict(document))
    server = updated["mcpServers"][server_name]
    if not isinstance(server, dict):
        raise ConfigValidationError(f"Backend '{server_name}' is not an object")
    server["enabled"] = enabled
    if not enabled:
        for profile in _profiles(updated).values():
            if server_name in profile:
                profile[server_name] = False
    return updated


def update_profile_states(
    document: Mapping[str, Any],
    profile_name: str,
    updates: Mapping[str, bool],
) -> Document:
    """Merge ``updates`` into a profile, creating it if needed.

    Entries for backends that do not exist are dropped from the result.
    """

    if not profile_name:
        raise ConfigValidationError("A profile name is required")
    invalid = [name for name, flag in updates.items() if not isinstance(flag, bool)]
    if invalid:
        raise ConfigValidationError(
            f"Profile entries must be booleans: {', '.join(invalid)}",
            errors=[{"path": f"profiles.{profile_name}.{name}", "message": "must be a boolean"} for name in invalid],
        )
    servers = _servers(document)
    updated: Document = copy.deepcopy(dict(document))
    profiles = updated.get("profiles")
    if not isinstance(profiles, dict):
        profiles = {}
        updated["profiles"] = profiles
    current = profiles.get(profile_name)
    merged = {**(current if isinstance(current, Mapping) else {}), **updates}
    profiles[profile_name] = {name: flag for name, flag in merged.items() if name in servers}
    return updated


class ProfileManager:
    """Applies profile operations to a configuration file.

    Every change loads and validates the file, applies one operation, and
    writes the result back atomically.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def _apply(self, operation: Callable[[Document], Document]) -> Document:
        loaded = load_config_document(self._path)
        updated = operation(loaded.document)
        save_config_document(self._path, updated)
        return updated

    def check_consistency(self) -> ProfileConsistency:
        return check_profile_consistency(load_config_document(self._path).document)

    def repair_consistency(self) -> RepairResult:
        result = repair_profile_consistency(load_config_document(self._path).document)
        if result.repaired:
            save_config_document(self._path, result.document)
        return result

    def rename_server(self, old_name: str, new_name: str, *, preserve_states: bool = True) -> Document:
        return self._apply(
            lambda document: rename_server(document, old_name, new_name, preserve_states=preserve_states)
        )

    def delete_server(self, server_name: str) -> Document:
        return self._apply(lambda document: delete_server(document, server_name))

    def set_server_enabled(self, server_name: str, enabled: bool) -> Document:
        return self._apply(lambda document: set_server_enabled(document, server_name, enabled))

    def update_profile_states(self, profile_name: str, updates: Mapping[str, bool]) -> Document:
        return self._apply(lambda document: update_profile_states(document, profile_name, updates))


__all__ = [
    "ProfileConsistency",
    "ProfileManager",
    "check_profile_consistency",
    "delete_server",
    "rename_server",
    "repair_profile_consistency",
    "set_server_enabled",
    "update_profile_states",
]
