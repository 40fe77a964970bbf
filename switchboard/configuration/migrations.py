from __future__ import annotations

import copy
from dataclasses import dataclass, field
from functools import cmp_to_key
from typing import Any, Callable, Literal, Mapping, Sequence

from ..core.logging import get_logger
from ..exceptions import ConfigValidationError, MigrationGap
from .versions import compare_versions, is_valid_version

logger = get_logger(name=__name__)

Document = dict[str, Any]
Transform = Callable[[Document], Document]

CURRENT_SCHEMA_VERSION = "1.0.0"
BASELINE_VERSION = "0.0.0"
_MIGRATION_ORDER = cmp_to_key(compare_versions)


@dataclass(slots=True, frozen=True)
class Migration:
    version: str
    description: str
    up: Transform
    down: Transform | None = None


@dataclass(slots=True, frozen=True)
class MigrationResult:
    document: Document
    direction: Literal["upgrade", "downgrade"]
    from_version: str
    to_version: str
    applied: tuple[str, ...] = ()
    gaps: tuple[str, ...] = field(default_factory=tuple)

    @property
    def complete(self) -> bool:
        return not self.gaps

    @property
    def changed(self) -> bool:
        return bool(self.applied) or self.from_version != self.to_version

    def raise_for_gaps(self) -> "MigrationResult":
        if self.gaps:
            raise MigrationGap(self.gaps, direction=self.direction)
        return self


def _server_section_key(document: Mapping[str, Any]) -> str:
    return "mcpServers" if "mcpServers" in document else "servers"


def _map_servers(document: Document, update: Callable[[dict[str, Any]], dict[str, Any]]) -> Document:
    key = _server_section_key(document)
    servers = document.get(key)
    if not isinstance(servers, Mapping):
        return document
    updated = {
        name: update(dict(server)) if isinstance(server, Mapping) else server
        for name, server in servers.items()
    }
    return {**document, key: updated}


def _rename_servers_up(document: Document) -> Document:
    if "servers" in document and "mcpServers" not in document:
        migrated = {key: value for key, value in document.items() if key != "servers"}
        migrated["mcpServers"] = document["servers"]
        return migrated
    return document


def _rename_servers_down(document: Document) -> Document:
    if "mcpServers" in document and "servers" not in document:
        downgraded = {key: value for key, value in document.items() if key != "mcpServers"}
        downgraded["servers"] = document["mcpServers"]
        return downgraded
    return document


def _default_enabled(server: dict[str, Any]) -> dict[str, Any]:
    if server.get("enabled") is None:
        server["enabled"] = True
    return server


def _default_args_env(server: dict[str, Any]) -> dict[str, Any]:
    if server.get("args") is None:
        server["args"] = []
    if server.get("env") is None:
        server["env"] = {}
    return server


def _stamp_version(document: Document) -> Document:
    if not document.get("version"):
        return {"version": "1.0.0", **{key: value for key, value in document.items() if key != "version"}}
    return document


MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version="0.1.0",
        description="Rename the legacy 'servers' section to 'mcpServers'",
        up=_rename_servers_up,
        down=_rename_servers_down,
    ),
    Migration(
        version="0.2.0",
        description="Default 'enabled' to true for every backend",
        up=lambda document: _map_servers(document, _default_enabled),
    ),
    Migration(
        version="0.3.0",
        description="Normalize missing 'args' and 'env' to empty values",
        up=lambda document: _map_servers(document, _default_args_env),
    ),
    Migration(
        version="1.0.0",
        description="Add the top-level 'version' field",
        up=_stamp_version,
    ),
)


def _version_key(migration: Migration) -> object:
    return _MIGRATION_ORDER(migration.version)


def _target_version(version: str) -> str:
    if not is_valid_version(version):
        raise ConfigValidationError(f"Invalid target version: {version!r}")
    return version.strip()


def latest_version(migrations: Sequence[Migration] = MIGRATIONS) -> str:
    newest = BASELINE_VERSION
    for migration in migrations:
        if compare_versions(migration.version, newest) > 0:
            newest = migration.version
    return newest


def document_version(document: Mapping[str, Any], *, default: str) -> str:
    version = document.get("version")
    if version in (None, ""):
        return default
    if not is_valid_version(version):
        raise ConfigValidationError(f"Invalid configuration version: {version!r}")
    return str(version).strip()


def migrate_config(
    document: Mapping[str, Any],
    target_version: str = CURRENT_SCHEMA_VERSION,
    *,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> MigrationResult:
    """Apply every forward migration in (current, target], oldest first.

    A document without a version is treated as the baseline. The result is
    stamped with ``target_version``; a target newer than every known migration
    is reported in ``gaps`` instead of being passed off as migrated.
    """

    target_version = _target_version(target_version)
    current = document_version(document, default=BASELINE_VERSION)
    migrated: Document = copy.deepcopy(dict(document))
    if compare_versions(current, target_version) >= 0:
        return MigrationResult(migrated, "upgrade", current, current)

    applicable = sorted(
        (
            migration
            for migration in migrations
            if compare_versions(migration.version, current) > 0
            and compare_versions(migration.version, target_version) <= 0
        ),
        key=_version_key,
    )
    applied: list[str] = []
    for migration in applicable:
        logger.info("config_migration_applied", version=migration.version, description=migration.description)
        migrated = migration.up(migrated)
        applied.append(migration.version)

    gaps: tuple[str, ...] = ()
    if compare_versions(target_version, latest_version(migrations)) > 0:
        gaps = (target_version,)
        logger.warning("config_migration_gap", direction="upgrade", versions=list(gaps))
    migrated["version"] = target_version
    return MigrationResult(migrated, "upgrade", current, target_version, tuple(applied), gaps)


def downgrade_config(
    document: Mapping[str, Any],
    target_version: str,
    *,
    migrations: Sequence[Migration] = MIGRATIONS,
) -> MigrationResult:
    """Apply backward transforms in (target, current], newest first.

    Migrations without a backward transform are skipped and listed in
    ``gaps`` so callers can tell a lossy downgrade from a complete one.
    """

    target_version = _target_version(target_version)
    current = document_version(document, default=CURRENT_SCHEMA_VERSION)
    downgraded: Document = copy.deepcopy(dict(document))
    if compare_versions(current, target_version) <= 0:
        return MigrationResult(downgraded, "downgrade", current, current)

    applicable = sorted(
        (
            migration
            for migration in migrations
            if compare_versions(migration.version, target_version) > 0
            and compare_versions(migration.version, current) <= 0
        ),
        key=_version_key,
        reverse=True,
    )
    applied: list[str] = []
    gaps: list[str] = []
    for migration in applicable:
        if migration.down is None:
            gaps.append(migration.version)
            continue
        logger.info("config_downgrade_applied", version=migration.version, description=migration.description)
        downgraded = migration.down(downgraded)
        applied.append(migration.version)
    if gaps:
        logger.warning("config_migration_gap", direction="downgrade", versions=gaps)
    downgraded["version"] = target_version
    return MigrationResult(downgraded, "downgrade", current, target_version, tuple(applied), tuple(gaps))


__all__ = [
    "BASELINE_VERSION",
    "CURRENT_SCHEMA_VERSION",
    "MIGRATIONS",
    "Migration",
    "MigrationResult",
    "document_version",
    "downgrade_config",
    "latest_version",
    "migrate_config",
]
