from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from ..core.files import write_json_atomic
from ..core.logging import get_logger
from ..exceptions import ConfigValidationError
from .migrations import CURRENT_SCHEMA_VERSION, MigrationResult, migrate_config
from .validator import ValidationReport, repair_config, repair_version, validate_config

logger = get_logger(name=__name__)


@dataclass(slots=True)
class LoadedConfig:
    document: dict[str, Any]
    report: ValidationReport
    migration: MigrationResult
    changes: list[str] = field(default_factory=list)


def load_config_document(
    path: str | Path,
    *,
    target_version: str = CURRENT_SCHEMA_VERSION,
    strict: bool = True,
) -> LoadedConfig:
    """Read a gateway configuration file and bring it up to ``target_version``.

    An unusable ``version`` is fixed before migrating; then the document is
    migrated, anything still malformed is repaired, and the result is
    validated. With ``strict`` (the default) validation errors and migration
    gaps raise; otherwise they are returned on the report and migration result.
    """

    config_path = Path(path)
    raw = config_path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigValidationError(f"Configuration file {config_path} is not valid JSON: {exc}") from exc
    changes: list[str] = []
    if not isinstance(payload, dict):
        if strict:
            raise ConfigValidationError(f"Configuration file {config_path} must contain a JSON object")
        changes.append("configuration was not an object; replaced with an empty configuration")
        payload = {}
    version_change = repair_version(payload, fallback=None)
    if version_change is not None:
        changes.append(version_change)

    migration = migrate_config(payload, target_version)
    if strict:
        migration.raise_for_gaps()
    repair = repair_config(migration.document)
    changes.extend(repair.changes)
    report = validate_config(repair.document)
    if strict and not report.valid:
        raise ConfigValidationError(
            f"Configuration file {config_path} failed validation",
            errors=[issue.to_payload() for issue in report.errors],
        )

    document = report.normalized if report.normalized is not None else repair.document
    logger.info(
        "config_loaded",
        path=str(config_path),
        from_version=migration.from_version,
        to_version=migration.to_version,
        repairs=len(changes),
        warnings=len(report.warnings),
    )
    return LoadedConfig(document=document, report=report, migration=migration, changes=changes)


def save_config_document(path: str | Path, document: Mapping[str, Any]) -> ValidationReport:
    """Validate ``document`` and atomically write its normalized form."""

    report = validate_config(document)
    if not report.valid or report.normalized is None:
        raise ConfigValidationError(
            "Refusing to save an invalid configuration",
            errors=[issue.to_payload() for issue in report.errors],
        )
    write_json_atomic(Path(path), report.normalized)
    logger.info("config_saved", path=str(path), servers=len(report.normalized["mcpServers"]))
    return report


__all__ = ["LoadedConfig", "load_config_document", "save_config_document"]
