from __future__ import annotations

import pytest

from switchboard.configuration.migrations import (
    MIGRATIONS,
    Migration,
    downgrade_config,
    latest_version,
    migrate_config,
)
from switchboard.configuration.versions import compare_versions, is_valid_version, parse_version
from switchboard.exceptions import ConfigValidationError, MigrationGap


def test_compare_versions_pads_missing_segments() -> None:
    assert compare_versions("1", "1.0.1") == -1
    assert compare_versions("1.0.0", "1") == 0
    assert compare_versions("0.10.0", "0.9.9") == 1
    assert parse_version(" 2.1 ") == (2, 1)
    assert not is_valid_version("1.x")
    with pytest.raises(ValueError):
        parse_version("v1.0")


def test_full_migration_from_baseline() -> None:
    document = {"servers": {"a": {"command": "node"}}, "version": "0.0.0"}

    result = migrate_config(document, "1.0.0")

    assert result.complete
    assert result.applied == ("0.1.0", "0.2.0", "0.3.0", "1.0.0")
    assert result.document["mcpServers"]["a"] == {"command": "node", "args": [], "env": {}, "enabled": True}
    assert result.document["version"] == "1.0.0"
    assert "servers" not in result.document
    # The caller's document is not mutated.
    assert document == {"servers": {"a": {"command": "node"}}, "version": "0.0.0"}


def test_unversioned_document_is_treated_as_baseline() -> None:
    result = migrate_config({"servers": {}})

    assert result.from_version == "0.0.0"
    assert result.to_version == "1.0.0"
    assert result.document == {"version": "1.0.0", "mcpServers": {}}


def test_partial_migration_applies_only_the_requested_range() -> None:
    result = migrate_config({"version": "0.1.0", "mcpServers": {"a": {"command": "node"}}}, "0.2.0")

    assert result.applied == ("0.2.0",)
    assert result.document["mcpServers"]["a"] == {"command": "node", "enabled": True}
    assert result.document["version"] == "0.2.0"


def test_already_current_document_is_unchanged() -> None:
    document = {"version": "1.0.0", "mcpServers": {}}

    result = migrate_config(document)

    assert not result.changed
    assert result.document == document


def test_target_beyond_known_migrations_is_a_gap() -> None:
    result = migrate_config({"version": "1.0.0", "mcpServers": {}}, "2.0.0")

    assert not result.complete
    assert result.gaps == ("2.0.0",)
    with pytest.raises(MigrationGap) as excinfo:
        result.raise_for_gaps()
    assert excinfo.value.direction == "upgrade"
    assert latest_version() == "1.0.0"


def test_downgrade_reports_migrations_without_backward_transform() -> None:
    result = downgrade_config({"version": "1.0.0", "mcpServers": {"a": {"command": "node"}}}, "0.0.0")

    assert result.applied == ("0.1.0",)
    assert result.gaps == ("1.0.0", "0.3.0", "0.2.0")
    assert result.document["servers"] == {"a": {"command": "node"}}
    assert "mcpServers" not in result.document
    assert result.document["version"] == "0.0.0"
    with pytest.raises(MigrationGap) as excinfo:
        result.raise_for_gaps()
    assert excinfo.value.versions == ("1.0.0", "0.3.0", "0.2.0")


def test_migrate_downgrade_migrate_round_trip() -> None:
    start = {"version": "0.0.0", "servers": {"a": {"command": "node"}}}
    intermediate = migrate_config(start, "0.1.0").document

    downgraded = downgrade_config(intermediate, "0.0.0")
    assert downgraded.complete
    again = migrate_config(downgraded.document, "0.1.0").document

    assert again == intermediate


def test_custom_chain_is_applied_in_version_order() -> None:
    seen: list[str] = []

    def record(version: str):
        def transform(document: dict) -> dict:
            seen.append(version)
            return document

        return transform

    chain = (
        Migration("0.10.0", "ten", record("0.10.0")),
        Migration("0.2.0", "two", record("0.2.0")),
        Migration("0.9.0", "nine", record("0.9.0")),
    )

    migrate_config({"version": "0.1.0"}, "0.10.0", migrations=chain)

    assert seen == ["0.2.0", "0.9.0", "0.10.0"]


def test_invalid_document_version_is_rejected() -> None:
    with pytest.raises(ConfigValidationError):
        migrate_config({"version": "latest", "mcpServers": {}})


def test_every_builtin_migration_has_a_description() -> None:
    assert all(migration.description for migration in MIGRATIONS)


def test_invalid_target_version_is_a_config_error() -> None:
    with pytest.raises(ConfigValidationError):
        migrate_config({"version": "0.1.0", "mcpServers": {}}, "next")
    with pytest.raises(ConfigValidationError):
        downgrade_config({"version": "1.0.0", "mcpServers": {}}, "v0")
