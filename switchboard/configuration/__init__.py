"""Gateway configuration validation, repair, and schema migrations."""

from .loader import LoadedConfig, load_config_document, save_config_document
from .migrations import (
    CURRENT_SCHEMA_VERSION,
    MIGRATIONS,
    Migration,
    MigrationResult,
    downgrade_config,
    latest_version,
    migrate_config,
)
from .profiles import (
    ProfileConsistency,
    ProfileManager,
    check_profile_consistency,
    delete_server,
    rename_server,
    repair_profile_consistency,
    set_server_enabled,
    update_profile_states,
)
from .validator import (
    RepairResult,
    ValidationIssue,
    ValidationReport,
    repair_config,
    repair_version,
    validate_config,
)
from .versions import coerce_version, compare_versions, is_valid_version, parse_version

__all__ = [
    "CURRENT_SCHEMA_VERSION",
    "LoadedConfig",
    "MIGRATIONS",
    "Migration",
    "MigrationResult",
    "ProfileConsistency",
    "ProfileManager",
    "RepairResult",
    "ValidationIssue",
    "ValidationReport",
    "check_profile_consistency",
    "coerce_version",
    "compare_versions",
    "delete_server",
    "downgrade_config",
    "is_valid_version",
    "latest_version",
    "load_config_document",
    "migrate_config",
    "parse_version",
    "rename_server",
    "repair_config",
    "repair_profile_consistency",
    "repair_version",
    "save_config_document",
    "set_server_enabled",
    "update_profile_states",
    "validate_config",
]
