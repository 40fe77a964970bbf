from __future__ import annotations

from functools import lru_cache
from typing import Any, Literal, Mapping

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_HOST_COMMANDS: tuple[str, ...] = (
    "echo",
    "date",
    "hostname",
    "ls",
    "pwd",
    "uname",
    "which",
    "whoami",
)


class BridgeSettings(BaseModel):
    host: str = Field("0.0.0.0", description="Interface the bridge listens on.")
    port: int = Field(9999, ge=1, le=65535)
    path: str = Field("/bridge", description="WebSocket route that accepts bridge connections.")
    allowed_host_commands: list[str] = Field(
        default_factory=lambda: list(DEFAULT_HOST_COMMANDS),
        description="Bare command names that host-command frames may execute.",
    )
    host_command_timeout_seconds: float = Field(10.0, gt=0.0)
    terminate_grace_seconds: float = Field(
        5.0,
        ge=0.0,
        description="Time a bridged process gets to exit after SIGTERM before it is killed.",
    )
    read_chunk_size: int = Field(4096, ge=1)
    drain_timeout_seconds: float = Field(
        0.5,
        ge=0.0,
        description="How long buffered output may still arrive after a bridged process exits.",
    )


class StateSettings(BaseModel):
    status_file: str = Field("mcp-status.json", description="Persisted backend status snapshot.")
    tools_file: str = Field("mcp-tools.json", description="Persisted backend tool catalog snapshot.")
    save_interval_seconds: float = Field(
        0.05,
        ge=0.0,
        description="Minimum spacing between two persisted snapshot writes.",
    )


class GatewayConfigSettings(BaseModel):
    config_file: str = Field("mcp-config.json")
    target_version: str = Field("1.0.0", pattern=r"^\d+(\.\d+)*$")


class ObservabilitySettings(BaseModel):
    prometheus_enabled: bool = Field(True)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    json_logs: bool = Field(True, description="Render JSON log lines; false uses the console renderer.")


class Settings(BaseSettings):
    environment: Literal["local", "test", "production"] = Field("local")

    bridge: BridgeSettings = Field(default_factory=BridgeSettings)  # type: ignore[arg-type]
    state: StateSettings = Field(default_factory=StateSettings)  # type: ignore[arg-type]
    gateway_config: GatewayConfigSettings = Field(default_factory=GatewayConfigSettings)  # type: ignore[arg-type]
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)  # type: ignore[arg-type]

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        env_prefix="SWITCHBOARD_",
    )


@lru_cache(maxsize=1)
def _get_cached_settings() -> Settings:
    return Settings()  # type: ignore[call-arg]


def get_settings(overrides: Mapping[str, Any] | None = None) -> Settings:
    """Return settings, using cached defaults unless overrides are provided."""
    if overrides:
        return Settings(**dict(overrides))
    return _get_cached_settings()
