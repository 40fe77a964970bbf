from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class BackendStatus(str, Enum):
    DISABLED = "disabled"
    UPDATING = "updating"
    CONNECTED = "connected"
    ERROR = "error"


class BackendConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    command: str = Field(min_length=1)
    args: tuple[str, ...] = ()
    env: dict[str, str] = Field(default_factory=dict)
    enabled: bool = True

    @field_validator("command")
    @classmethod
    def _command_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("command must not be blank")
        return value


class BackendState(BaseModel):
    """Connectivity state of one backend as held by the state store."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    status: BackendStatus = BackendStatus.DISABLED
    config: BackendConfig | None = None
    error: str | None = None
    error_type: str | None = Field(default=None, alias="errorType")
    error_details: str | None = Field(default=None, alias="errorDetails")
    last_update: datetime | None = Field(default=None, alias="lastUpdate")

    @field_validator("config", mode="before")
    @classmethod
    def _empty_config_is_absent(cls, value: Any) -> Any:
        if isinstance(value, dict) and not value:
            return None
        return value

    @model_validator(mode="after")
    def _error_requires_message(self) -> "BackendState":
        if self.status is BackendStatus.ERROR and not (self.error and self.error.strip()):
            raise ValueError("status 'error' requires a non-empty error message")
        return self

    def to_status_entry(self, tool_count: int) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "enabled": self.config.enabled if self.config is not None else False,
            "status": self.status.value,
            "toolCount": tool_count,
        }
        if self.error is not None:
            entry["error"] = self.error
        if self.error_type is not None:
            entry["errorType"] = self.error_type
        if self.error_details is not None:
            entry["errorDetails"] = self.error_details
        if self.last_update is not None:
            entry["lastUpdate"] = self.last_update.isoformat()
        return entry


# Partial updates may use either the wire (camelCase) or attribute spelling.
STATE_FIELD_ALIASES: dict[str, str] = {
    "errorType": "error_type",
    "errorDetails": "error_details",
    "lastUpdate": "last_update",
}


class ToolDescriptor(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    name: str = Field(min_length=1)
    description: str = ""
    input_schema: dict[str, Any] | None = Field(default=None, alias="inputSchema")

    @field_validator("description", mode="before")
    @classmethod
    def _none_description(cls, value: Any) -> Any:
        return "" if value is None else value

    def to_snapshot_entry(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description}


class AggregatedTool(BaseModel):
    """A tool as exposed through the aggregated endpoint, named ``{backend}_{localName}``."""

    model_config = ConfigDict(frozen=True)

    name: str
    description: str
    server_name: str
    original_name: str
    input_schema: dict[str, Any] | None = None


def aggregated_tool_name(server_name: str, tool_name: str) -> str:
    return f"{server_name}_{tool_name}"


__all__ = [
    "AggregatedTool",
    "BackendConfig",
    "BackendState",
    "BackendStatus",
    "STATE_FIELD_ALIASES",
    "ToolDescriptor",
    "aggregated_tool_name",
]
