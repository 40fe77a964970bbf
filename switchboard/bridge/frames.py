from __future__ import annotations

import json
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ..exceptions import ProtocolFrameError


class _InboundFrame(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class InitFrame(_InboundFrame):
    type: Literal["init"]
    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)
    env: dict[str, str] = Field(default_factory=dict)


class StdinFrame(_InboundFrame):
    type: Literal["stdin"]
    data: str


class HostCommandFrame(_InboundFrame):
    type: Literal["host-command"]
    command: str = Field(..., min_length=1)
    args: list[str] = Field(default_factory=list)


InboundFrame = Annotated[Union[InitFrame, StdinFrame, HostCommandFrame], Field(discriminator="type")]

_INBOUND = TypeAdapter(InboundFrame)


def parse_inbound_frame(raw: str | bytes | dict[str, Any]) -> InitFrame | StdinFrame | HostCommandFrame:
    """Decode one client frame, raising :class:`ProtocolFrameError` when it is unusable."""

    if isinstance(raw, (str, bytes)):
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ProtocolFrameError(f"Frame is not valid JSON: {exc}", reason="invalid_json") from exc
    else:
        payload = raw
    if not isinstance(payload, dict):
        raise ProtocolFrameError("Frame must be a JSON object", reason="not_object")
    try:
        return _INBOUND.validate_python(payload)
    except ValidationError as exc:
        frame_type = payload.get("type")
        if frame_type not in ("init", "stdin", "host-command"):
            raise ProtocolFrameError(f"Unsupported frame type: {frame_type!r}", reason="unknown_type") from exc
        details = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'][1:]) or 'frame'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ProtocolFrameError(f"Invalid {frame_type} frame: {details}", reason="invalid_fields") from exc


def ready_frame(message: str) -> dict[str, Any]:
    return {"type": "ready", "message": message}


def output_frame(stream: Literal["stdout", "stderr"], data: str) -> dict[str, Any]:
    return {"type": stream, "data": data}


def exit_frame(code: int | None, signal: str | None) -> dict[str, Any]:
    # Both keys are always present; one of them is null.
    return {"type": "exit", "code": code, "signal": signal}


def error_frame(message: str) -> dict[str, Any]:
    return {"type": "error", "message": message}


def host_command_result(
    *,
    success: bool,
    data: str | None = None,
    message: str | None = None,
    code: int | None = None,
) -> dict[str, Any]:
    frame: dict[str, Any] = {"type": "host-command-result", "success": success}
    if data is not None:
        frame["data"] = data
    if message is not None:
        frame["message"] = message
    if code is not None:
        frame["code"] = code
    return frame


__all__ = [
    "HostCommandFrame",
    "InboundFrame",
    "InitFrame",
    "StdinFrame",
    "error_frame",
    "exit_frame",
    "host_command_result",
    "output_frame",
    "parse_inbound_frame",
    "ready_frame",
]
