"""WebSocket bridge that tunnels a spawned process's stdio as JSON frames."""

from .frames import HostCommandFrame, InitFrame, StdinFrame, parse_inbound_frame
from .host_commands import HostCommandRunner
from .process import BridgedProcess
from .session import BridgeConnection, FrameChannel

__all__ = [
    "BridgeConnection",
    "BridgedProcess",
    "FrameChannel",
    "HostCommandFrame",
    "HostCommandRunner",
    "InitFrame",
    "StdinFrame",
    "parse_inbound_frame",
]
