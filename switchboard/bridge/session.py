from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Protocol

from ..core import metrics
from ..core.logging import get_logger
from ..exceptions import ProtocolFrameError, SpawnFailure
from .frames import (
    HostCommandFrame,
    InitFrame,
    StdinFrame,
    error_frame,
    exit_frame,
    output_frame,
    parse_inbound_frame,
    ready_frame,
)
from .host_commands import HostCommandRunner
from .process import BridgedProcess, Stream

logger = get_logger(name=__name__)


class FrameChannel(Protocol):
    """Duplex transport carrying JSON frames for one connection."""

    async def send(self, frame: dict[str, Any]) -> None:
        ...

    async def close(self) -> None:
        ...


class BridgeConnection:
    """Binds at most one process to a channel and relays frames both ways.

    A second ``init`` frame on a bound connection is answered with an error
    frame and the connection stays open. A failed spawn leaves the connection
    unbound, so the client may retry with another ``init``.
    """

    def __init__(
        self,
        channel: FrameChannel,
        *,
        host_commands: HostCommandRunner,
        terminate_grace: float = 5.0,
        read_chunk_size: int = 4096,
        drain_timeout: float = 0.5,
    ) -> None:
        self._channel = channel
        self._host_commands = host_commands
        self._terminate_grace = terminate_grace
        self._read_chunk_size = read_chunk_size
        self._drain_timeout = drain_timeout
        self._process: BridgedProcess | None = None
        self._relay_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._closed = asyncio.Event()
        self._channel_closed = False

    @property
    def process(self) -> BridgedProcess | None:
        return self._process

    @property
    def bound(self) -> bool:
        return self._process is not None

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def handle_frame(self, raw: str | bytes | dict[str, Any]) -> None:
        if self.closed:
            return
        try:
            frame = parse_inbound_frame(raw)
        except ProtocolFrameError as exc:
            await self._reject(exc)
            return

        if isinstance(frame, InitFrame):
            await self._handle_init(frame)
        elif isinstance(frame, StdinFrame):
            await self._handle_stdin(frame)
        elif isinstance(frame, HostCommandFrame):
            result = await self._host_commands.run(frame.command, frame.args)
            await self._send(result)

    async def _handle_init(self, frame: InitFrame) -> None:
        if self._process is not None:
            await self._reject(
                ProtocolFrameError(
                    "Connection is already bound to a process; init frames after the first are rejected",
                    reason="duplicate_init",
                )
            )
            return
        try:
            process = await BridgedProcess.spawn(
                frame.command,
                frame.args,
                frame.env,
                terminate_grace=self._terminate_grace,
                read_chunk_size=self._read_chunk_size,
                drain_timeout=self._drain_timeout,
            )
        except SpawnFailure as exc:
            await self._send(error_frame(str(exc)))
            return

        self._process = process
        if self.closed:
            await process.terminate()
            return
        await self._send(ready_frame(f"Process '{frame.command}' started"))
        self._relay_task = asyncio.create_task(self._relay(process))

    async def _handle_stdin(self, frame: StdinFrame) -> None:
        if self._process is None:
            await self._reject(
                ProtocolFrameError("No process is bound; send an init frame first", reason="not_initialized")
            )
            return
        try:
            await self._process.write(frame.data)
        except ProtocolFrameError as exc:
            await self._reject(exc)

    async def _relay(self, process: BridgedProcess) -> None:
        try:
            code, signal_name = await process.relay(self._forward_output)
            await self._send(exit_frame(code, signal_name))
        finally:
            await self.close()

    async def _forward_output(self, stream: Stream, data: str) -> None:
        await self._send(output_frame(stream, data))

    async def _reject(self, exc: ProtocolFrameError) -> None:
        metrics.increment_frame_error(reason=exc.reason)
        logger.info("bridge_frame_rejected", reason=exc.reason, error=str(exc))
        await self._send(error_frame(str(exc)))

    async def _send(self, frame: dict[str, Any]) -> None:
        async with self._send_lock:
            if self._channel_closed:
                logger.debug("bridge_frame_dropped", frame_type=frame.get("type"))
                return
            try:
                await self._channel.send(frame)
            except ConnectionError as exc:
                self._channel_closed = True
                logger.info("bridge_channel_lost", error=str(exc))

    async def close(self) -> None:
        """Close the channel from the bridge side, then release the process."""

        async with self._send_lock:
            if not self._channel_closed:
                self._channel_closed = True
                await self._channel.close()
        await self.shutdown()

    async def shutdown(self) -> None:
        """Terminate the bound process and stop relaying. Safe to call repeatedly.

        Runs on every connection close, whichever side initiated it.
        """

        self._channel_closed = True
        self._closed.set()
        process = self._process
        if process is not None:
            await process.terminate()
        relay = self._relay_task
        if relay is not None and relay is not asyncio.current_task() and not relay.done():
            relay.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await relay


__all__ = ["BridgeConnection", "FrameChannel"]
