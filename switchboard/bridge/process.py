from __future__ import annotations

import asyncio
import codecs
import contextlib
import os
import signal
from typing import Awaitable, Callable, Literal, Mapping, Sequence

from ..core import metrics
from ..core.logging import get_logger
from ..exceptions import ProtocolFrameError, SpawnFailure, classify_error

Stream = Literal["stdout", "stderr"]
OutputHandler = Callable[[Stream, str], Awaitable[None]]

# Process.wait() only resolves once every pipe is closed, which a
# descendant holding stdout can delay forever; the return code is set on exit.
_EXIT_POLL_INTERVAL = 0.05

logger = get_logger(name=__name__)


def describe_returncode(returncode: int) -> tuple[int | None, str | None]:
    """Split an asyncio return code into ``(code, signal)``.

    Negative return codes mean the process was killed by that signal.
    """

    if returncode >= 0:
        return returncode, None
    try:
        return None, signal.Signals(-returncode).name
    except ValueError:
        return None, f"SIG{-returncode}"


class BridgedProcess:
    """A child process whose stdio is relayed over one bridge connection.

    The child leads its own process group so that termination also reaches
    anything it started.
    """

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        *,
        command: str,
        terminate_grace: float = 5.0,
        read_chunk_size: int = 4096,
        drain_timeout: float = 0.5,
    ) -> None:
        self._process = process
        self.command = command
        self._terminate_grace = terminate_grace
        self._read_chunk_size = read_chunk_size
        self._drain_timeout = drain_timeout
        self._exit_recorded = False
        self._group_reaped = False
        self._logger = get_logger(name=__name__, command=command, pid=process.pid)

    @classmethod
    async def spawn(
        cls,
        command: str,
        args: Sequence[str] = (),
        env: Mapping[str, str] | None = None,
        *,
        terminate_grace: float = 5.0,
        read_chunk_size: int = 4096,
        drain_timeout: float = 0.5,
    ) -> "BridgedProcess":
        merged_env = {**os.environ, **dict(env or {})}
        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=merged_env,
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            classification = classify_error(exc)
            metrics.record_process_spawn(outcome="failure")
            logger.warning(
                "bridge_spawn_failed",
                command=command,
                error=str(exc),
                error_type=classification.error_type.value,
            )
            raise SpawnFailure(f"Failed to start '{command}': {exc}") from exc

        metrics.record_process_spawn(outcome="success")
        logger.info("bridge_process_started", command=command, args=list(args), pid=process.pid)
        return cls(
            process,
            command=command,
            terminate_grace=terminate_grace,
            read_chunk_size=read_chunk_size,
            drain_timeout=drain_timeout,
        )

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def running(self) -> bool:
        return self._process.returncode is None

    async def relay(self, handler: OutputHandler) -> tuple[int | None, str | None]:
        """Forward output until the process exits and return its exit status.

        Output still buffered when the process exits gets ``drain_timeout``
        seconds to arrive; pipes held open by descendants are abandoned.
        """

        pumps = asyncio.create_task(self.pump(handler))
        try:
            status = await self.wait()
            done, _ = await asyncio.wait({pumps}, timeout=self._drain_timeout)
            if done:
                pumps.result()
            else:
                self._logger.info("bridge_output_abandoned", drain_timeout=self._drain_timeout)
        finally:
            if not pumps.done():
                pumps.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await pumps
        return status

    async def pump(self, handler: OutputHandler) -> None:
        """Forward stdout and stderr to ``handler`` until both reach EOF."""

        streams = []
        if self._process.stdout is not None:
            streams.append(self._pump_stream("stdout", self._process.stdout, handler))
        if self._process.stderr is not None:
            streams.append(self._pump_stream("stderr", self._process.stderr, handler))
        await asyncio.gather(*streams)

    async def _pump_stream(self, name: Stream, reader: asyncio.StreamReader, handler: OutputHandler) -> None:
        # Chunks can split a multi-byte character.
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await reader.read(self._read_chunk_size)
            if not chunk:
                break
            text = decoder.decode(chunk)
            if text:
                await handler(name, text)
        tail = decoder.decode(b"", final=True)
        if tail:
            await handler(name, tail)

    async def write(self, data: str) -> None:
        stdin = self._process.stdin
        if stdin is None or stdin.is_closing():
            raise ProtocolFrameError("Process input is closed", reason="stdin_closed")
        try:
            stdin.write(data.encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            raise ProtocolFrameError(f"Process input is closed: {exc}", reason="stdin_closed") from exc

    async def _returncode(self) -> int:
        while self._process.returncode is None:
            await asyncio.sleep(_EXIT_POLL_INTERVAL)
        return self._process.returncode

    async def wait(self) -> tuple[int | None, str | None]:
        returncode = await self._returncode()
        code, signal_name = describe_returncode(returncode)
        if not self._exit_recorded:
            self._exit_recorded = True
            metrics.record_process_exit()
            self._logger.info("bridge_process_exited", code=code, signal=signal_name)
        return code, signal_name

    def _signal_group(self, sig: signal.Signals) -> None:
        with contextlib.suppress(ProcessLookupError, PermissionError):
            if hasattr(os, "killpg"):
                os.killpg(self._process.pid, sig)
            else:
                self._process.send_signal(sig)

    async def terminate(self) -> None:
        """Stop the process group: SIGTERM first, SIGKILL once the grace period runs out."""

        if self.running:
            self._signal_group(signal.SIGTERM)
            try:
                await asyncio.wait_for(self._returncode(), timeout=self._terminate_grace)
            except asyncio.TimeoutError:
                self._logger.warning("bridge_process_kill", grace=self._terminate_grace)
                self._signal_group(signal.SIGKILL)
        await self.wait()
        if not self._group_reaped:
            # Descendants can outlive the group leader.
            self._group_reaped = True
            self._signal_group(signal.SIGKILL)
        if self._process.stdin is not None and not self._process.stdin.is_closing():
            self._process.stdin.close()


__all__ = ["BridgedProcess", "describe_returncode"]
