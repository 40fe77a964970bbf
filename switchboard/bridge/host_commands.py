from __future__ import annotations

import asyncio
import contextlib
from typing import Any, Iterable, Sequence

from ..core import metrics
from ..core.logging import get_logger
from .frames import host_command_result

logger = get_logger(name=__name__)


class HostCommandRunner:
    """Runs allow-listed utilities on the bridge host.

    Only bare command names are accepted; anything with a path separator or
    outside the allow-list is refused before a process is created. Arguments
    go straight to ``exec`` so no shell ever interprets them.
    """

    def __init__(self, allowed: Iterable[str], *, timeout: float = 10.0) -> None:
        self._allowed = frozenset(allowed)
        self._timeout = timeout

    @property
    def allowed(self) -> frozenset[str]:
        return self._allowed

    def is_allowed(self, command: str) -> bool:
        return command in self._allowed and "/" not in command and "\\" not in command

    async def run(self, command: str, args: Sequence[str] = ()) -> dict[str, Any]:
        if not self.is_allowed(command):
            logger.warning("host_command_rejected", command=command)
            metrics.record_host_command(command="<rejected>", outcome="rejected")
            return host_command_result(success=False, message=f"Command '{command}' is not allowed")

        try:
            process = await asyncio.create_subprocess_exec(
                command,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            logger.warning("host_command_spawn_failed", command=command, error=str(exc))
            metrics.record_host_command(command=command, outcome="spawn_failed")
            return host_command_result(success=False, message=f"Failed to start '{command}': {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self._timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            logger.warning("host_command_timeout", command=command, timeout=self._timeout)
            metrics.record_host_command(command=command, outcome="timeout")
            return host_command_result(
                success=False,
                message=f"Command '{command}' timed out after {self._timeout:g}s",
            )
        except asyncio.CancelledError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            logger.info("host_command_cancelled", command=command)
            metrics.record_host_command(command=command, outcome="cancelled")
            raise

        code = process.returncode
        output = stdout.decode("utf-8", errors="replace")
        if code == 0:
            metrics.record_host_command(command=command, outcome="success")
            logger.info("host_command_completed", command=command)
            return host_command_result(success=True, data=output, code=code)

        metrics.record_host_command(command=command, outcome="failure")
        logger.info("host_command_failed", command=command, code=code)
        message = stderr.decode("utf-8", errors="replace").strip() or f"Command exited with code {code}"
        return host_command_result(success=False, data=output or None, message=message, code=code)


__all__ = ["HostCommandRunner"]
