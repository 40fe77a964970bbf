from __future__ import annotations

import asyncio
import contextlib
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Iterable, Mapping

from pydantic import TypeAdapter, ValidationError

from ..core import metrics
from ..core.config import Settings, get_settings
from ..core.files import write_json_atomic
from ..core.logging import get_logger
from ..exceptions import StateValidationError
from .models import (
    STATE_FIELD_ALIASES,
    AggregatedTool,
    BackendState,
    BackendStatus,
    ToolDescriptor,
    aggregated_tool_name,
)
from .notifications import StateChangeEvent, StateChangeNotifier, Subscriber
from .save_queue import CoalescingSaveQueue

TimestampFactory = Callable[[], datetime]

_TOOL_LIST = TypeAdapter(list[ToolDescriptor])
_STATUS_TARGET = "status"
_TOOLS_TARGET = "tools"


class BackendStateStore:
    """Authoritative in-memory view of backend connectivity and tool catalogs.

    Files on disk are a projection written through a coalescing queue; they are
    read once by :meth:`initialize` and never consulted again while running.
    """

    def __init__(
        self,
        status_path: str | Path,
        tools_path: str | Path,
        *,
        notifier: StateChangeNotifier | None = None,
        save_queue: CoalescingSaveQueue | None = None,
        now: TimestampFactory | None = None,
    ) -> None:
        self._logger = get_logger(name=__name__)
        self._status_path = Path(status_path)
        self._tools_path = Path(tools_path)
        self._notifier = notifier or StateChangeNotifier()
        self._save_queue = save_queue or CoalescingSaveQueue()
        self._now: TimestampFactory = now or (lambda: datetime.now(timezone.utc))
        self._states: dict[str, BackendState] = {}
        self._tools: dict[str, tuple[ToolDescriptor, ...]] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._initialized = False

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        notifier: StateChangeNotifier | None = None,
    ) -> "BackendStateStore":
        active = settings or get_settings()
        return cls(
            active.state.status_file,
            active.state.tools_file,
            notifier=notifier,
            save_queue=CoalescingSaveQueue(min_interval=active.state.save_interval_seconds),
        )

    @property
    def notifier(self) -> StateChangeNotifier:
        return self._notifier

    def subscribe(self, subscriber: Subscriber) -> None:
        self._notifier.subscribe(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._notifier.unsubscribe(subscriber)

    # -- startup -----------------------------------------------------------------

    async def initialize(self) -> None:
        if self._initialized:
            return
        self._load_states()
        self._load_tools()
        self._initialized = True
        self._refresh_status_gauge()
        self._logger.info(
            "state_store_initialized",
            servers=len(self._states),
            tool_sets=len(self._tools),
        )

    def _read_snapshot(self, path: Path) -> dict[str, Any] | None:
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            self._notifier.publish_error(f"Could not read snapshot {path}: {exc}")
            return None
        try:
            payload = json.loads(raw)
        except json.JSONDecodeError as exc:
            self._notifier.publish_error(f"Malformed snapshot {path}: {exc}")
            return None
        if not isinstance(payload, dict):
            self._notifier.publish_error(f"Malformed snapshot {path}: expected a JSON object")
            return None
        return payload

    def _load_states(self) -> None:
        payload = self._read_snapshot(self._status_path)
        if payload is None:
            return
        for name, entry in payload.items():
            if not isinstance(entry, Mapping):
                self._notifier.publish_error(f"Ignoring malformed status entry for '{name}'", server_name=name)
                continue
            try:
                state = BackendState.model_validate(
                    {
                        "status": entry.get("status") or BackendStatus.DISABLED,
                        "error": entry.get("error"),
                        "errorType": entry.get("errorType"),
                        "errorDetails": entry.get("errorDetails"),
                        "lastUpdate": entry.get("lastUpdate"),
                    }
                )
            except ValidationError as exc:
                self._notifier.publish_error(
                    f"Ignoring invalid status entry for '{name}': {exc.errors()[0]['msg']}",
                    server_name=name,
                )
                continue
            self._states[name] = state

    def _load_tools(self) -> None:
        payload = self._read_snapshot(self._tools_path)
        if payload is None:
            return
        for name, entries in payload.items():
            try:
                self._tools[name] = tuple(_TOOL_LIST.validate_python(entries))
            except ValidationError as exc:
                self._notifier.publish_error(
                    f"Ignoring invalid tool list for '{name}': {exc.errors()[0]['msg']}",
                    server_name=name,
                )

    # -- writes ------------------------------------------------------------------

    @contextlib.asynccontextmanager
    async def _server_lock(self, server_name: str) -> AsyncIterator[None]:
        # Locks only live while someone holds or waits for them.
        lock = self._locks.setdefault(server_name, asyncio.Lock())
        self._lock_users[server_name] = self._lock_users.get(server_name, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[server_name] -= 1
            if not self._lock_users[server_name]:
                del self._lock_users[server_name]
                del self._locks[server_name]

    async def update_server_state(
        self,
        server_name: str,
        partial: Mapping[str, Any] | BackendState,
        *,
        atomic: bool = True,
    ) -> BackendState:
        """Merge ``partial`` into the stored state for ``server_name``.

        With ``atomic`` the prior value is snapshotted and restored if anything
        fails before the commit is complete, so observers never see a partial
        write. Raises :class:`StateValidationError` when the merged state is
        invalid.
        """

        if not server_name or not isinstance(server_name, str):
            raise StateValidationError(str(server_name), "server name must be a non-empty string")
        async with self._server_lock(server_name):
            previous = self._states.get(server_name) if atomic else None
            try:
                new_state = self._merge_state(server_name, partial)
                self._states[server_name] = new_state
                self._save_queue.enqueue(_STATUS_TARGET, self._write_states)
            except Exception:
                metrics.record_state_mutation(kind="state", outcome="rejected")
                if atomic:
                    if previous is None:
                        self._states.pop(server_name, None)
                    else:
                        self._states[server_name] = previous
                raise
        metrics.record_state_mutation(kind="state", outcome="committed")
        self._refresh_status_gauge()
        self._notifier.publish(
            StateChangeEvent(event="server-state-changed", server_name=server_name, state=new_state)
        )
        self._logger.debug("server_state_updated", server=server_name, status=new_state.status.value)
        return new_state

    def _merge_state(self, server_name: str, partial: Mapping[str, Any] | BackendState) -> BackendState:
        if isinstance(partial, BackendState):
            updates: dict[str, Any] = partial.model_dump(exclude_unset=True)
        elif isinstance(partial, Mapping):
            updates = {STATE_FIELD_ALIASES.get(key, key): value for key, value in partial.items()}
        else:
            raise StateValidationError(server_name, "partial state must be a mapping")
        current = self._states.get(server_name) or BackendState()
        merged = current.model_dump()
        merged.update(updates)
        merged["last_update"] = self._now()
        try:
            return BackendState.model_validate(merged)
        except ValidationError as exc:
            details = "; ".join(
                f"{'.'.join(str(part) for part in error['loc']) or 'state'}: {error['msg']}"
                for error in exc.errors()
            )
            raise StateValidationError(server_name, details) from exc

    async def update_server_tools(
        self,
        server_name: str,
        tools: Iterable[ToolDescriptor | Mapping[str, Any]],
    ) -> tuple[ToolDescriptor, ...]:
        try:
            validated = tuple(_TOOL_LIST.validate_python(list(tools)))
        except ValidationError as exc:
            metrics.record_state_mutation(kind="tools", outcome="rejected")
            raise StateValidationError(server_name, f"invalid tool list: {exc.errors()[0]['msg']}") from exc
        async with self._server_lock(server_name):
            self._tools[server_name] = validated
            self._save_queue.enqueue(_TOOLS_TARGET, self._write_tools)
            # toolCount lives in the status snapshot as well.
            if server_name in self._states:
                self._save_queue.enqueue(_STATUS_TARGET, self._write_states)
        metrics.record_state_mutation(kind="tools", outcome="committed")
        self._notifier.publish(
            StateChangeEvent(event="server-tools-changed", server_name=server_name, tools=validated)
        )
        self._logger.debug("server_tools_updated", server=server_name, tool_count=len(validated))
        return validated

    async def delete_server_state(self, server_name: str) -> bool:
        async with self._server_lock(server_name):
            removed = self._states.pop(server_name, None) is not None
            if removed:
                self._save_queue.enqueue(_STATUS_TARGET, self._write_states)
        if removed:
            metrics.record_state_mutation(kind="state_delete", outcome="committed")
            self._refresh_status_gauge()
            self._notifier.publish(StateChangeEvent(event="server-deleted", server_name=server_name))
        return removed

    async def delete_server_tools(self, server_name: str) -> bool:
        async with self._server_lock(server_name):
            removed = self._tools.pop(server_name, None) is not None
            if removed:
                self._save_queue.enqueue(_TOOLS_TARGET, self._write_tools)
        if removed:
            metrics.record_state_mutation(kind="tools_delete", outcome="committed")
            self._notifier.publish(StateChangeEvent(event="server-tools-deleted", server_name=server_name))
        return removed

    async def clear(self, *, persist: bool = False) -> None:
        self._states.clear()
        self._tools.clear()
        self._refresh_status_gauge()
        if persist:
            self._save_queue.enqueue(_STATUS_TARGET, self._write_states)
            self._save_queue.enqueue(_TOOLS_TARGET, self._write_tools)
            await self.flush()

    async def flush(self) -> None:
        await self._save_queue.flush()

    async def close(self) -> None:
        await self._save_queue.stop()

    # -- reads -------------------------------------------------------------------

    def get_states(self) -> dict[str, BackendState]:
        return dict(self._states)

    def get_server_state(self, server_name: str) -> BackendState | None:
        return self._states.get(server_name)

    def get_tools(self) -> dict[str, list[ToolDescriptor]]:
        return {name: list(tools) for name, tools in self._tools.items()}

    def get_server_tools(self, server_name: str) -> list[ToolDescriptor]:
        return list(self._tools.get(server_name, ()))

    def get_all_tools(self) -> list[AggregatedTool]:
        aggregated: list[AggregatedTool] = []
        seen: dict[str, str] = {}
        for server_name in sorted(self._tools):
            for tool in self._tools[server_name]:
                name = aggregated_tool_name(server_name, tool.name)
                if name in seen:
                    # "a_b" + "c" and "a" + "b_c" flatten to the same name.
                    suffix = 2
                    while f"{name}_{suffix}" in seen:
                        suffix += 1
                    self._logger.warning(
                        "aggregated_tool_name_collision",
                        name=name,
                        server=server_name,
                        existing_server=seen[name],
                    )
                    name = f"{name}_{suffix}"
                seen[name] = server_name
                aggregated.append(
                    AggregatedTool(
                        name=name,
                        description=tool.description,
                        server_name=server_name,
                        original_name=tool.name,
                        input_schema=tool.input_schema,
                    )
                )
        return aggregated

    def get_statistics(self) -> dict[str, int]:
        counts = self._status_counts()
        return {
            "totalServers": len(self._states),
            "connectedServers": counts[BackendStatus.CONNECTED.value],
            "errorServers": counts[BackendStatus.ERROR.value],
            "disabledServers": counts[BackendStatus.DISABLED.value],
            "updatingServers": counts[BackendStatus.UPDATING.value],
            "totalTools": sum(len(tools) for tools in self._tools.values()),
        }

    def _status_counts(self) -> dict[str, int]:
        counts = {status.value: 0 for status in BackendStatus}
        for state in self._states.values():
            counts[state.status.value] += 1
        return counts

    def _refresh_status_gauge(self) -> None:
        metrics.observe_backend_statuses(self._status_counts())

    # -- persistence -------------------------------------------------------------

    def status_snapshot(self) -> dict[str, dict[str, Any]]:
        return {
            name: state.to_status_entry(len(self._tools.get(name, ())))
            for name, state in self._states.items()
        }

    def tools_snapshot(self) -> dict[str, list[dict[str, str]]]:
        return {name: [tool.to_snapshot_entry() for tool in tools] for name, tools in self._tools.items()}

    async def _write_states(self) -> None:
        await asyncio.to_thread(write_json_atomic, self._status_path, self.status_snapshot())
        self._logger.debug("status_snapshot_written", path=str(self._status_path))

    async def _write_tools(self) -> None:
        await asyncio.to_thread(write_json_atomic, self._tools_path, self.tools_snapshot())
        self._logger.debug("tools_snapshot_written", path=str(self._tools_path))


__all__ = ["BackendStateStore"]
