from __future__ import annotations

import inspect
from typing import Any, Awaitable, Callable, Iterable, Mapping

from ..core.logging import get_logger
from ..exceptions import InvalidTransitionError, classify_error
from .models import BackendConfig, BackendState, BackendStatus, ToolDescriptor
from .store import BackendStateStore

DisconnectHook = Callable[[str], Awaitable[None] | None]

# Every path into CONNECTED goes through UPDATING; DISABLED is reachable from anywhere.
ALLOWED_TRANSITIONS: dict[BackendStatus, frozenset[BackendStatus]] = {
    BackendStatus.DISABLED: frozenset({BackendStatus.UPDATING, BackendStatus.DISABLED}),
    BackendStatus.UPDATING: frozenset({BackendStatus.CONNECTED, BackendStatus.ERROR, BackendStatus.DISABLED}),
    BackendStatus.CONNECTED: frozenset({BackendStatus.UPDATING, BackendStatus.DISABLED}),
    BackendStatus.ERROR: frozenset({BackendStatus.UPDATING, BackendStatus.DISABLED}),
}


def can_transition(current: BackendStatus, target: BackendStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class BackendSession:
    """Lifecycle of one configured backend, written through the state store."""

    def __init__(
        self,
        name: str,
        store: BackendStateStore,
        *,
        on_disconnect: DisconnectHook | None = None,
    ) -> None:
        self.name = name
        self._store = store
        self._on_disconnect = on_disconnect
        self._logger = get_logger(name=__name__, server=name)

    @property
    def status(self) -> BackendStatus:
        state = self._store.get_server_state(self.name)
        return state.status if state is not None else BackendStatus.DISABLED

    @property
    def state(self) -> BackendState | None:
        return self._store.get_server_state(self.name)

    async def activate(self, config: BackendConfig | Mapping[str, Any] | None = None) -> BackendState:
        """disabled -> updating."""
        self._require(BackendStatus.DISABLED, BackendStatus.UPDATING)
        partial: dict[str, Any] = {"status": BackendStatus.UPDATING, **_cleared_error()}
        if config is not None:
            partial["config"] = config
        return await self._transition(BackendStatus.UPDATING, partial)

    async def mark_connected(self, tools: Iterable[ToolDescriptor | Mapping[str, Any]] = ()) -> BackendState:
        """updating -> connected, publishing the discovered tool list."""
        self._require(BackendStatus.UPDATING, BackendStatus.CONNECTED)
        await self._store.update_server_tools(self.name, tools)
        return await self._transition(
            BackendStatus.CONNECTED,
            {"status": BackendStatus.CONNECTED, **_cleared_error()},
        )

    async def mark_failed(
        self,
        error: str | BaseException,
        *,
        details: str | None = None,
    ) -> BackendState:
        """updating -> error."""
        self._require(BackendStatus.UPDATING, BackendStatus.ERROR)
        message = str(error).strip() or type(error).__name__
        classification = classify_error(error)
        return await self._transition(
            BackendStatus.ERROR,
            {
                "status": BackendStatus.ERROR,
                "error": message,
                "errorType": classification.error_type.value,
                "errorDetails": details,
            },
        )

    async def refresh(self, config: BackendConfig | Mapping[str, Any] | None = None) -> BackendState:
        """connected -> updating, for reconfiguration or a tool refresh."""
        self._require(BackendStatus.CONNECTED, BackendStatus.UPDATING)
        await self._disconnect()
        partial: dict[str, Any] = {"status": BackendStatus.UPDATING}
        if config is not None:
            partial["config"] = config
        return await self._transition(BackendStatus.UPDATING, partial)

    async def retry(self) -> BackendState:
        """error -> updating."""
        self._require(BackendStatus.ERROR, BackendStatus.UPDATING)
        return await self._transition(
            BackendStatus.UPDATING,
            {"status": BackendStatus.UPDATING, **_cleared_error()},
        )

    async def deactivate(self) -> BackendState:
        """any -> disabled."""
        if self.status is BackendStatus.CONNECTED:
            await self._disconnect()
        state = await self._transition(
            BackendStatus.DISABLED,
            {"status": BackendStatus.DISABLED, **_cleared_error()},
        )
        await self._store.delete_server_tools(self.name)
        return state

    def _require(self, expected: BackendStatus, target: BackendStatus) -> None:
        current = self.status
        if current is not expected or not can_transition(current, target):
            raise InvalidTransitionError(self.name, current.value, target.value)

    async def _transition(self, target: BackendStatus, partial: Mapping[str, Any]) -> BackendState:
        previous = self.status
        state = await self._store.update_server_state(self.name, partial)
        self._logger.info("backend_transition", previous=previous.value, current=target.value)
        return state

    async def _disconnect(self) -> None:
        if self._on_disconnect is None:
            return
        result = self._on_disconnect(self.name)
        if inspect.isawaitable(result):
            await result


def _cleared_error() -> dict[str, None]:
    return {"error": None, "errorType": None, "errorDetails": None}


__all__ = ["ALLOWED_TRANSITIONS", "BackendSession", "can_transition"]
