from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Literal, Sequence

from ..core.logging import get_logger

if TYPE_CHECKING:  # pragma: no cover - type checking only
    from .models import BackendState, ToolDescriptor

logger = get_logger(name=__name__)

StateEventType = Literal[
    "server-state-changed",
    "server-tools-changed",
    "server-deleted",
    "server-tools-deleted",
    "store-error",
]


@dataclass(slots=True, frozen=True)
class StateChangeEvent:
    event: StateEventType
    server_name: str | None
    state: "BackendState | None" = None
    tools: "Sequence[ToolDescriptor] | None" = None
    error: str | None = None

    def to_payload(self) -> dict[str, object]:
        payload: dict[str, object] = {"type": self.event}
        if self.server_name is not None:
            payload["serverName"] = self.server_name
        if self.state is not None:
            payload["state"] = self.state.model_dump(mode="json", by_alias=True, exclude_none=True)
        if self.tools is not None:
            payload["tools"] = [tool.to_snapshot_entry() for tool in self.tools]
        if self.error is not None:
            payload["error"] = self.error
        return payload


Subscriber = Callable[[StateChangeEvent], None]


class StateChangeNotifier:
    """Synchronous observer registry handed to the state store at construction.

    Subscribers run in registration order on the caller's stack right after a
    mutation commits. A failing subscriber is logged and does not stop the
    remaining ones or undo the commit.
    """

    def __init__(self) -> None:
        self._subscribers: dict[Subscriber, None] = {}

    def subscribe(self, subscriber: Subscriber) -> None:
        self._subscribers[subscriber] = None

    def unsubscribe(self, subscriber: Subscriber) -> None:
        self._subscribers.pop(subscriber, None)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: StateChangeEvent) -> None:
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception as exc:
                logger.warning(
                    "state_subscriber_failed",
                    subscriber=getattr(subscriber, "__qualname__", repr(subscriber)),
                    event=event.event,
                    error=str(exc),
                )

    def publish_error(self, message: str, *, server_name: str | None = None) -> None:
        logger.error("state_store_error", message=message, server=server_name)
        self.publish(StateChangeEvent(event="store-error", server_name=server_name, error=message))


def log_state_change(event: StateChangeEvent) -> None:
    logger.info(
        "state_change",
        event=event.event,
        server=event.server_name,
        status=event.state.status.value if event.state is not None else None,
        tool_count=len(event.tools) if event.tools is not None else None,
    )


__all__ = [
    "StateChangeEvent",
    "StateChangeNotifier",
    "StateEventType",
    "Subscriber",
    "log_state_change",
]
