from .lifecycle import ALLOWED_TRANSITIONS, BackendSession, can_transition
from .models import AggregatedTool, BackendConfig, BackendState, BackendStatus, ToolDescriptor
from .notifications import StateChangeEvent, StateChangeNotifier, log_state_change
from .save_queue import CoalescingSaveQueue
from .store import BackendStateStore

__all__ = [
    "ALLOWED_TRANSITIONS",
    "AggregatedTool",
    "BackendConfig",
    "BackendSession",
    "BackendState",
    "BackendStateStore",
    "BackendStatus",
    "CoalescingSaveQueue",
    "StateChangeEvent",
    "StateChangeNotifier",
    "ToolDescriptor",
    "can_transition",
    "log_state_change",
]
