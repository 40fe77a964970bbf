from __future__ import annotations

from prometheus_client import Counter, Gauge

BRIDGE_CONNECTIONS_ACTIVE = Gauge(
    "switchboard_bridge_connections_active",
    "Bridge WebSocket connections currently open",
)

BRIDGE_PROCESS_SPAWN_TOTAL = Counter(
    "switchboard_bridge_process_spawn_total",
    "Bridged process spawn attempts grouped by outcome",
    labelnames=("outcome",),
)

BRIDGE_PROCESSES_RUNNING = Gauge(
    "switchboard_bridge_processes_running",
    "Bridged processes currently alive",
)

BRIDGE_FRAME_ERRORS_TOTAL = Counter(
    "switchboard_bridge_frame_errors_total",
    "Inbound frames rejected by the bridge",
    labelnames=("reason",),
)

BRIDGE_HOST_COMMAND_TOTAL = Counter(
    "switchboard_bridge_host_command_total",
    "Host-command frames grouped by outcome",
    labelnames=("command", "outcome"),
)

STATE_MUTATION_TOTAL = Counter(
    "switchboard_state_mutation_total",
    "State store mutations grouped by kind and outcome",
    labelnames=("kind", "outcome"),
)

STATE_PERSIST_TOTAL = Counter(
    "switchboard_state_persist_total",
    "Snapshot writes grouped by target and outcome",
    labelnames=("target", "outcome"),
)

STATE_BACKENDS_GAUGE = Gauge(
    "switchboard_state_backends",
    "Tracked backends grouped by status",
    labelnames=("status",),
)


def connection_opened() -> None:
    BRIDGE_CONNECTIONS_ACTIVE.inc()


def connection_closed() -> None:
    BRIDGE_CONNECTIONS_ACTIVE.dec()


def record_process_spawn(*, outcome: str) -> None:
    BRIDGE_PROCESS_SPAWN_TOTAL.labels(outcome=outcome).inc()
    if outcome == "success":
        BRIDGE_PROCESSES_RUNNING.inc()


def record_process_exit() -> None:
    BRIDGE_PROCESSES_RUNNING.dec()


def increment_frame_error(*, reason: str) -> None:
    BRIDGE_FRAME_ERRORS_TOTAL.labels(reason=reason).inc()


def record_host_command(*, command: str, outcome: str) -> None:
    BRIDGE_HOST_COMMAND_TOTAL.labels(command=command, outcome=outcome).inc()


def record_state_mutation(*, kind: str, outcome: str) -> None:
    STATE_MUTATION_TOTAL.labels(kind=kind, outcome=outcome).inc()


def record_persist(*, target: str, success: bool) -> None:
    STATE_PERSIST_TOTAL.labels(target=target, outcome="success" if success else "failure").inc()


def observe_backend_statuses(counts: dict[str, int]) -> None:
    for status, count in counts.items():
        STATE_BACKENDS_GAUGE.labels(status=status).set(count)
