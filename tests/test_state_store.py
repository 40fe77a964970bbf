from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone

import pytest

from switchboard.core.config import Settings
from switchboard.exceptions import StateValidationError
from switchboard.state.models import BackendStatus, ToolDescriptor
from switchboard.state.notifications import StateChangeEvent, StateChangeNotifier
from switchboard.state.save_queue import CoalescingSaveQueue
from switchboard.state.store import BackendStateStore

FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _make_store(tmp_path, notifier: StateChangeNotifier | None = None) -> BackendStateStore:
    return BackendStateStore(
        tmp_path / "status.json",
        tmp_path / "tools.json",
        notifier=notifier,
        save_queue=CoalescingSaveQueue(min_interval=0),
        now=lambda: FIXED_NOW,
    )


@pytest.mark.asyncio
async def test_update_server_state_merges_into_default(tmp_path) -> None:
    store = _make_store(tmp_path)

    state = await store.update_server_state("github", {"status": "updating"})

    assert state.status is BackendStatus.UPDATING
    assert state.config is None
    assert state.last_update == FIXED_NOW
    assert store.get_server_state("github") == state
    assert store.get_server_state("never-configured") is None


@pytest.mark.asyncio
async def test_failed_atomic_update_restores_prior_state(tmp_path) -> None:
    store = _make_store(tmp_path)
    before = await store.update_server_state(
        "github",
        {"status": "connected", "config": {"command": "npx", "args": ["-y", "server-github"]}},
    )

    with pytest.raises(StateValidationError):
        await store.update_server_state("github", {"status": "error"})
    assert store.get_server_state("github") == before

    with pytest.raises(StateValidationError):
        await store.update_server_state("github", {"status": "exploded"})
    assert store.get_server_state("github") == before


@pytest.mark.asyncio
async def test_failed_first_update_leaves_name_absent(tmp_path) -> None:
    store = _make_store(tmp_path)

    with pytest.raises(StateValidationError):
        await store.update_server_state("ghost", {"status": "error", "error": "   "})

    assert store.get_server_state("ghost") is None
    assert store.get_states() == {}


@pytest.mark.asyncio
async def test_non_atomic_update_still_rejects_invalid_state(tmp_path) -> None:
    store = _make_store(tmp_path)
    before = await store.update_server_state("github", {"status": "updating"})

    with pytest.raises(StateValidationError):
        await store.update_server_state("github", {"status": "error"}, atomic=False)

    assert store.get_server_state("github") == before


@pytest.mark.asyncio
async def test_error_status_keeps_message_and_camel_case_fields(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_state("github", {"status": "updating"})

    state = await store.update_server_state(
        "github",
        {"status": "error", "error": "spawn npx ENOENT", "errorType": "command_not_found"},
    )

    assert state.error == "spawn npx ENOENT"
    assert state.error_type == "command_not_found"


@pytest.mark.asyncio
async def test_subscribers_are_notified_synchronously(tmp_path) -> None:
    notifier = StateChangeNotifier()
    store = _make_store(tmp_path, notifier)
    events: list[StateChangeEvent] = []

    def broken(_: StateChangeEvent) -> None:
        raise RuntimeError("subscriber failure")

    store.subscribe(broken)
    store.subscribe(events.append)

    await store.update_server_state("github", {"status": "updating"})
    # The update has returned, so the notification already happened.
    assert [event.event for event in events] == ["server-state-changed"]
    assert events[0].state is not None and events[0].state.status is BackendStatus.UPDATING

    await store.update_server_tools("github", [{"name": "search", "description": "Search code"}])
    assert events[-1].event == "server-tools-changed"
    assert [tool.name for tool in events[-1].tools or ()] == ["search"]

    store.unsubscribe(events.append)
    await store.delete_server_state("github")
    assert len(events) == 2


@pytest.mark.asyncio
async def test_get_all_tools_prefixes_backend_name(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_tools("github", [{"name": "search", "description": "Search repositories"}])
    await store.update_server_tools("obsidian", [{"name": "search", "description": "Search notes"}])

    tools = store.get_all_tools()

    assert sorted(tool.name for tool in tools) == ["github_search", "obsidian_search"]
    by_name = {tool.name: tool for tool in tools}
    assert by_name["github_search"].server_name == "github"
    assert by_name["github_search"].original_name == "search"
    assert by_name["obsidian_search"].description == "Search notes"


@pytest.mark.asyncio
async def test_get_all_tools_disambiguates_flattened_collisions(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_tools("a_b", [{"name": "c"}])
    await store.update_server_tools("a", [{"name": "b_c"}])

    names = [tool.name for tool in store.get_all_tools()]

    assert len(names) == len(set(names)) == 2
    assert "a_b_c" in names


@pytest.mark.asyncio
async def test_concurrent_tool_updates_for_different_backends(tmp_path) -> None:
    store = _make_store(tmp_path)

    await asyncio.gather(
        store.update_server_tools("a", [{"name": "one"}, {"name": "two"}]),
        store.update_server_tools("b", [{"name": "three"}]),
    )

    tools = store.get_tools()
    assert [tool.name for tool in tools["a"]] == ["one", "two"]
    assert [tool.name for tool in tools["b"]] == ["three"]


@pytest.mark.asyncio
async def test_invalid_tool_list_is_rejected_without_change(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_tools("github", [{"name": "search"}])

    with pytest.raises(StateValidationError):
        await store.update_server_tools("github", [{"name": ""}])

    assert [tool.name for tool in store.get_server_tools("github")] == ["search"]


@pytest.mark.asyncio
async def test_deletes_are_idempotent(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_state("github", {"status": "updating"})
    await store.update_server_tools("github", [ToolDescriptor(name="search")])

    assert await store.delete_server_state("github") is True
    assert await store.delete_server_state("github") is False
    assert await store.delete_server_tools("github") is True
    assert await store.delete_server_tools("github") is False
    assert await store.delete_server_tools("unknown") is False


@pytest.mark.asyncio
async def test_flush_persists_status_and_tool_snapshots(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_state(
        "github",
        {"status": "updating", "config": {"command": "npx", "enabled": True}},
    )
    await store.update_server_tools("github", [{"name": "search", "description": "Search"}])
    await store.update_server_state("github", {"status": "connected"})

    await store.flush()

    status = json.loads((tmp_path / "status.json").read_text())
    tools = json.loads((tmp_path / "tools.json").read_text())
    assert status == {
        "github": {
            "enabled": True,
            "status": "connected",
            "toolCount": 1,
            "lastUpdate": FIXED_NOW.isoformat(),
        }
    }
    assert tools == {"github": [{"name": "search", "description": "Search"}]}
    await store.close()


@pytest.mark.asyncio
async def test_initialize_loads_snapshots_once(tmp_path) -> None:
    (tmp_path / "status.json").write_text(
        json.dumps(
            {
                "github": {"enabled": True, "status": "error", "toolCount": 0, "error": "timeout"},
                "broken": {"status": "error"},
            }
        )
    )
    (tmp_path / "tools.json").write_text(json.dumps({"github": [{"name": "search", "description": ""}]}))
    notifier = StateChangeNotifier()
    errors: list[StateChangeEvent] = []
    notifier.subscribe(lambda event: errors.append(event) if event.event == "store-error" else None)
    store = _make_store(tmp_path, notifier)

    await store.initialize()
    await store.initialize()

    assert store.get_server_state("github").status is BackendStatus.ERROR
    assert store.get_server_state("broken") is None
    assert [tool.name for tool in store.get_server_tools("github")] == ["search"]
    assert [event.server_name for event in errors] == ["broken"]


@pytest.mark.asyncio
async def test_initialize_with_missing_or_malformed_snapshot_starts_empty(tmp_path) -> None:
    (tmp_path / "status.json").write_text("{not json")
    notifier = StateChangeNotifier()
    events: list[StateChangeEvent] = []
    notifier.subscribe(events.append)
    store = _make_store(tmp_path, notifier)

    await store.initialize()

    assert store.get_states() == {}
    assert store.get_tools() == {}
    # Only the malformed file raises an error notification; the missing one is silent.
    assert [event.event for event in events] == ["store-error"]
    assert "status.json" in (events[0].error or "")


@pytest.mark.asyncio
async def test_statistics_and_clear(tmp_path) -> None:
    store = _make_store(tmp_path)
    await store.update_server_state("a", {"status": "connected"})
    await store.update_server_state("b", {"status": "error", "error": "boom"})
    await store.update_server_state("c", {"status": "disabled"})
    await store.update_server_tools("a", [{"name": "x"}, {"name": "y"}])

    assert store.get_statistics() == {
        "totalServers": 3,
        "connectedServers": 1,
        "errorServers": 1,
        "disabledServers": 1,
        "updatingServers": 0,
        "totalTools": 2,
    }

    await store.clear()
    assert store.get_statistics()["totalServers"] == 0


def test_from_settings_uses_state_paths(tmp_path) -> None:
    settings = Settings(
        state={
            "status_file": str(tmp_path / "custom-status.json"),
            "tools_file": str(tmp_path / "custom-tools.json"),
        }
    )

    store = BackendStateStore.from_settings(settings)

    assert store.status_snapshot() == {}
    assert store.tools_snapshot() == {}


@pytest.mark.asyncio
async def test_per_backend_locks_are_released_after_use(tmp_path) -> None:
    store = _make_store(tmp_path)

    await asyncio.gather(
        *(store.update_server_state(f"backend-{index}", {"status": "updating"}) for index in range(20)),
        store.update_server_state("backend-0", {"status": "connected"}),
    )
    with pytest.raises(StateValidationError):
        await store.update_server_state("ghost", {"status": "error"})
    for index in range(20):
        await store.delete_server_state(f"backend-{index}")

    assert store.get_states() == {}
    assert store._locks == {}
