from __future__ import annotations

import pytest

from switchboard.exceptions import InvalidTransitionError
from switchboard.state.lifecycle import BackendSession, can_transition
from switchboard.state.models import BackendStatus
from switchboard.state.save_queue import CoalescingSaveQueue
from switchboard.state.store import BackendStateStore


def _store(tmp_path) -> BackendStateStore:
    return BackendStateStore(
        tmp_path / "status.json",
        tmp_path / "tools.json",
        save_queue=CoalescingSaveQueue(min_interval=0),
    )


def test_transition_table_requires_updating_before_connected() -> None:
    assert can_transition(BackendStatus.DISABLED, BackendStatus.UPDATING)
    assert not can_transition(BackendStatus.DISABLED, BackendStatus.CONNECTED)
    assert not can_transition(BackendStatus.ERROR, BackendStatus.CONNECTED)
    for status in BackendStatus:
        assert can_transition(status, BackendStatus.DISABLED)


@pytest.mark.asyncio
async def test_session_happy_path_and_refresh(tmp_path) -> None:
    store = _store(tmp_path)
    disconnected: list[str] = []

    async def on_disconnect(name: str) -> None:
        disconnected.append(name)

    session = BackendSession("github", store, on_disconnect=on_disconnect)
    assert session.status is BackendStatus.DISABLED

    await session.activate({"command": "npx", "args": ["-y", "server-github"]})
    assert session.status is BackendStatus.UPDATING
    assert session.state is not None and session.state.config is not None
    assert session.state.config.args == ("-y", "server-github")

    await session.mark_connected([{"name": "search", "description": "Search code"}])
    assert session.status is BackendStatus.CONNECTED
    assert [tool.name for tool in store.get_all_tools()] == ["github_search"]

    await session.refresh()
    assert session.status is BackendStatus.UPDATING
    assert disconnected == ["github"]


@pytest.mark.asyncio
async def test_failure_records_classified_error_and_retry_clears_it(tmp_path) -> None:
    store = _store(tmp_path)
    session = BackendSession("filesystem", store)
    await session.activate({"command": "npx"})

    state = await session.mark_failed(FileNotFoundError("spawn npx ENOENT"), details="PATH=/usr/bin")

    assert state.status is BackendStatus.ERROR
    assert state.error == "spawn npx ENOENT"
    assert state.error_type == "command_not_found"
    assert state.error_details == "PATH=/usr/bin"

    state = await session.retry()
    assert state.status is BackendStatus.UPDATING
    assert state.error is None
    assert state.config is not None and state.config.command == "npx"


@pytest.mark.asyncio
async def test_invalid_transitions_are_rejected(tmp_path) -> None:
    store = _store(tmp_path)
    session = BackendSession("github", store)

    with pytest.raises(InvalidTransitionError):
        await session.mark_connected()
    with pytest.raises(InvalidTransitionError):
        await session.retry()

    await session.activate()
    with pytest.raises(InvalidTransitionError):
        await session.activate()
    assert session.status is BackendStatus.UPDATING


@pytest.mark.asyncio
async def test_deactivate_from_connected_drops_tools(tmp_path) -> None:
    store = _store(tmp_path)
    disconnected: list[str] = []
    session = BackendSession("github", store, on_disconnect=disconnected.append)
    await session.activate({"command": "npx"})
    await session.mark_connected([{"name": "search"}])

    state = await session.deactivate()

    assert state.status is BackendStatus.DISABLED
    assert store.get_server_tools("github") == []
    assert disconnected == ["github"]
    # Deactivation keeps the entry; only an explicit delete removes it.
    assert store.get_server_state("github") is not None
