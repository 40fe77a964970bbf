from __future__ import annotations

import sys

import httpx
import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from switchboard.core.config import Settings
from switchboard.main import create_app


def _settings(tmp_path) -> Settings:
    return Settings(
        environment="test",
        state={
            "status_file": str(tmp_path / "status.json"),
            "tools_file": str(tmp_path / "tools.json"),
            "save_interval_seconds": 0,
        },
        bridge={"allowed_host_commands": ["echo"]},
    )


@pytest.mark.asyncio
async def test_lifespan_initializes_and_flushes_store(tmp_path) -> None:
    app = create_app(_settings(tmp_path))

    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/")
            assert response.status_code == 200
        await app.state.store.update_server_state("github", {"status": "updating"})
    await transport.aclose()

    assert (tmp_path / "status.json").exists()


@pytest.mark.asyncio
async def test_metrics_endpoint_exposes_switchboard_series(tmp_path) -> None:
    app = create_app(_settings(tmp_path))

    transport = httpx.ASGITransport(app=app)
    async with app.router.lifespan_context(app):
        await app.state.store.update_server_state("github", {"status": "connected"})
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/metrics")
    await transport.aclose()

    assert response.status_code == 200
    assert response.headers.get("content-type", "").startswith("text/plain")
    assert "switchboard_state_mutation_total" in response.text
    assert 'switchboard_state_backends{status="connected"}' in response.text


def test_metrics_endpoint_can_be_disabled(tmp_path) -> None:
    settings = _settings(tmp_path)
    settings.observability.prometheus_enabled = False
    app = create_app(settings)

    with TestClient(app) as client:
        assert client.get("/metrics").status_code == 404


def test_bridge_websocket_relays_process_and_closes(tmp_path) -> None:
    app = create_app(_settings(tmp_path))
    code = "import sys; sys.stdout.write(sys.stdin.readline()[::-1])"

    with TestClient(app) as client:
        with client.websocket_connect("/bridge") as websocket:
            websocket.send_json({"type": "host-command", "command": "rm", "args": ["-rf", "/"]})
            assert websocket.receive_json() == {
                "type": "host-command-result",
                "success": False,
                "message": "Command 'rm' is not allowed",
            }

            websocket.send_json({"type": "init", "command": sys.executable, "args": ["-c", code]})
            assert websocket.receive_json()["type"] == "ready"
            websocket.send_json({"type": "stdin", "data": "abc\n"})

            frames = []
            while True:
                frame = websocket.receive_json()
                frames.append(frame)
                if frame["type"] == "exit":
                    break
            with pytest.raises(WebSocketDisconnect):
                websocket.receive_json()

    assert "".join(frame["data"] for frame in frames if frame["type"] == "stdout") == "\ncba"
    assert frames[-1] == {"type": "exit", "code": 0, "signal": None}


def test_bridge_websocket_reports_bad_frames(tmp_path) -> None:
    app = create_app(_settings(tmp_path))

    with TestClient(app) as client:
        with client.websocket_connect("/bridge") as websocket:
            websocket.send_text("not json")
            assert websocket.receive_json()["type"] == "error"
            websocket.send_json({"type": "stdin", "data": "early"})
            assert websocket.receive_json()["type"] == "error"
