from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from .bridge.host_commands import HostCommandRunner
from .bridge.router import bridge_endpoint
from .core.config import Settings, get_settings
from .core.logging import configure_logging, get_logger
from .state.notifications import log_state_change
from .state.store import BackendStateStore

logger = get_logger(name=__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    active = settings or get_settings()
    configure_logging(active.observability.log_level, json_logs=active.observability.json_logs)

    @asynccontextmanager
    async def app_lifespan(app: FastAPI):
        store = BackendStateStore.from_settings(active)
        store.subscribe(log_state_change)
        await store.initialize()
        app.state.store = store
        logger.info(
            "switchboard_started",
            environment=active.environment,
            bridge_path=active.bridge.path,
            allowed_host_commands=sorted(app.state.host_commands.allowed),
        )
        try:
            yield
        finally:
            await store.flush()
            await store.close()
            store.unsubscribe(log_state_change)
            logger.info("switchboard_stopped")

    app = FastAPI(title="MCP Switchboard", version="0.1.0", lifespan=app_lifespan)
    app.state.settings = active
    app.state.host_commands = HostCommandRunner(
        active.bridge.allowed_host_commands,
        timeout=active.bridge.host_command_timeout_seconds,
    )
    app.add_api_websocket_route(active.bridge.path, bridge_endpoint, name="bridge")

    @app.get("/", tags=["health"])
    async def root() -> dict[str, str]:
        return {"message": "MCP switchboard running"}

    if active.observability.prometheus_enabled:

        @app.get("/metrics", tags=["observability"])
        async def metrics() -> Response:
            return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

    return app


app = create_app()
