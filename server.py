"""MCP switchboard server entry point."""

import uvicorn
from dotenv import load_dotenv

# Load environment variables before settings are read
load_dotenv()

from switchboard.core.config import get_settings  # noqa: E402

if __name__ == "__main__":
    settings = get_settings()
    debug = settings.environment == "local" and settings.observability.log_level == "DEBUG"

    print(f"Starting MCP switchboard on {settings.bridge.host}:{settings.bridge.port}")
    print(f"Bridge WebSocket URL: ws://localhost:{settings.bridge.port}{settings.bridge.path}")
    # Using the app as an import string to enable reload
    uvicorn.run("switchboard.main:app", host=settings.bridge.host, port=settings.bridge.port, reload=debug)
