"""MCP switchboard: bridge, backend state store and configuration tooling."""

__version__ = "0.1.0"
