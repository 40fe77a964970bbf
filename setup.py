"""Setup script for the MCP switchboard package."""

from setuptools import setup, find_packages

setup(
    name="mcp-switchboard",
    version="0.1.0",
    packages=find_packages(include=["switchboard", "switchboard.*"]),
    python_requires=">=3.10",
    install_requires=[
        "fastapi>=0.110",
        "uvicorn[standard]>=0.27",
        "pydantic>=2.5",
        "pydantic-settings>=2.1",
        "structlog>=24.1",
        "prometheus-client>=0.19",
        "python-dotenv>=1.0",
    ],
    extras_require={
        "tests": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
            "httpx>=0.26",
        ],
    },
    description="MCP switchboard - process bridge, backend state store and gateway config tooling",
    author="MCP Switchboard Team",
)
