"""Apple Mail orchestration tools for MCP agents."""

__version__ = "0.3.0"
