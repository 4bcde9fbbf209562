"""EventScout MCP server: event discovery and extraction pipeline."""

__version__ = "0.1.0"
