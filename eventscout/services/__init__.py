"""Services for the EventScout MCP server."""
