"""HTTP and MCP server entry points."""
