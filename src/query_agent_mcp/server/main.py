"""Main entry point for the query agent server.

It's configured as the entry point in pyproject.toml, so you can run the server
using the command: query-agent-server

Over HTTP the server uses uvicorn to serve the combined FastAPI/FastMCP
application; over stdio it serves only the MCP tools.
"""

import argparse
import os

import uvicorn

from .app import create_mcp_server, load_services


def main() -> None:
    """Start the server.

    Usage:
        Run with default port: query-agent-server
        Run with custom port: query-agent-server --port 8080
        Serve MCP over stdio: query-agent-server --transport stdio
    """
    parser = argparse.ArgumentParser(description="Start the query agent MCP server")
    parser.add_argument(
        "--port", type=int, default=8000, help="Port to run the server on (default: 8000)"
    )
    parser.add_argument(
        "--transport",
        choices=("http", "stdio"),
        default="http",
        help="Serve the HTTP API and MCP endpoint, or MCP only over stdio",
    )
    parser.add_argument("--config", help="Path to the YAML config file")
    args = parser.parse_args()

    if args.config:
        os.environ["QUERY_AGENT_CONFIG"] = args.config

    if args.transport == "stdio":
        create_mcp_server(load_services()).run()
        return

    uvicorn.run(
        "query_agent_mcp.server.app:create_app",
        factory=True,
        host="0.0.0.0",
        port=args.port,
    )


if __name__ == "__main__":
    main()
