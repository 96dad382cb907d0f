"""Database tools for the MCP server.

This module contains the stateless operations an agent runtime can call:
schema lookup, gated statement execution, stored procedure listing and
execution, and table preview. Every operation returns plain text.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Callable, Mapping

from fastmcp.exceptions import ToolError

from ..db.catalog import SchemaCatalog, render_procedure
from ..db.client import SQLServerClient
from ..errors import GuardrailError, QueryError
from ..formatting import format_table
from ..guardrails import ensure_procedure_allowed, ensure_statement_allowed


def _request_id(value: str | None = None) -> str:
    """Generate a unique request ID for tracing."""
    return value or str(uuid.uuid4())


class DatabaseTools:
    def __init__(
        self, catalog: SchemaCatalog, client: SQLServerClient, max_rows: int = 100
    ) -> None:
        self._catalog = catalog
        self._client = client
        self._max_rows = max_rows

    def get_schema(self, request_id: str | None = None) -> str:
        self._catalog.load()
        return self._catalog.render()

    def execute_query(self, query: str, request_id: str | None = None) -> str:
        ensure_statement_allowed(query)
        result = self._client.run(query, request_id=request_id)
        if not result.rows:
            return "Query executed with no results. (0 rows)"
        table = format_table(result.rows, self._max_rows)
        return f"Result: {len(result.rows)} rows\n\n{table}"

    def get_stored_procedures(self, request_id: str | None = None) -> str:
        snapshot = self._catalog.load()
        text = "=== STORED PROCEDURES ===\n\n"
        if not snapshot.procedures:
            return text + "(no stored procedures)\n"
        for proc in snapshot.procedures.values():
            text += "\n".join(render_procedure(proc)) + "\n\n"
        return text

    def execute_stored_procedure(
        self,
        procedure: str,
        params: Mapping[str, Any] | None = None,
        request_id: str | None = None,
    ) -> str:
        ensure_procedure_allowed(procedure)
        result = self._client.execute_procedure(procedure, params, request_id=request_id)
        if not result.rows:
            return f"{procedure} executed (no results)"
        table = format_table(result.rows, self._max_rows)
        return f"{procedure} result: {len(result.rows)} rows\n\n{table}"

    def preview_table(
        self, table: str, limit: int | None = 10, request_id: str | None = None
    ) -> str:
        result = self._client.preview(table, limit, request_id=request_id)
        if not result.rows:
            return f"Table {table} has no rows."
        return (
            f"{table} preview ({len(result.rows)} rows)\n\n"
            + format_table(result.rows, self._max_rows, truncate=True)
        )


async def _call_tool(func: Callable[..., str], *args: Any, timeout: float | None) -> str:
    try:
        return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
    except (GuardrailError, QueryError) as exc:
        raise ToolError(str(exc)) from exc
    except asyncio.TimeoutError as exc:
        raise ToolError("Tool call timed out") from exc


def register_data_tools(
    mcp_server: Any, tools: DatabaseTools, timeout: float | None = None
) -> None:
    """Register the database tools with the MCP server.

    Args:
        mcp_server: The FastMCP server instance
        tools: DatabaseTools bound to the shared catalog and client
        timeout: Deadline in seconds for each tool call
    """

    @mcp_server.tool()
    async def get_schema(request_id: str | None = None) -> str:
        """List the database tables, columns, keys, stored procedures and views.

        Use this to find which tables exist and how they relate before writing SQL.
        """
        return await _call_tool(tools.get_schema, _request_id(request_id), timeout=timeout)

    @mcp_server.tool()
    async def execute_query(query: str, request_id: str | None = None) -> str:
        """Execute a SQL query and return the rows as a text table.

        DROP, TRUNCATE, ALTER, CREATE, unfiltered DELETE and system procedure
        calls are blocked.

        Args:
            query: SQL statement to run
            request_id: Optional request ID for tracing
        """
        return await _call_tool(
            tools.execute_query, query, _request_id(request_id), timeout=timeout
        )

    @mcp_server.tool()
    async def get_stored_procedures(request_id: str | None = None) -> str:
        """List stored procedures with their parameters."""
        return await _call_tool(
            tools.get_stored_procedures, _request_id(request_id), timeout=timeout
        )

    @mcp_server.tool()
    async def execute_stored_procedure(
        procedure: str,
        params: dict[str, str | int | float | None] | None = None,
        request_id: str | None = None,
    ) -> str:
        """Execute a stored procedure with named parameters.

        Args:
            procedure: Procedure name, e.g. dbo.GetUsers
            params: Parameter values keyed by name, e.g. {"userId": 1, "status": "active"}
            request_id: Optional request ID for tracing
        """
        return await _call_tool(
            tools.execute_stored_procedure,
            procedure,
            params,
            _request_id(request_id),
            timeout=timeout,
        )

    @mcp_server.tool()
    async def preview_table(
        table: str, limit: int = 10, request_id: str | None = None
    ) -> str:
        """Preview the first rows of a table (default 10, max 100).

        Args:
            table: Table name, e.g. dbo.Users
            limit: Number of rows to return
            request_id: Optional request ID for tracing
        """
        return await _call_tool(
            tools.preview_table, table, limit, _request_id(request_id), timeout=timeout
        )
