"""FastAPI application configuration for the query agent server.

This module wires the shared services (connection pool, schema catalog,
provider registry, session store) once per process and exposes them through
both the HTTP API and the MCP tools.
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Sequence

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastmcp import FastMCP
from starlette.exceptions import HTTPException as StarletteHTTPException

from ..chat import ConversationOrchestrator, SessionStore
from ..config import AppConfig, load_config
from ..db import SchemaCatalog, SQLServerClient
from ..errors import ConfigError, GuardrailError, ProviderError, QueryError
from ..llm import ProviderRegistry, build_registry
from ..logging_utils import configure_logging
from ..tools import DatabaseTools, register_data_tools
from .routes import chat_router, db_router


@dataclass
class Services:
    config: AppConfig
    client: SQLServerClient
    catalog: SchemaCatalog
    registry: ProviderRegistry
    sessions: SessionStore
    orchestrator: ConversationOrchestrator
    tools: DatabaseTools


def _config_path() -> Path:
    """Get the configuration file path from environment or default."""
    path = os.environ.get("QUERY_AGENT_CONFIG", "config.example.yml")
    return Path(path)


def build_services(config: AppConfig) -> Services:
    """Create the process-wide services. The pool itself opens lazily."""
    client = SQLServerClient(config)
    catalog = SchemaCatalog(client)
    registry = build_registry(config.providers)
    sessions = SessionStore(
        max_messages=config.limits.session_max_messages,
        ttl_seconds=config.limits.session_ttl_seconds,
    )
    return Services(
        config=config,
        client=client,
        catalog=catalog,
        registry=registry,
        sessions=sessions,
        orchestrator=ConversationOrchestrator(catalog, client, registry, sessions),
        tools=DatabaseTools(catalog, client, max_rows=config.limits.result_max_rows),
    )


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConfigError)
    async def config_error(_: Request, exc: ConfigError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(GuardrailError)
    async def guardrail_error(_: Request, exc: GuardrailError) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(QueryError)
    async def query_error(_: Request, exc: QueryError) -> JSONResponse:
        return _error(503 if exc.retryable else 502, str(exc))

    @app.exception_handler(ProviderError)
    async def provider_error(_: Request, exc: ProviderError) -> JSONResponse:
        return _error(502, str(exc))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(_: Request, exc: StarletteHTTPException) -> JSONResponse:
        return _error(exc.status_code, str(exc.detail))


def create_api(
    services: Services,
    routes: Sequence[Any] | None = None,
    lifespan: Any = None,
) -> FastAPI:
    """Build the HTTP application around already-wired services.

    Args:
        services: Shared services, stored on ``app.state.services``
        routes: Extra routes to serve alongside the API (the MCP endpoint)
        lifespan: Lifespan handler, normally one wrapping the MCP app's
    """
    app = FastAPI(
        title="Query Agent MCP Server",
        description="Natural-language query agent and MCP tools for SQL Server",
        version="0.1.0",
        routes=list(routes or []),
        lifespan=lifespan,
    )
    app.state.services = services
    _register_error_handlers(app)
    app.include_router(chat_router, prefix="/api")
    app.include_router(db_router, prefix="/api")

    @app.get("/health")
    async def health_check() -> dict:
        """Health check endpoint."""
        return {"message": "Query Agent MCP Server is running", "status": "healthy"}

    return app


def create_mcp_server(services: Services) -> FastMCP:
    mcp_server = FastMCP(name="query-agent-mcp")
    register_data_tools(
        mcp_server,
        services.tools,
        timeout=services.config.limits.request_timeout_seconds,
    )
    return mcp_server


def load_services(config_path: Path | None = None) -> Services:
    config = load_config(config_path or _config_path())
    configure_logging(config.observability.log_level)
    return build_services(config)


def create_app(config_path: Path | None = None) -> FastAPI:
    """Create the combined HTTP API and MCP application.

    Args:
        config_path: Optional path to config file. If None, uses default from environment.
    """
    services = load_services(config_path)
    mcp_app = create_mcp_server(services).http_app()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        async with mcp_app.lifespan(app):
            yield
        services.client.close()

    return create_api(services, routes=mcp_app.routes, lifespan=lifespan)
