"""HTTP routes for the chat and database APIs.

Handlers stay thin: they pull the shared services from ``app.state``, push
blocking work to a worker thread under the request deadline and let the
exception handlers in :mod:`.app` map core errors to status codes.
"""

from __future__ import annotations

import threading
import time
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from ..formatting import result_payload
from ..guardrails import ensure_statement_allowed
from .utils import request_id, run_with_deadline

if TYPE_CHECKING:
    from .app import Services

chat_router = APIRouter(prefix="/chat", tags=["chat"])
db_router = APIRouter(prefix="/db", tags=["db"])


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    provider: str = "claude-sonnet"
    session_id: str = "default"


class QueryRequest(BaseModel):
    sql: str = Field(min_length=1)


def _services(request: Request) -> "Services":
    return request.app.state.services


def _timeout(services: "Services") -> int:
    return services.config.limits.request_timeout_seconds


@chat_router.post("")
async def chat(body: ChatRequest, request: Request) -> dict[str, Any]:
    services = _services(request)
    cancelled = threading.Event()
    turn = await run_with_deadline(
        services.orchestrator.chat,
        body.message,
        body.provider,
        body.session_id,
        request_id(request),
        cancelled,
        timeout=_timeout(services),
        on_timeout=cancelled.set,
    )
    return turn.to_dict()


@chat_router.get("/providers")
async def list_providers(request: Request) -> dict[str, Any]:
    return {"providers": _services(request).registry.list_available()}


@chat_router.get("/table/{name}")
async def chat_table(name: str, request: Request) -> dict[str, Any]:
    services = _services(request)
    table = await run_with_deadline(
        services.orchestrator.describe_table, name, timeout=_timeout(services)
    )
    if table is None:
        raise HTTPException(status_code=404, detail="Table not found")
    return table.to_dict()


@chat_router.get("/sp/{name}")
async def chat_procedure(name: str, request: Request) -> dict[str, Any]:
    services = _services(request)
    proc = await run_with_deadline(
        services.orchestrator.describe_procedure, name, timeout=_timeout(services)
    )
    if proc is None:
        raise HTTPException(status_code=404, detail="Stored procedure not found")
    return proc.to_dict()


@chat_router.delete("/history/{session_id}")
async def clear_history(session_id: str, request: Request) -> dict[str, Any]:
    cleared = _services(request).orchestrator.clear(session_id)
    return {"success": True, "cleared": cleared, "message": "History cleared"}


@db_router.get("/health")
async def db_health(request: Request) -> dict[str, Any]:
    services = _services(request)
    connected = await run_with_deadline(
        services.client.test_connection, timeout=_timeout(services)
    )
    return {
        "connected": connected,
        "message": "Database connected" if connected else "Connection failed",
    }


@db_router.get("/schema")
async def get_schema(
    request: Request, format: str = "text", refresh: bool = False
) -> dict[str, Any]:
    services = _services(request)
    catalog = services.catalog
    if refresh:
        await run_with_deadline(catalog.load, True, timeout=_timeout(services))
    if format == "json":
        snapshot = await run_with_deadline(catalog.load, timeout=_timeout(services))
        return snapshot.to_dict()
    schema = await run_with_deadline(catalog.render, timeout=_timeout(services))
    return {"schema": schema}


@db_router.post("/schema/refresh")
async def refresh_schema(request: Request) -> dict[str, Any]:
    services = _services(request)
    started = time.perf_counter()
    snapshot = await run_with_deadline(
        services.catalog.load, True, timeout=_timeout(services)
    )
    stats: dict[str, Any] = services.catalog.stats(snapshot)
    stats["duration_ms"] = int((time.perf_counter() - started) * 1000)
    return {
        "success": True,
        "message": "Schema cache refreshed",
        "stats": stats,
        "last_updated": snapshot.last_updated.isoformat(),
    }


@db_router.get("/schema/check")
async def check_schema(request: Request) -> dict[str, Any]:
    services = _services(request)
    changed = await run_with_deadline(
        services.catalog.has_changed, timeout=_timeout(services)
    )
    snapshot = services.catalog.snapshot
    return {
        "changed": changed,
        "last_updated": snapshot.last_updated.isoformat() if snapshot else None,
        "cached": snapshot is not None,
    }


@db_router.get("/tables")
async def list_tables(request: Request) -> dict[str, Any]:
    services = _services(request)
    snapshot = await run_with_deadline(services.catalog.load, timeout=_timeout(services))
    return {
        "tables": [
            {
                "schema": table.schema,
                "name": table.name,
                "full_name": table.full_name,
                "column_count": len(table.columns),
            }
            for table in snapshot.tables.values()
        ]
    }


@db_router.get("/tables/{name}")
async def get_table(name: str, request: Request) -> dict[str, Any]:
    services = _services(request)
    table = await run_with_deadline(
        services.catalog.find_table, name, timeout=_timeout(services)
    )
    if table is None:
        raise HTTPException(status_code=404, detail="Table not found")
    return table.to_dict()


@db_router.get("/procedures")
async def list_procedures(request: Request) -> dict[str, Any]:
    services = _services(request)
    snapshot = await run_with_deadline(services.catalog.load, timeout=_timeout(services))
    return {
        "procedures": [
            {
                "schema": proc.schema,
                "name": proc.name,
                "full_name": proc.full_name,
                "parameter_count": len(proc.parameters),
                "description": proc.description,
            }
            for proc in snapshot.procedures.values()
        ]
    }


@db_router.get("/procedures/{name}")
async def get_procedure(name: str, request: Request) -> dict[str, Any]:
    services = _services(request)
    proc = await run_with_deadline(
        services.catalog.find_procedure, name, timeout=_timeout(services)
    )
    if proc is None:
        raise HTTPException(status_code=404, detail="Stored procedure not found")
    return proc.to_dict()


@db_router.get("/relationships")
async def get_relationships(request: Request) -> dict[str, Any]:
    services = _services(request)
    text = await run_with_deadline(
        services.catalog.relationships, timeout=_timeout(services)
    )
    return {"relationships": text}


@db_router.post("/query")
async def run_query(body: QueryRequest, request: Request) -> dict[str, Any]:
    services = _services(request)
    ensure_statement_allowed(body.sql)
    result = await run_with_deadline(
        services.client.run,
        body.sql,
        None,
        request_id(request),
        timeout=_timeout(services),
    )
    return {"success": True, **result_payload(result)}


@db_router.delete("/cache")
async def clear_cache(request: Request) -> dict[str, Any]:
    _services(request).catalog.clear()
    return {"success": True, "message": "Schema cache cleared"}
