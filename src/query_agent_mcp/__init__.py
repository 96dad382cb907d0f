"""Natural-language query agent for SQL Server.

Submodules are imported explicitly to keep package import free of driver and
server side effects:
from query_agent_mcp.db import SchemaCatalog, SQLServerClient
from query_agent_mcp.guardrails import evaluate_statement
from query_agent_mcp.chat import ConversationOrchestrator
from query_agent_mcp.server.app import create_app
"""

__all__ = [
    "config",
    "guardrails",
]
