from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any

from ..db.catalog import SchemaCatalog
from ..db.client import SQLServerClient
from ..db.models import StoredProcedureInfo, TableInfo
from ..errors import ProviderError, QueryError
from ..formatting import result_payload
from ..guardrails import evaluate_statement
from ..llm.providers import Message, ProviderRegistry
from ..logging_utils import log_extra
from .prompts import SYSTEM_PROMPT, first_turn_content, follow_up_content
from .replies import EXECUTING_ACTIONS, parse_reply
from .sessions import SessionStore


@dataclass
class TurnResult:
    message: str
    sql: str | None
    action: str
    provider_id: str
    model_id: str
    session_id: str
    schema_refreshed: bool = False
    tables_used: list[str] = field(default_factory=list)
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "message": self.message,
            "sql": self.sql,
            "action": self.action,
            "tables_used": self.tables_used,
            "provider_id": self.provider_id,
            "model_id": self.model_id,
            "session_id": self.session_id,
            "schema_refreshed": self.schema_refreshed,
        }
        if self.error is not None:
            payload["error"] = self.error
        else:
            payload["result"] = self.result
        return payload


class ConversationOrchestrator:
    """Drives one chat turn: context, provider call, reply parsing, execution."""

    def __init__(
        self,
        catalog: SchemaCatalog,
        client: SQLServerClient,
        registry: ProviderRegistry,
        sessions: SessionStore,
        system_prompt: str = SYSTEM_PROMPT,
    ) -> None:
        self._catalog = catalog
        self._client = client
        self._registry = registry
        self._sessions = sessions
        self._system_prompt = system_prompt
        self._log = logging.getLogger(__name__)

    def chat(
        self,
        message: str,
        provider_id: str,
        session_id: str = "default",
        request_id: str | None = None,
        cancelled: threading.Event | None = None,
    ) -> TurnResult:
        """Run one conversation turn.

        When ``cancelled`` is set by the time the provider answers, the caller
        has already given up: the user message is withdrawn, the reply is not
        recorded and nothing is executed.

        Raises:
        ConfigError: If the provider is unknown or has no credential
        ProviderError: If the provider call fails
        QueryError: If the schema cannot be read and nothing is cached yet
        """
        schema_refreshed = self._refresh_schema(request_id)
        provider = self._registry.get(provider_id)
        provider.ensure_configured()

        if self._sessions.is_new(session_id):
            content = first_turn_content(
                self._catalog.render(), self._catalog.relationships(), message
            )
        else:
            content = follow_up_content(message)

        user_message = Message(role="user", content=content)
        history = self._sessions.append(session_id, user_message)
        try:
            reply = provider.chat(history, self._system_prompt)
        except ProviderError:
            self._sessions.discard(session_id, user_message)
            raise

        if cancelled is not None and cancelled.is_set():
            self._sessions.discard(session_id, user_message)
            self._log.warning(
                "Chat turn abandoned after deadline",
                extra=log_extra(request_id=request_id, session_id=session_id),
            )
            return TurnResult(
                message="",
                sql=None,
                action="none",
                provider_id=reply.provider_id,
                model_id=reply.model_id,
                session_id=session_id,
                schema_refreshed=schema_refreshed,
                error="Request timed out",
            )

        self._sessions.append(session_id, Message(role="assistant", content=reply.content))

        parsed = parse_reply(reply.content)
        turn = TurnResult(
            message=parsed.message,
            sql=parsed.sql,
            action=parsed.action,
            tables_used=list(parsed.tables_used),
            provider_id=reply.provider_id,
            model_id=reply.model_id,
            session_id=session_id,
            schema_refreshed=schema_refreshed,
        )
        if parsed.sql and parsed.action in EXECUTING_ACTIONS:
            self._execute(turn, parsed.sql, request_id)
        return turn

    def _refresh_schema(self, request_id: str | None) -> bool:
        try:
            _, refreshed = self._catalog.ensure_fresh()
        except QueryError as exc:
            if self._catalog.snapshot is None:
                raise
            self._log.warning(
                "Schema check failed, using cached snapshot",
                extra=log_extra(request_id=request_id, error_message=str(exc)),
            )
            return False
        if refreshed:
            self._log.info(
                "Schema refreshed before chat turn",
                extra=log_extra(request_id=request_id),
            )
        return refreshed

    def _execute(self, turn: TurnResult, sql: str, request_id: str | None) -> None:
        verdict = evaluate_statement(sql)
        if not verdict.allowed:
            self._log.info(
                "Generated statement rejected",
                extra=log_extra(request_id=request_id, session_id=turn.session_id),
            )
            turn.error = verdict.reason
            return
        try:
            turn.result = result_payload(self._client.run(sql, request_id=request_id))
        except QueryError as exc:
            turn.error = str(exc)

    def clear(self, session_id: str) -> bool:
        return self._sessions.clear(session_id)

    def describe_table(self, name: str) -> TableInfo | None:
        return self._catalog.find_table(name)

    def describe_procedure(self, name: str) -> StoredProcedureInfo | None:
        return self._catalog.find_procedure(name)
