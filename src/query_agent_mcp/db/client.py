from __future__ import annotations

import logging
import threading
import time
import uuid
from typing import Any, Mapping

from sqlalchemy import URL, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from ..config import AppConfig
from ..errors import QueryError
from ..guardrails import (
    clamp_limit,
    effective_timeout,
    quote_literal,
    sanitize_object_name,
    sanitize_parameter_name,
)
from ..logging_utils import log_extra
from .models import QueryResult

PREVIEW_MIN_ROWS = 1


def build_engine_url(config: AppConfig) -> URL:
    db = config.database
    return URL.create(
        "mssql+pyodbc",
        username=db.user,
        password=db.password,
        host=db.host,
        port=db.port,
        database=db.database,
        query={
            "driver": db.driver,
            "Encrypt": "yes" if db.encrypt else "no",
            "TrustServerCertificate": "yes" if db.trust_server_certificate else "no",
        },
    )


class SQLServerClient:
    """Runs vetted statements against one shared, lazily created pool.

    Callers are expected to pass statements through the guardrails first;
    this class performs no denylist checks of its own.
    """

    def __init__(self, config: AppConfig, engine: Engine | None = None) -> None:
        self._config = config
        self._engine = engine
        self._engine_lock = threading.Lock()
        self._log = logging.getLogger(__name__)

    def _get_engine(self) -> Engine:
        if self._engine is None:
            with self._engine_lock:
                if self._engine is None:
                    pool = self._config.pool
                    self._engine = create_engine(
                        build_engine_url(self._config),
                        pool_size=pool.max_size,
                        max_overflow=0,
                        pool_timeout=pool.acquire_timeout_seconds,
                        pool_recycle=pool.idle_timeout_seconds,
                        pool_pre_ping=True,
                    )
                    self._log.info(
                        "Connection pool created",
                        extra=log_extra(
                            host=self._config.database.host,
                            database=self._config.database.database,
                            pool_size=pool.max_size,
                        ),
                    )
        return self._engine

    def run(
        self,
        sql: str,
        timeout_seconds: int | None = None,
        request_id: str | None = None,
    ) -> QueryResult:
        """Execute a statement batch and collect its first row-returning result set.

        Parameters:
        sql (str): Statement text that already passed the guardrails
        timeout_seconds (int | None): Per-call deadline, capped by the configured limit
        request_id (str | None): Request tracking ID

        Returns:
        QueryResult: Rows of the first set with columns and counts from the count-only sets

        Raises:
        QueryError: If the pool is exhausted or execution fails
        """
        return self._execute(
            sql,
            timeout=effective_timeout(timeout_seconds, self._config.limits),
            request_id=request_id,
        )

    def fetch(self, sql: str, request_id: str | None = None) -> list[dict[str, Any]]:
        return self.run(sql, request_id=request_id).rows

    def preview(
        self, table: str, limit: int | None = None, request_id: str | None = None
    ) -> QueryResult:
        safe_table = sanitize_object_name(table, "table")
        row_limit = clamp_limit(
            limit,
            floor=PREVIEW_MIN_ROWS,
            cap=self._config.limits.preview_max_rows,
            default=10,
        )
        return self.run(f"SELECT TOP {row_limit} * FROM {safe_table}", request_id=request_id)

    def execute_procedure(
        self,
        procedure: str,
        params: Mapping[str, Any] | None = None,
        request_id: str | None = None,
    ) -> QueryResult:
        return self.run(build_exec_statement(procedure, params), request_id=request_id)

    def test_connection(self) -> bool:
        try:
            self.run("SELECT 1 AS test")
        except QueryError:
            self._log.warning("Database connection test failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        with self._engine_lock:
            if self._engine is not None:
                self._engine.dispose()
                self._engine = None

    def _driver_error(self) -> type[Exception]:
        dbapi = getattr(self._get_engine().dialect, "loaded_dbapi", None)
        return getattr(dbapi, "Error", DBAPIError)

    def _execute(
        self,
        sql: str,
        timeout: int | None,
        request_id: str | None = None,
    ) -> QueryResult:
        engine = self._get_engine()
        driver_error = self._driver_error()
        query_id = str(uuid.uuid4())
        statement_type = (sql.strip().split() or ["?"])[0].upper()
        started = time.perf_counter()

        try:
            connection = engine.raw_connection()
        except PoolTimeoutError as exc:
            self._log.warning(
                "Connection pool exhausted",
                extra=log_extra(request_id=request_id, query_id=query_id),
            )
            raise QueryError(
                "Database is busy: no connection available, retry shortly",
                retryable=True,
            ) from exc
        except (DBAPIError, driver_error) as exc:
            self._log.warning(
                "Database connection failed",
                extra=log_extra(request_id=request_id, error_message=str(exc)),
            )
            raise QueryError(f"Database connection failed: {exc}", retryable=True) from exc

        rows: list[dict[str, Any]] = []
        rows_affected: list[int] = []
        seen_rows = False
        try:
            driver_connection = getattr(connection, "driver_connection", None)
            if driver_connection is not None:
                driver_connection.timeout = timeout or 0
            cursor = connection.cursor()
            try:
                cursor.execute(sql)
                while True:
                    # Rows come from the first result set only; later sets may
                    # carry different columns and are skipped.
                    if cursor.description:
                        if not seen_rows:
                            columns = [col[0] for col in cursor.description]
                            rows = [dict(zip(columns, row)) for row in cursor.fetchall()]
                            seen_rows = True
                    elif cursor.rowcount is not None and cursor.rowcount >= 0:
                        rows_affected.append(cursor.rowcount)
                    if not cursor.nextset():
                        break
            finally:
                cursor.close()
            connection.commit()
        except driver_error as exc:
            try:
                connection.rollback()
            except driver_error:
                self._log.debug("Rollback failed", exc_info=True)
            self._log.warning(
                "Query failed",
                extra=log_extra(
                    request_id=request_id,
                    query_id=query_id,
                    statement_type=statement_type,
                    error_message=str(exc),
                ),
            )
            raise QueryError(
                f"Query execution failed: {exc}", retryable=_is_timeout(exc)
            ) from exc
        finally:
            connection.close()

        self._log.info(
            "Query executed",
            extra=log_extra(
                request_id=request_id,
                query_id=query_id,
                statement_type=statement_type,
                row_count=len(rows),
                duration_ms=int((time.perf_counter() - started) * 1000),
            ),
        )
        return QueryResult(rows=rows, rows_affected=rows_affected)


def build_exec_statement(procedure: str, params: Mapping[str, Any] | None = None) -> str:
    """Build an ``EXEC`` call with parameter values inlined as literals."""
    safe_procedure = sanitize_object_name(procedure, "procedure")
    statement = f"EXEC {safe_procedure}"
    if params:
        assignments = ", ".join(
            f"@{sanitize_parameter_name(key)} = {quote_literal(value)}"
            for key, value in params.items()
        )
        statement += f" {assignments}"
    return statement


def _is_timeout(exc: Exception) -> bool:
    state = exc.args[0] if exc.args else ""
    return state == "HYT00" or "timeout" in str(exc).lower()
