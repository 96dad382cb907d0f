"""Self-refreshing schema catalog for SQL Server metadata.

The catalog owns one published :class:`SchemaSnapshot` at a time. Readers use
whatever snapshot is current and never wait on a refresh; a refresh builds a
new snapshot off to the side and publishes it with a single reference swap.
Concurrent refresh requests are coalesced behind a lock so one metadata scan
serves every caller that detected staleness at the same time.
"""

from __future__ import annotations

import hashlib
import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol, Sequence

from ..logging_utils import log_extra
from .models import (
    ColumnInfo,
    ParameterInfo,
    SchemaSnapshot,
    StoredProcedureInfo,
    TableInfo,
    ViewInfo,
)

TABLES_SQL = """
SELECT
  t.TABLE_SCHEMA,
  t.TABLE_NAME,
  c.COLUMN_NAME,
  c.DATA_TYPE,
  c.IS_NULLABLE,
  c.CHARACTER_MAXIMUM_LENGTH,
  CASE WHEN pk.COLUMN_NAME IS NOT NULL THEN 1 ELSE 0 END AS IS_PRIMARY,
  fk.REFERENCED_TABLE_SCHEMA,
  fk.REFERENCED_TABLE_NAME,
  fk.REFERENCED_COLUMN_NAME
FROM INFORMATION_SCHEMA.TABLES t
JOIN INFORMATION_SCHEMA.COLUMNS c
  ON t.TABLE_NAME = c.TABLE_NAME AND t.TABLE_SCHEMA = c.TABLE_SCHEMA
LEFT JOIN (
  SELECT ku.TABLE_SCHEMA, ku.TABLE_NAME, ku.COLUMN_NAME
  FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
  JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ku
    ON tc.CONSTRAINT_NAME = ku.CONSTRAINT_NAME
  WHERE tc.CONSTRAINT_TYPE = 'PRIMARY KEY'
) pk ON c.TABLE_SCHEMA = pk.TABLE_SCHEMA
  AND c.TABLE_NAME = pk.TABLE_NAME
  AND c.COLUMN_NAME = pk.COLUMN_NAME
LEFT JOIN (
  SELECT
    cu.TABLE_SCHEMA,
    cu.TABLE_NAME,
    cu.COLUMN_NAME,
    ku.TABLE_SCHEMA AS REFERENCED_TABLE_SCHEMA,
    ku.TABLE_NAME AS REFERENCED_TABLE_NAME,
    ku.COLUMN_NAME AS REFERENCED_COLUMN_NAME
  FROM INFORMATION_SCHEMA.REFERENTIAL_CONSTRAINTS rc
  JOIN INFORMATION_SCHEMA.CONSTRAINT_COLUMN_USAGE cu
    ON rc.CONSTRAINT_NAME = cu.CONSTRAINT_NAME
  JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE ku
    ON rc.UNIQUE_CONSTRAINT_NAME = ku.CONSTRAINT_NAME
) fk ON c.TABLE_SCHEMA = fk.TABLE_SCHEMA
  AND c.TABLE_NAME = fk.TABLE_NAME
  AND c.COLUMN_NAME = fk.COLUMN_NAME
WHERE t.TABLE_TYPE = 'BASE TABLE'
ORDER BY t.TABLE_SCHEMA, t.TABLE_NAME, c.ORDINAL_POSITION
"""

PROCEDURES_SQL = """
SELECT
  SCHEMA_NAME(p.schema_id) AS SCHEMA_NAME,
  p.name AS PROCEDURE_NAME,
  par.name AS PARAMETER_NAME,
  TYPE_NAME(par.user_type_id) AS DATA_TYPE,
  par.max_length AS MAX_LENGTH,
  par.is_output AS IS_OUTPUT,
  CAST(ep.value AS NVARCHAR(4000)) AS DESCRIPTION
FROM sys.procedures p
LEFT JOIN sys.parameters par ON p.object_id = par.object_id
LEFT JOIN sys.extended_properties ep
  ON p.object_id = ep.major_id AND ep.name = 'MS_Description' AND ep.minor_id = 0
WHERE p.is_ms_shipped = 0
ORDER BY SCHEMA_NAME(p.schema_id), p.name, par.parameter_id
"""

VIEWS_SQL = """
SELECT
  v.TABLE_SCHEMA,
  v.TABLE_NAME,
  c.COLUMN_NAME,
  c.DATA_TYPE,
  c.IS_NULLABLE,
  c.CHARACTER_MAXIMUM_LENGTH
FROM INFORMATION_SCHEMA.VIEWS v
JOIN INFORMATION_SCHEMA.COLUMNS c
  ON v.TABLE_NAME = c.TABLE_NAME AND v.TABLE_SCHEMA = c.TABLE_SCHEMA
ORDER BY v.TABLE_SCHEMA, v.TABLE_NAME, c.ORDINAL_POSITION
"""

COLUMN_FINGERPRINT_SQL = """
SELECT
  c.TABLE_SCHEMA,
  c.TABLE_NAME,
  c.COLUMN_NAME,
  c.DATA_TYPE,
  ISNULL(c.CHARACTER_MAXIMUM_LENGTH, 0) AS MAX_LENGTH
FROM INFORMATION_SCHEMA.TABLES t
JOIN INFORMATION_SCHEMA.COLUMNS c
  ON t.TABLE_NAME = c.TABLE_NAME AND t.TABLE_SCHEMA = c.TABLE_SCHEMA
WHERE t.TABLE_TYPE = 'BASE TABLE'
ORDER BY c.TABLE_SCHEMA, c.TABLE_NAME, c.ORDINAL_POSITION
"""

PROCEDURE_FINGERPRINT_SQL = """
SELECT
  SCHEMA_NAME(schema_id) AS SCHEMA_NAME,
  name AS PROCEDURE_NAME,
  modify_date AS MODIFY_DATE
FROM sys.procedures
ORDER BY SCHEMA_NAME(schema_id), name
"""

LAST_MODIFIED_SQL = """
SELECT MAX(modify_date) AS LAST_MODIFIED
FROM sys.objects
WHERE type IN ('U', 'P', 'V')
"""


class MetadataSource(Protocol):
    def fetch(self, sql: str, request_id: str | None = None) -> list[dict[str, Any]]:
        ...


def _hash_rows(digest: Any, rows: Iterable[Sequence[Any]]) -> None:
    for row in rows:
        digest.update("\x1f".join("" if v is None else str(v) for v in row).encode("utf-8"))
        digest.update(b"\x1e")


def compute_checksum(
    column_rows: list[dict[str, Any]],
    procedure_rows: list[dict[str, Any]],
    last_modified: Any,
) -> str:
    """Fingerprint catalog metadata for change detection."""
    tables_digest = hashlib.sha256()
    _hash_rows(
        tables_digest,
        (
            (
                row.get("TABLE_SCHEMA"),
                row.get("TABLE_NAME"),
                row.get("COLUMN_NAME"),
                row.get("DATA_TYPE"),
                row.get("MAX_LENGTH") or 0,
            )
            for row in column_rows
        ),
    )
    procedures_digest = hashlib.sha256()
    _hash_rows(
        procedures_digest,
        (
            (row.get("SCHEMA_NAME"), row.get("PROCEDURE_NAME"), row.get("MODIFY_DATE"))
            for row in procedure_rows
        ),
    )
    stamp = last_modified.isoformat() if isinstance(last_modified, datetime) else last_modified
    return "-".join(
        (tables_digest.hexdigest()[:32], procedures_digest.hexdigest()[:32], str(stamp))
    )


def _is_true(value: Any) -> bool:
    if isinstance(value, str):
        return value.upper() in {"YES", "1", "TRUE"}
    return bool(value)


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def build_tables(rows: list[dict[str, Any]]) -> dict[str, TableInfo]:
    grouped: dict[str, tuple[str, str, list[ColumnInfo]]] = {}
    for row in rows:
        schema, name = row["TABLE_SCHEMA"], row["TABLE_NAME"]
        entry = grouped.setdefault(f"{schema}.{name}", (schema, name, []))
        ref_table = row.get("REFERENCED_TABLE_NAME")
        entry[2].append(
            ColumnInfo(
                name=row["COLUMN_NAME"],
                data_type=row["DATA_TYPE"],
                is_nullable=_is_true(row.get("IS_NULLABLE")),
                max_length=_optional_int(row.get("CHARACTER_MAXIMUM_LENGTH")),
                is_primary_key=_is_true(row.get("IS_PRIMARY")),
                is_foreign_key=bool(ref_table),
                foreign_key_ref=(
                    f"{row.get('REFERENCED_TABLE_SCHEMA')}.{ref_table}."
                    f"{row.get('REFERENCED_COLUMN_NAME')}"
                    if ref_table
                    else None
                ),
            )
        )
    return {
        key: TableInfo(schema=schema, name=name, columns=tuple(columns))
        for key, (schema, name, columns) in grouped.items()
    }


def build_procedures(rows: list[dict[str, Any]]) -> dict[str, StoredProcedureInfo]:
    grouped: dict[str, dict[str, Any]] = {}
    for row in rows:
        schema, name = row["SCHEMA_NAME"], row["PROCEDURE_NAME"]
        entry = grouped.setdefault(
            f"{schema}.{name}",
            {
                "schema": schema,
                "name": name,
                "description": row.get("DESCRIPTION") or None,
                "parameters": [],
            },
        )
        if row.get("PARAMETER_NAME"):
            entry["parameters"].append(
                ParameterInfo(
                    name=row["PARAMETER_NAME"],
                    data_type=row.get("DATA_TYPE") or "",
                    max_length=_optional_int(row.get("MAX_LENGTH")),
                    is_output=_is_true(row.get("IS_OUTPUT")),
                )
            )
    return {
        key: StoredProcedureInfo(
            schema=entry["schema"],
            name=entry["name"],
            parameters=tuple(entry["parameters"]),
            description=entry["description"],
        )
        for key, entry in grouped.items()
    }


def build_views(rows: list[dict[str, Any]]) -> dict[str, ViewInfo]:
    grouped: dict[str, tuple[str, str, list[ColumnInfo]]] = {}
    for row in rows:
        schema, name = row["TABLE_SCHEMA"], row["TABLE_NAME"]
        entry = grouped.setdefault(f"{schema}.{name}", (schema, name, []))
        entry[2].append(
            ColumnInfo(
                name=row["COLUMN_NAME"],
                data_type=row["DATA_TYPE"],
                is_nullable=_is_true(row.get("IS_NULLABLE")),
                max_length=_optional_int(row.get("CHARACTER_MAXIMUM_LENGTH")),
            )
        )
    return {
        key: ViewInfo(schema=schema, name=name, columns=tuple(columns))
        for key, (schema, name, columns) in grouped.items()
    }


def _format_length(max_length: int | None) -> str:
    if max_length == -1:
        return "(MAX)"
    return f"({max_length})" if max_length else ""


def render_table(table: TableInfo) -> list[str]:
    lines = [f"{table.full_name}:"]
    for col in table.columns:
        nullable = " NULL" if col.is_nullable else " NOT NULL"
        pk = " [PK]" if col.is_primary_key else ""
        fk = f" [FK → {col.foreign_key_ref}]" if col.foreign_key_ref else ""
        lines.append(
            f"  - {col.name}: {col.data_type}{_format_length(col.max_length)}{nullable}{pk}{fk}"
        )
    return lines


def render_procedure(proc: StoredProcedureInfo) -> list[str]:
    params = ", ".join(
        f"{p.name} {p.data_type}{' OUTPUT' if p.is_output else ''}" for p in proc.parameters
    )
    lines = [f"{proc.full_name}({params})"]
    if proc.description:
        lines.append(f"  -- {proc.description}")
    return lines


def render_view(view: ViewInfo) -> list[str]:
    lines = [f"{view.full_name}:"]
    for col in view.columns:
        lines.append(f"  - {col.name}: {col.data_type}{_format_length(col.max_length)}")
    return lines


class SchemaCatalog:
    """Cache of tables, stored procedures and views keyed by ``schema.name``."""

    def __init__(self, source: MetadataSource, scan_workers: int = 3) -> None:
        self._source = source
        self._scan_workers = scan_workers
        self._snapshot: SchemaSnapshot | None = None
        self._refresh_lock = threading.Lock()
        self._log = logging.getLogger(__name__)

    @property
    def snapshot(self) -> SchemaSnapshot | None:
        return self._snapshot

    def checksum(self) -> str:
        with ThreadPoolExecutor(max_workers=self._scan_workers) as pool:
            columns = pool.submit(self._source.fetch, COLUMN_FINGERPRINT_SQL)
            procedures = pool.submit(self._source.fetch, PROCEDURE_FINGERPRINT_SQL)
            modified = pool.submit(self._source.fetch, LAST_MODIFIED_SQL)
            modified_rows = modified.result()
            return compute_checksum(
                columns.result(),
                procedures.result(),
                modified_rows[0].get("LAST_MODIFIED") if modified_rows else None,
            )

    def _current(self) -> SchemaSnapshot:
        """Current snapshot without a freshness check, loading it if absent."""
        snapshot = self._snapshot
        return snapshot if snapshot is not None else self.load()

    def has_changed(self) -> bool:
        snapshot = self._snapshot
        if snapshot is None:
            return True
        return self.checksum() != snapshot.checksum

    def load(self, force: bool = False) -> SchemaSnapshot:
        snapshot = self._snapshot
        if snapshot is not None and not force:
            if self.checksum() == snapshot.checksum:
                self._log.debug("Using cached schema (no changes detected)")
                return snapshot
            self._log.info("Schema changed, reloading")
        return self._refresh(observed=snapshot)

    def ensure_fresh(self) -> tuple[SchemaSnapshot, bool]:
        """Return a current snapshot and whether this call had to reload it."""
        snapshot = self._snapshot
        if snapshot is not None and self.checksum() == snapshot.checksum:
            return snapshot, False
        return self._refresh(observed=snapshot), True

    def clear(self) -> None:
        with self._refresh_lock:
            self._snapshot = None
        self._log.info("Schema cache cleared")

    def stats(self, snapshot: SchemaSnapshot | None = None) -> dict[str, int]:
        snapshot = snapshot or self._current()
        return {
            "tables": len(snapshot.tables),
            "stored_procedures": len(snapshot.procedures),
            "views": len(snapshot.views),
        }

    def _refresh(self, observed: SchemaSnapshot | None) -> SchemaSnapshot:
        with self._refresh_lock:
            current = self._snapshot
            if current is not None and current is not observed:
                # Another caller published while this one waited for the lock.
                return current

            started = time.perf_counter()
            # Fingerprint first: a change racing the scans shows up as a
            # mismatch on the next check instead of being masked.
            checksum = self.checksum()
            with ThreadPoolExecutor(max_workers=self._scan_workers) as pool:
                tables = pool.submit(self._source.fetch, TABLES_SQL)
                procedures = pool.submit(self._source.fetch, PROCEDURES_SQL)
                views = pool.submit(self._source.fetch, VIEWS_SQL)
                snapshot = SchemaSnapshot.build(
                    tables=build_tables(tables.result()),
                    procedures=build_procedures(procedures.result()),
                    views=build_views(views.result()),
                    checksum=checksum,
                    last_updated=datetime.now(timezone.utc),
                )
            self._snapshot = snapshot

        self._log.info(
            "Schema loaded",
            extra=log_extra(
                tables=len(snapshot.tables),
                stored_procedures=len(snapshot.procedures),
                views=len(snapshot.views),
                duration_ms=int((time.perf_counter() - started) * 1000),
            ),
        )
        return snapshot

    def render(
        self,
        include_tables: bool = True,
        include_procedures: bool = True,
        include_views: bool = True,
        table_filter: str | list[str] | None = None,
    ) -> str:
        """Render the catalog as text for prompts and tool output."""
        snapshot = self._current()
        if isinstance(table_filter, str):
            table_filter = [table_filter]
        sections: list[str] = []

        if include_tables:
            tables: Iterable[TableInfo] = snapshot.tables.values()
            if table_filter:
                needles = [f.lower() for f in table_filter]
                tables = [
                    t for t in tables if any(n in t.full_name.lower() for n in needles)
                ]
            sections.append("=== DATABASE TABLES ===\n")
            for table in tables:
                sections.append("\n".join(render_table(table)) + "\n")

        if include_procedures and snapshot.procedures:
            sections.append("=== STORED PROCEDURES ===\n")
            for proc in snapshot.procedures.values():
                sections.append("\n".join(render_procedure(proc)) + "\n")

        if include_views and snapshot.views:
            sections.append("=== VIEWS ===\n")
            for view in snapshot.views.values():
                sections.append("\n".join(render_view(view)) + "\n")

        return "\n".join(sections)

    def find_table(self, name: str) -> TableInfo | None:
        return _find(self._current().tables, name)

    def find_procedure(self, name: str) -> StoredProcedureInfo | None:
        return _find(self._current().procedures, name)

    def relationships(self) -> str:
        snapshot = self._current()
        lines = ["=== TABLE RELATIONSHIPS ===", ""]
        for table in snapshot.tables.values():
            fk_columns = [c for c in table.columns if c.is_foreign_key]
            if fk_columns:
                lines.append(f"{table.full_name}:")
                lines.extend(f"  {c.name} → {c.foreign_key_ref}" for c in fk_columns)
                lines.append("")
        return "\n".join(lines) + "\n"


def _find(entries: Any, name: str) -> Any:
    if name in entries:
        return entries[name]
    lowered = name.lower()
    for entry in entries.values():
        if entry.name.lower() == lowered:
            return entry
    return None
