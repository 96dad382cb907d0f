"""Rendering of raw result rows for JSON payloads and tool text output."""

from __future__ import annotations

import base64
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from .db.models import QueryResult

MAX_TEXT_ROWS = 100
PREVIEW_CELL_WIDTH = 50
PREVIEW_CELL_KEEP = 47


def normalize_value(value: Any) -> Any:
    """Convert a driver value into something JSON can carry."""
    if value is None:
        return None
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return base64.b64encode(bytes(value)).decode("ascii")
    return value


def normalize_rows(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return [{key: normalize_value(val) for key, val in row.items()} for row in rows]


def result_payload(result: QueryResult) -> dict[str, Any]:
    return {
        "rows": normalize_rows(result.rows),
        "rows_affected": list(result.rows_affected),
    }


def format_cell(value: Any, truncate: bool = False) -> str:
    if value is None:
        return "NULL"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    text = str(value)
    if truncate and len(text) > PREVIEW_CELL_WIDTH:
        return text[:PREVIEW_CELL_KEEP] + "..."
    return text


def format_table(
    rows: list[dict[str, Any]],
    max_rows: int = MAX_TEXT_ROWS,
    truncate: bool = False,
) -> str:
    """Render rows as a pipe-separated text table.

    The header comes from the first row's keys, followed by a ``---`` separator
    row and at most ``max_rows`` data rows. Rows beyond the cap are summarized
    in a trailing line.
    """
    if not rows:
        return ""
    columns = list(rows[0].keys())
    lines = [" | ".join(columns), " | ".join("---" for _ in columns)]
    for row in rows[:max_rows]:
        lines.append(" | ".join(format_cell(row.get(col), truncate) for col in columns))
    text = "\n".join(lines) + "\n"
    if len(rows) > max_rows:
        text += f"\n... {len(rows) - max_rows} more rows omitted"
    return text
