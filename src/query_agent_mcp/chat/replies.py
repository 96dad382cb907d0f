"""Best-effort decoding of model replies into the structured reply shape."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterator, Union

ACTIONS = ("query", "execute", "explain", "none")
EXECUTING_ACTIONS = ("query", "execute")


@dataclass(frozen=True)
class StructuredReply:
    message: str
    sql: str | None = None
    action: str = "none"
    tables_used: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class FreeformReply:
    message: str
    sql: None = None
    action: str = "none"
    tables_used: list[str] = field(default_factory=list)


Reply = Union[StructuredReply, FreeformReply]


def _balanced_objects(text: str) -> Iterator[str]:
    """Yield each balanced ``{...}`` span, outermost first, left to right."""
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        end = -1
        for index in range(start, len(text)):
            char = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif char == "\\":
                    escaped = True
                elif char == '"':
                    in_string = False
            elif char == '"':
                in_string = True
            elif char == "{":
                depth += 1
            elif char == "}":
                depth -= 1
                if depth == 0:
                    end = index
                    break
        if end == -1:
            start = text.find("{", start + 1)
            continue
        yield text[start : end + 1]
        start = text.find("{", end + 1)


def _decode(text: str) -> dict[str, Any] | None:
    for candidate in _balanced_objects(text):
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if isinstance(data, dict):
            return data
    return None


def parse_reply(text: str) -> Reply:
    """Decode a model reply; anything unparseable becomes a freeform reply."""
    data = _decode(text)
    if data is None or not isinstance(data.get("message"), str):
        return FreeformReply(message=text)

    sql = data.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        sql = None
    action = data.get("action")
    if action not in ACTIONS:
        action = "none"
    tables = data.get("tablesUsed") or []
    if not isinstance(tables, list):
        tables = []
    return StructuredReply(
        message=data["message"],
        sql=sql,
        action=action,
        tables_used=[str(t) for t in tables],
    )
