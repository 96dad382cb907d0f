"""Pre-execution safety checks shared by the HTTP and MCP surfaces.

The gate is a denylist filter, not a SQL parser. Every entry surface calls
the functions in this module before a statement reaches the database, so the
pattern lists below are the single source of truth for what gets blocked.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from .config import LimitsConfig
from .errors import GuardrailError

# DELETE is only blocked when it is a bare delete-all (nothing after the
# table name); predicated deletes pass.
_DESTRUCTIVE_RE = re.compile(
    r"\b(?:DROP|TRUNCATE|ALTER|CREATE)\b"
    r"|\bDELETE\s+FROM\s+[\w.\[\]\"]+\s*;?\s*$",
    re.IGNORECASE,
)

# Captures the (possibly qualified, possibly bracketed) procedure name after
# EXEC, skipping an optional "@rc =" return-status assignment.
_EXEC_TARGET_RE = re.compile(
    r"\bEXEC(?:UTE)?\s+(?:@\w+\s*=\s*)?"
    r"((?:\[[^\]]*\]|[\w#$]+)(?:\s*\.\s*(?:\[[^\]]*\]|[\w#$]*))*)",
    re.IGNORECASE,
)

_SYSTEM_DATABASES = frozenset({"master"})
_SYSTEM_PROCEDURE_PREFIXES = ("xp_",)
_SYSTEM_PROCEDURE_NAMES = frozenset({"sp_addlogin", "sp_droplogin", "sp_password"})

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_@#][A-Za-z0-9_@#$]*$")
_BRACKETED_RE = re.compile(r"^\[[^\[\]]+\]$")
_PARAMETER_RE = re.compile(r"^@?[A-Za-z_][A-Za-z0-9_]*$")

DESTRUCTIVE_REASON = (
    "Potentially dangerous statement detected. DROP, TRUNCATE, ALTER, CREATE "
    "and unfiltered DELETE statements cannot be executed."
)
SYSTEM_PROCEDURE_REASON = "System stored procedure calls are not allowed."


@dataclass(frozen=True)
class Verdict:
    allowed: bool
    reason: str | None = None

    def raise_for_rejection(self) -> None:
        if not self.allowed:
            raise GuardrailError(self.reason or "Statement rejected")


ALLOW = Verdict(allowed=True)


def is_system_procedure(name: str) -> bool:
    """Tell whether a procedure name points at a blocked system procedure.

    Each dot-separated part is compared with its brackets removed, so
    ``[master].dbo.x``, ``sys.xp_cmdshell`` and ``master..xp_x`` all match.
    """
    parts = [part.strip().strip("[]").strip().lower() for part in name.split(".")]
    if any(part in _SYSTEM_DATABASES for part in parts):
        return True
    procedure = parts[-1]
    return (
        procedure.startswith(_SYSTEM_PROCEDURE_PREFIXES)
        or procedure in _SYSTEM_PROCEDURE_NAMES
    )


def evaluate_statement(sql: str) -> Verdict:
    """Decide whether free SQL text may be executed."""
    if not sql or not sql.strip():
        return Verdict(False, "SQL statement is empty")
    if _DESTRUCTIVE_RE.search(sql):
        return Verdict(False, DESTRUCTIVE_REASON)
    for match in _EXEC_TARGET_RE.finditer(sql):
        if is_system_procedure(match.group(1)):
            return Verdict(False, SYSTEM_PROCEDURE_REASON)
    return ALLOW


def evaluate_procedure(name: str) -> Verdict:
    """Decide whether a stored procedure may be invoked by name."""
    if not name or not name.strip():
        return Verdict(False, "Procedure name is empty")
    if is_system_procedure(name):
        return Verdict(False, SYSTEM_PROCEDURE_REASON)
    return ALLOW


def ensure_statement_allowed(sql: str) -> None:
    evaluate_statement(sql).raise_for_rejection()


def ensure_procedure_allowed(name: str) -> None:
    evaluate_procedure(name).raise_for_rejection()


def sanitize_object_name(name: str, field_name: str) -> str:
    """Validate a possibly schema-qualified object name before interpolation.

    Accepts up to three dot-separated parts, each either a plain identifier
    or a bracket-quoted one (``dbo.Users``, ``[sales].[Order Lines]``).
    """
    stripped = (name or "").strip()
    parts = re.findall(r"\[[^\[\]]*\]|[^.]+", stripped)
    if not parts or len(parts) > 3 or ".".join(parts) != stripped:
        raise GuardrailError(f"Invalid identifier for {field_name}")
    for part in parts:
        if not (_IDENTIFIER_RE.match(part) or _BRACKETED_RE.match(part)):
            raise GuardrailError(f"Invalid identifier for {field_name}")
    return stripped


def sanitize_parameter_name(name: str) -> str:
    if not _PARAMETER_RE.match(name or ""):
        raise GuardrailError(f"Invalid parameter name: {name!r}")
    return name.lstrip("@")


def quote_literal(value: Any) -> str:
    """Render a parameter value as a T-SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("'", "''")
    return f"N'{text}'"


def clamp_limit(requested: int | None, floor: int, cap: int, default: int) -> int:
    if requested is None:
        requested = default
    return min(max(floor, requested), cap)


def effective_timeout(requested: int | None, config: LimitsConfig) -> int | None:
    if requested is None:
        return (
            config.query_timeout_seconds if config.query_timeout_seconds != -1 else None
        )
    if config.query_timeout_seconds == -1:
        return requested
    return min(requested, config.query_timeout_seconds)
