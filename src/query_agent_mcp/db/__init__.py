"""Database access: connection pool, execution and schema catalog."""

from .catalog import SchemaCatalog
from .client import SQLServerClient, build_exec_statement
from .models import (
    ColumnInfo,
    ParameterInfo,
    QueryResult,
    SchemaSnapshot,
    StoredProcedureInfo,
    TableInfo,
    ViewInfo,
)

__all__ = [
    "ColumnInfo",
    "ParameterInfo",
    "QueryResult",
    "SQLServerClient",
    "SchemaCatalog",
    "SchemaSnapshot",
    "StoredProcedureInfo",
    "TableInfo",
    "ViewInfo",
    "build_exec_statement",
]
