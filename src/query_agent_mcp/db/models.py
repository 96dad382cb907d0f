"""Catalog and result models for the database layer.

Snapshots are immutable: every dataclass is frozen, sequences are tuples and
the snapshot mappings are read-only proxies, so a published snapshot can be
shared across threads without copying.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping


@dataclass(frozen=True)
class ColumnInfo:
    name: str
    data_type: str
    is_nullable: bool
    max_length: int | None = None
    is_primary_key: bool = False
    is_foreign_key: bool = False
    foreign_key_ref: str | None = None


@dataclass(frozen=True)
class TableInfo:
    schema: str
    name: str
    columns: tuple[ColumnInfo, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "name": self.name,
            "full_name": self.full_name,
            "columns": [asdict(col) for col in self.columns],
        }


@dataclass(frozen=True)
class ViewInfo(TableInfo):
    pass


@dataclass(frozen=True)
class ParameterInfo:
    name: str
    data_type: str
    max_length: int | None = None
    is_output: bool = False


@dataclass(frozen=True)
class StoredProcedureInfo:
    schema: str
    name: str
    parameters: tuple[ParameterInfo, ...] = ()
    description: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.schema}.{self.name}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema": self.schema,
            "name": self.name,
            "full_name": self.full_name,
            "parameters": [asdict(param) for param in self.parameters],
            "description": self.description,
        }


@dataclass(frozen=True)
class SchemaSnapshot:
    tables: Mapping[str, TableInfo]
    procedures: Mapping[str, StoredProcedureInfo]
    views: Mapping[str, ViewInfo]
    checksum: str
    last_updated: datetime

    @classmethod
    def build(
        cls,
        tables: dict[str, TableInfo],
        procedures: dict[str, StoredProcedureInfo],
        views: dict[str, ViewInfo],
        checksum: str,
        last_updated: datetime,
    ) -> "SchemaSnapshot":
        return cls(
            tables=MappingProxyType(dict(tables)),
            procedures=MappingProxyType(dict(procedures)),
            views=MappingProxyType(dict(views)),
            checksum=checksum,
            last_updated=last_updated,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tables": {key: table.to_dict() for key, table in self.tables.items()},
            "stored_procedures": {
                key: proc.to_dict() for key, proc in self.procedures.items()
            },
            "views": {key: view.to_dict() for key, view in self.views.items()},
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class QueryResult:
    rows: list[dict[str, Any]] = field(default_factory=list)
    rows_affected: list[int] = field(default_factory=list)
