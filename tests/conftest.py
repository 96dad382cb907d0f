import threading
from collections import Counter
from datetime import datetime
from typing import Any

import pytest

from query_agent_mcp.config import (
    AppConfig,
    DatabaseConfig,
    LimitsConfig,
    ObservabilityConfig,
    PoolConfig,
    ProvidersConfig,
)
from query_agent_mcp.db.catalog import (
    COLUMN_FINGERPRINT_SQL,
    LAST_MODIFIED_SQL,
    PROCEDURE_FINGERPRINT_SQL,
    PROCEDURES_SQL,
    TABLES_SQL,
    VIEWS_SQL,
)


def table_rows() -> list[dict[str, Any]]:
    return [
        {
            "TABLE_SCHEMA": "dbo",
            "TABLE_NAME": "Users",
            "COLUMN_NAME": "id",
            "DATA_TYPE": "int",
            "IS_NULLABLE": "NO",
            "CHARACTER_MAXIMUM_LENGTH": None,
            "IS_PRIMARY": 1,
            "REFERENCED_TABLE_SCHEMA": None,
            "REFERENCED_TABLE_NAME": None,
            "REFERENCED_COLUMN_NAME": None,
        },
        {
            "TABLE_SCHEMA": "dbo",
            "TABLE_NAME": "Users",
            "COLUMN_NAME": "email",
            "DATA_TYPE": "nvarchar",
            "IS_NULLABLE": "YES",
            "CHARACTER_MAXIMUM_LENGTH": 255,
            "IS_PRIMARY": 0,
            "REFERENCED_TABLE_SCHEMA": None,
            "REFERENCED_TABLE_NAME": None,
            "REFERENCED_COLUMN_NAME": None,
        },
        {
            "TABLE_SCHEMA": "dbo",
            "TABLE_NAME": "Orders",
            "COLUMN_NAME": "id",
            "DATA_TYPE": "int",
            "IS_NULLABLE": "NO",
            "CHARACTER_MAXIMUM_LENGTH": None,
            "IS_PRIMARY": 1,
            "REFERENCED_TABLE_SCHEMA": None,
            "REFERENCED_TABLE_NAME": None,
            "REFERENCED_COLUMN_NAME": None,
        },
        {
            "TABLE_SCHEMA": "dbo",
            "TABLE_NAME": "Orders",
            "COLUMN_NAME": "user_id",
            "DATA_TYPE": "int",
            "IS_NULLABLE": "NO",
            "CHARACTER_MAXIMUM_LENGTH": None,
            "IS_PRIMARY": 0,
            "REFERENCED_TABLE_SCHEMA": "dbo",
            "REFERENCED_TABLE_NAME": "Users",
            "REFERENCED_COLUMN_NAME": "id",
        },
    ]


def procedure_rows() -> list[dict[str, Any]]:
    return [
        {
            "SCHEMA_NAME": "dbo",
            "PROCEDURE_NAME": "GetUserOrders",
            "PARAMETER_NAME": "@userId",
            "DATA_TYPE": "int",
            "MAX_LENGTH": 4,
            "IS_OUTPUT": False,
            "DESCRIPTION": "Orders for one user",
        },
        {
            "SCHEMA_NAME": "dbo",
            "PROCEDURE_NAME": "GetUserOrders",
            "PARAMETER_NAME": "@total",
            "DATA_TYPE": "int",
            "MAX_LENGTH": 4,
            "IS_OUTPUT": True,
            "DESCRIPTION": "Orders for one user",
        },
        {
            "SCHEMA_NAME": "sales",
            "PROCEDURE_NAME": "RebuildStats",
            "PARAMETER_NAME": None,
            "DATA_TYPE": None,
            "MAX_LENGTH": None,
            "IS_OUTPUT": None,
            "DESCRIPTION": None,
        },
    ]


def view_rows() -> list[dict[str, Any]]:
    return [
        {
            "TABLE_SCHEMA": "dbo",
            "TABLE_NAME": "ActiveUsers",
            "COLUMN_NAME": "email",
            "DATA_TYPE": "nvarchar",
            "IS_NULLABLE": "YES",
            "CHARACTER_MAXIMUM_LENGTH": 255,
        }
    ]


class FakeMetadataSource:
    """In-memory stand-in for the gateway, answering the catalog's queries."""

    def __init__(self) -> None:
        self.tables = table_rows()
        self.procedures = procedure_rows()
        self.views = view_rows()
        self.last_modified = datetime(2024, 1, 1, 12, 0, 0)
        self.calls: Counter = Counter()
        self._lock = threading.Lock()

    def fetch(self, sql: str, request_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            self.calls[sql] += 1
        if sql == TABLES_SQL:
            return list(self.tables)
        if sql == PROCEDURES_SQL:
            return list(self.procedures)
        if sql == VIEWS_SQL:
            return list(self.views)
        if sql == COLUMN_FINGERPRINT_SQL:
            return [
                {
                    "TABLE_SCHEMA": row["TABLE_SCHEMA"],
                    "TABLE_NAME": row["TABLE_NAME"],
                    "COLUMN_NAME": row["COLUMN_NAME"],
                    "DATA_TYPE": row["DATA_TYPE"],
                    "MAX_LENGTH": row["CHARACTER_MAXIMUM_LENGTH"] or 0,
                }
                for row in self.tables
            ]
        if sql == PROCEDURE_FINGERPRINT_SQL:
            names = sorted({(r["SCHEMA_NAME"], r["PROCEDURE_NAME"]) for r in self.procedures})
            return [
                {"SCHEMA_NAME": s, "PROCEDURE_NAME": n, "MODIFY_DATE": self.last_modified}
                for s, n in names
            ]
        if sql == LAST_MODIFIED_SQL:
            return [{"LAST_MODIFIED": self.last_modified}]
        raise AssertionError(f"Unexpected query: {sql}")

    def add_column(self, table: str, column: str) -> None:
        self.tables.append(
            {
                "TABLE_SCHEMA": "dbo",
                "TABLE_NAME": table,
                "COLUMN_NAME": column,
                "DATA_TYPE": "datetime2",
                "IS_NULLABLE": "YES",
                "CHARACTER_MAXIMUM_LENGTH": None,
                "IS_PRIMARY": 0,
                "REFERENCED_TABLE_SCHEMA": None,
                "REFERENCED_TABLE_NAME": None,
                "REFERENCED_COLUMN_NAME": None,
            }
        )


@pytest.fixture
def metadata_source() -> FakeMetadataSource:
    return FakeMetadataSource()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        database=DatabaseConfig(host="localhost", database="Sales", user="sa", password="pw"),
        pool=PoolConfig(),
        limits=LimitsConfig(),
        providers=ProvidersConfig(anthropic_api_key="sk-ant-test"),
        observability=ObservabilityConfig(),
    )
