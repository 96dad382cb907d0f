from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from query_agent_mcp.db.client import SQLServerClient, build_engine_url, build_exec_statement
from query_agent_mcp.errors import GuardrailError, QueryError


class FakeDriverError(Exception):
    pass


def make_engine(cursor: MagicMock) -> MagicMock:
    engine = MagicMock()
    engine.dialect.loaded_dbapi = SimpleNamespace(Error=FakeDriverError)
    connection = MagicMock()
    connection.cursor.return_value = cursor
    engine.raw_connection.return_value = connection
    return engine


def make_cursor(columns=None, rows=None, rowcount=-1) -> MagicMock:
    cursor = MagicMock()
    cursor.description = [(name,) for name in columns] if columns else None
    cursor.fetchall.return_value = rows or []
    cursor.rowcount = rowcount
    cursor.nextset.return_value = False
    return cursor


def test_run_collects_rows(app_config) -> None:
    cursor = make_cursor(columns=["id", "name"], rows=[(1, "a"), (2, "b")])
    engine = make_engine(cursor)
    client = SQLServerClient(app_config, engine=engine)

    result = client.run("SELECT id, name FROM Users")

    assert result.rows == [{"id": 1, "name": "a"}, {"id": 2, "name": "b"}]
    cursor.execute.assert_called_once_with("SELECT id, name FROM Users")
    connection = engine.raw_connection.return_value
    connection.commit.assert_called_once()
    connection.close.assert_called_once()
    assert connection.driver_connection.timeout == 30


def test_run_collects_rows_affected(app_config) -> None:
    cursor = make_cursor(rowcount=3)
    client = SQLServerClient(app_config, engine=make_engine(cursor))

    result = client.run("UPDATE Users SET active = 1 WHERE id < 4")

    assert result.rows == []
    assert result.rows_affected == [3]


def make_multi_set_cursor(result_sets) -> MagicMock:
    """Cursor that walks through (columns, rows, rowcount) tuples on nextset()."""
    cursor = MagicMock()
    remaining = list(result_sets)

    def load_next() -> bool:
        if not remaining:
            return False
        columns, rows, rowcount = remaining.pop(0)
        cursor.description = [(name,) for name in columns] if columns else None
        cursor.fetchall.return_value = rows
        cursor.rowcount = rowcount
        return True

    load_next()
    cursor.nextset.side_effect = load_next
    return cursor


def test_run_keeps_only_first_result_set(app_config) -> None:
    cursor = make_multi_set_cursor(
        [
            (["id"], [(1,)], -1),
            (["name"], [("alice",)], -1),
        ]
    )
    client = SQLServerClient(app_config, engine=make_engine(cursor))

    result = client.run("SELECT id FROM a; SELECT name FROM b")

    assert result.rows == [{"id": 1}]
    assert cursor.fetchall.call_count == 1


def test_run_collects_counts_around_result_set(app_config) -> None:
    cursor = make_multi_set_cursor(
        [
            (None, [], 2),
            (["id"], [(7,)], -1),
            (None, [], 5),
        ]
    )
    client = SQLServerClient(app_config, engine=make_engine(cursor))

    result = client.run("UPDATE a SET x = 1; SELECT id FROM a; UPDATE b SET z = 0")

    assert result.rows == [{"id": 7}]
    assert result.rows_affected == [2, 5]


def test_timeout_argument_is_capped(app_config) -> None:
    cursor = make_cursor(columns=["x"], rows=[(1,)])
    engine = make_engine(cursor)
    client = SQLServerClient(app_config, engine=engine)

    client.run("SELECT 1 AS x", timeout_seconds=300)

    assert engine.raw_connection.return_value.driver_connection.timeout == 30


def test_driver_error_becomes_query_error(app_config) -> None:
    cursor = make_cursor()
    cursor.execute.side_effect = FakeDriverError("42S02", "Invalid object name 'Nope'")
    engine = make_engine(cursor)
    client = SQLServerClient(app_config, engine=engine)

    with pytest.raises(QueryError, match="Invalid object name") as excinfo:
        client.run("SELECT * FROM Nope")

    assert not excinfo.value.retryable
    connection = engine.raw_connection.return_value
    connection.rollback.assert_called_once()
    connection.close.assert_called_once()


def test_query_timeout_is_retryable(app_config) -> None:
    cursor = make_cursor()
    cursor.execute.side_effect = FakeDriverError("HYT00", "Query timeout expired")
    client = SQLServerClient(app_config, engine=make_engine(cursor))

    with pytest.raises(QueryError) as excinfo:
        client.run("SELECT * FROM Big")

    assert excinfo.value.retryable


def test_pool_exhaustion_is_retryable(app_config) -> None:
    engine = make_engine(make_cursor())
    engine.raw_connection.side_effect = PoolTimeoutError("QueuePool limit reached")
    client = SQLServerClient(app_config, engine=engine)

    with pytest.raises(QueryError, match="busy") as excinfo:
        client.run("SELECT 1")

    assert excinfo.value.retryable


def test_preview_clamps_limit(app_config) -> None:
    cursor = make_cursor(columns=["id"], rows=[(1,)])
    client = SQLServerClient(app_config, engine=make_engine(cursor))

    client.preview("dbo.Users", 500)
    cursor.execute.assert_called_with("SELECT TOP 100 * FROM dbo.Users")

    client.preview("dbo.Users", 0)
    cursor.execute.assert_called_with("SELECT TOP 1 * FROM dbo.Users")

    client.preview("dbo.Users")
    cursor.execute.assert_called_with("SELECT TOP 10 * FROM dbo.Users")


def test_preview_rejects_invalid_table(app_config) -> None:
    engine = make_engine(make_cursor())
    client = SQLServerClient(app_config, engine=engine)

    with pytest.raises(GuardrailError):
        client.preview("Users; DROP TABLE Users")
    engine.raw_connection.assert_not_called()


def test_test_connection(app_config) -> None:
    cursor = make_cursor(columns=["test"], rows=[(1,)])
    assert SQLServerClient(app_config, engine=make_engine(cursor)).test_connection()

    failing = make_cursor()
    failing.execute.side_effect = FakeDriverError("08001", "Login failed")
    assert not SQLServerClient(app_config, engine=make_engine(failing)).test_connection()


def test_build_exec_statement() -> None:
    assert build_exec_statement("dbo.RebuildStats") == "EXEC dbo.RebuildStats"
    assert (
        build_exec_statement("dbo.GetUser", {"userId": 1, "@name": "O'Brien", "note": None})
        == "EXEC dbo.GetUser @userId = 1, @name = N'O''Brien', @note = NULL"
    )
    with pytest.raises(GuardrailError):
        build_exec_statement("dbo.GetUser", {"id; DROP": 1})


def test_build_engine_url(app_config) -> None:
    url = build_engine_url(app_config)

    assert url.drivername == "mssql+pyodbc"
    assert url.host == "localhost"
    assert url.port == 1433
    assert url.database == "Sales"
    assert url.query["driver"] == "ODBC Driver 18 for SQL Server"
    assert url.query["TrustServerCertificate"] == "yes"


def test_close_disposes_engine(app_config) -> None:
    engine = make_engine(make_cursor())
    client = SQLServerClient(app_config, engine=engine)

    client.close()
    client.close()

    engine.dispose.assert_called_once()
