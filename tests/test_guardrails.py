import pytest

from query_agent_mcp.config import LimitsConfig
from query_agent_mcp.errors import GuardrailError
from query_agent_mcp.guardrails import (
    DESTRUCTIVE_REASON,
    SYSTEM_PROCEDURE_REASON,
    clamp_limit,
    effective_timeout,
    ensure_procedure_allowed,
    ensure_statement_allowed,
    evaluate_procedure,
    evaluate_statement,
    quote_literal,
    sanitize_object_name,
    sanitize_parameter_name,
)


@pytest.mark.parametrize(
    "sql",
    [
        "DROP TABLE Users",
        "drop table dbo.Users",
        "TRUNCATE TABLE Orders",
        "ALTER TABLE Users ADD age INT",
        "CREATE TABLE t (id INT)",
        "DELETE FROM Users",
        "DELETE FROM dbo.Users;",
        "delete from [dbo].[Users]  ",
    ],
)
def test_destructive_statements_rejected(sql: str) -> None:
    verdict = evaluate_statement(sql)
    assert not verdict.allowed
    assert verdict.reason == DESTRUCTIVE_REASON


@pytest.mark.parametrize(
    "sql",
    [
        "SELECT TOP 10 * FROM Users",
        "DELETE FROM Users WHERE id = 1",
        "UPDATE Users SET name = 'x' WHERE id = 2",
        "SELECT created_at FROM Orders",
        "EXEC dbo.GetUsers @status = 'active'",
        "EXEC [sales].[RebuildStats]",
        "EXEC @rc = dbo.GetUserOrders @userId = 1",
    ],
)
def test_ordinary_statements_allowed(sql: str) -> None:
    verdict = evaluate_statement(sql)
    assert verdict.allowed
    assert verdict.reason is None


@pytest.mark.parametrize(
    "sql",
    [
        "EXEC xp_cmdshell 'dir'",
        "exec master.dbo.sp_who",
        "EXECUTE sp_addlogin 'eve', 'pw'",
        "EXEC sys.xp_cmdshell 'dir'",
        "EXEC [master].dbo.xp_cmdshell 'dir'",
        "exec [xp_cmdshell] 'dir'",
        "EXEC dbo.sp_password 'a', 'b'",
        "EXEC master..xp_regread",
        "EXEC @rc = sys . xp_cmdshell 'dir'",
        "SELECT 1; EXEC [sys].[xp_cmdshell] 'whoami'",
    ],
)
def test_system_procedure_calls_rejected(sql: str) -> None:
    verdict = evaluate_statement(sql)
    assert not verdict.allowed
    assert verdict.reason == SYSTEM_PROCEDURE_REASON


def test_empty_statement_rejected() -> None:
    assert not evaluate_statement("   ").allowed
    with pytest.raises(GuardrailError, match="empty"):
        ensure_statement_allowed("")


def test_ensure_statement_allowed_raises_with_reason() -> None:
    with pytest.raises(GuardrailError, match="dangerous"):
        ensure_statement_allowed("DROP TABLE Users")
    ensure_statement_allowed("SELECT 1")


def test_evaluate_procedure() -> None:
    assert evaluate_procedure("dbo.GetUsers").allowed
    assert evaluate_procedure("[sales].[RebuildStats]").allowed
    assert not evaluate_procedure("xp_cmdshell").allowed
    assert not evaluate_procedure("master.dbo.sp_configure").allowed
    with pytest.raises(GuardrailError):
        ensure_procedure_allowed("sp_password")


@pytest.mark.parametrize(
    "name",
    [
        "sys.xp_cmdshell",
        "[master].dbo.xp_cmdshell",
        "dbo.sp_password",
        "[dbo].[XP_CMDSHELL]",
        "master..sp_who",
    ],
)
def test_qualified_system_procedures_rejected(name: str) -> None:
    verdict = evaluate_procedure(name)
    assert not verdict.allowed
    assert verdict.reason == SYSTEM_PROCEDURE_REASON


def test_sanitize_object_name() -> None:
    assert sanitize_object_name("Users", "table") == "Users"
    assert sanitize_object_name("dbo.Users", "table") == "dbo.Users"
    assert sanitize_object_name("[sales].[Order Lines]", "table") == "[sales].[Order Lines]"
    with pytest.raises(GuardrailError, match="table"):
        sanitize_object_name("Users; DROP TABLE x", "table")
    with pytest.raises(GuardrailError):
        sanitize_object_name("a.b.c.d", "table")
    with pytest.raises(GuardrailError):
        sanitize_object_name("", "table")


def test_sanitize_parameter_name() -> None:
    assert sanitize_parameter_name("@userId") == "userId"
    assert sanitize_parameter_name("status") == "status"
    with pytest.raises(GuardrailError):
        sanitize_parameter_name("x = 1; --")


def test_quote_literal() -> None:
    assert quote_literal(None) == "NULL"
    assert quote_literal(True) == "1"
    assert quote_literal(42) == "42"
    assert quote_literal(1.5) == "1.5"
    assert quote_literal("O'Brien") == "N'O''Brien'"


def test_clamp_limit() -> None:
    assert clamp_limit(500, floor=1, cap=100, default=10) == 100
    assert clamp_limit(0, floor=1, cap=100, default=10) == 1
    assert clamp_limit(None, floor=1, cap=100, default=10) == 10
    assert clamp_limit(25, floor=1, cap=100, default=10) == 25


def test_effective_timeout() -> None:
    limits = LimitsConfig(query_timeout_seconds=30)
    assert effective_timeout(None, limits) == 30
    assert effective_timeout(5, limits) == 5
    assert effective_timeout(60, limits) == 30

    unlimited = LimitsConfig(query_timeout_seconds=-1)
    assert effective_timeout(None, unlimited) is None
    assert effective_timeout(60, unlimited) == 60
