from pathlib import Path

import pytest

from query_agent_mcp.config import load_config
from query_agent_mcp.errors import ConfigError


def write_config(tmp_path: Path, content: str) -> Path:
    path = tmp_path / "config.yml"
    path.write_text(content)
    return path


def test_env_substitution(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: ${QA_TEST_HOST}
  database: Sales
  password: ${QA_TEST_PASSWORD:-fallback}
providers:
  anthropic_api_key: ${QA_TEST_ANTHROPIC}
""",
    )

    config = load_config(
        cfg_path, env={"QA_TEST_HOST": "db.internal", "QA_TEST_ANTHROPIC": "sk-test"}
    )
    assert config.database.host == "db.internal"
    assert config.database.password == "fallback"
    assert config.providers.anthropic_api_key == "sk-test"


def test_defaults(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: localhost
  database: master
""",
    )

    config = load_config(cfg_path, env={})
    assert config.database.port == 1433
    assert config.database.driver == "ODBC Driver 18 for SQL Server"
    assert config.database.encrypt is False
    assert config.database.trust_server_certificate is True
    assert config.pool.max_size == 10
    assert config.pool.idle_timeout_seconds == 30
    assert config.limits.query_timeout_seconds == 30
    assert config.limits.preview_max_rows == 100
    assert config.limits.session_max_messages == 20
    assert config.providers.groq_api_key is None
    assert config.observability.log_level == "info"


def test_api_keys_fall_back_to_environment(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: localhost
  database: master
providers:
  groq_api_key: ""
""",
    )

    config = load_config(cfg_path, env={"GROQ_API_KEY": "gsk-env"})
    assert config.providers.groq_api_key == "gsk-env"
    assert config.providers.google_api_key is None


def test_missing_environment_variable(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: ${QA_TEST_UNSET_HOST}
  database: master
""",
    )
    with pytest.raises(ConfigError, match="QA_TEST_UNSET_HOST"):
        load_config(cfg_path, env={})


def test_missing_required_section(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
pool:
  max_size: 5
""",
    )
    with pytest.raises(ConfigError, match="database"):
        load_config(cfg_path, env={})


def test_missing_host(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  database: master
""",
    )
    with pytest.raises(ConfigError):
        load_config(cfg_path, env={})


def test_invalid_limits(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: localhost
  database: master
limits:
  preview_max_rows: 0
""",
    )
    with pytest.raises(ConfigError):
        load_config(cfg_path, env={})


def test_unlimited_timeouts(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: localhost
  database: master
limits:
  query_timeout_seconds: -1
  session_ttl_seconds: -1
""",
    )

    config = load_config(cfg_path, env={})
    assert config.limits.query_timeout_seconds == -1
    assert config.limits.session_ttl_seconds == -1


def test_unknown_model_override(tmp_path: Path) -> None:
    cfg_path = write_config(
        tmp_path,
        """
database:
  host: localhost
  database: master
providers:
  models:
    gpt: gpt-4o
""",
    )
    with pytest.raises(ConfigError, match="gpt"):
        load_config(cfg_path, env={})
