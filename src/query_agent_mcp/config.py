from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigError


@dataclass
class DatabaseConfig:
    host: str
    database: str
    user: str | None = None
    password: str | None = None
    port: int = 1433
    driver: str = "ODBC Driver 18 for SQL Server"
    encrypt: bool = False
    trust_server_certificate: bool = True


@dataclass
class PoolConfig:
    max_size: int = 10
    idle_timeout_seconds: int = 30
    acquire_timeout_seconds: int = 15


@dataclass
class LimitsConfig:
    query_timeout_seconds: int = 30
    preview_max_rows: int = 100
    result_max_rows: int = 100
    session_max_messages: int = 20
    session_ttl_seconds: int = 3600
    request_timeout_seconds: int = 120


@dataclass
class ProvidersConfig:
    anthropic_api_key: str | None = None
    groq_api_key: str | None = None
    google_api_key: str | None = None
    models: dict[str, str] = field(default_factory=dict)


@dataclass
class ObservabilityConfig:
    log_level: str = "info"


@dataclass
class AppConfig:
    database: DatabaseConfig
    pool: PoolConfig
    limits: LimitsConfig
    providers: ProvidersConfig
    observability: ObservabilityConfig


_PROVIDER_KEYS = {"claude-opus", "claude-sonnet", "groq", "gemini"}


def _resolve_env(value: Any, env: Mapping[str, str]) -> Any:
    if isinstance(value, str):
        expanded = os.path.expandvars(value)
        if expanded.startswith("${") and expanded.endswith("}"):
            key = expanded[2:-1]
            if ":-" in key:
                key, default = key.split(":-", 1)
                return env.get(key) or default
            if key not in env:
                raise ConfigError(f"Environment variable {key} is required but not set")
            return env[key]
        return expanded
    if isinstance(value, list):
        return [_resolve_env(v, env) for v in value]
    if isinstance(value, dict):
        return {k: _resolve_env(v, env) for k, v in value.items()}
    return value


def _validate_positive(value: Any, field_name: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be an integer") from exc
    if number <= 0:
        raise ConfigError(f"{field_name} must be greater than 0")
    return number


def _validate_positive_or_unlimited(value: Any, field_name: str) -> int:
    if str(value).strip() == "-1":
        return -1
    return _validate_positive(value, field_name)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def load_config(path: str | Path, env: Mapping[str, str] | None = None) -> AppConfig:
    env = os.environ if env is None else env
    raw = yaml.safe_load(Path(path).read_text()) or {}
    resolved = _resolve_env(raw, env)

    try:
        database_raw = resolved["database"]
    except KeyError as exc:
        raise ConfigError(f"Missing config section: {exc.args[0]}") from exc
    pool_raw = resolved.get("pool") or {}
    limits_raw = resolved.get("limits") or {}
    providers_raw = resolved.get("providers") or {}
    observability_raw = resolved.get("observability") or {}

    database = DatabaseConfig(
        host=str(database_raw.get("host") or ""),
        database=str(database_raw.get("database") or ""),
        user=_optional_str(database_raw.get("user")),
        password=_optional_str(database_raw.get("password")),
        port=_validate_positive(database_raw.get("port", 1433), "port"),
        driver=str(database_raw.get("driver", "ODBC Driver 18 for SQL Server")),
        encrypt=_as_bool(database_raw.get("encrypt", False)),
        trust_server_certificate=_as_bool(
            database_raw.get("trust_server_certificate", True)
        ),
    )
    if not database.host or not database.database:
        raise ConfigError("Database host and database are required")

    pool = PoolConfig(
        max_size=_validate_positive(pool_raw.get("max_size", 10), "max_size"),
        idle_timeout_seconds=_validate_positive(
            pool_raw.get("idle_timeout_seconds", 30), "idle_timeout_seconds"
        ),
        acquire_timeout_seconds=_validate_positive(
            pool_raw.get("acquire_timeout_seconds", 15), "acquire_timeout_seconds"
        ),
    )

    limits = LimitsConfig(
        query_timeout_seconds=_validate_positive_or_unlimited(
            limits_raw.get("query_timeout_seconds", 30), "query_timeout_seconds"
        ),
        preview_max_rows=_validate_positive(
            limits_raw.get("preview_max_rows", 100), "preview_max_rows"
        ),
        result_max_rows=_validate_positive(
            limits_raw.get("result_max_rows", 100), "result_max_rows"
        ),
        session_max_messages=_validate_positive(
            limits_raw.get("session_max_messages", 20), "session_max_messages"
        ),
        session_ttl_seconds=_validate_positive_or_unlimited(
            limits_raw.get("session_ttl_seconds", 3600), "session_ttl_seconds"
        ),
        request_timeout_seconds=_validate_positive(
            limits_raw.get("request_timeout_seconds", 120), "request_timeout_seconds"
        ),
    )
    if limits.session_max_messages < 2:
        raise ConfigError("session_max_messages must keep at least two messages")

    models = dict(providers_raw.get("models") or {})
    for key in models:
        if key not in _PROVIDER_KEYS:
            raise ConfigError(f"Unknown provider in models: {key}")
    providers = ProvidersConfig(
        anthropic_api_key=_optional_str(
            providers_raw.get("anthropic_api_key") or env.get("ANTHROPIC_API_KEY")
        ),
        groq_api_key=_optional_str(
            providers_raw.get("groq_api_key") or env.get("GROQ_API_KEY")
        ),
        google_api_key=_optional_str(
            providers_raw.get("google_api_key") or env.get("GOOGLE_API_KEY")
        ),
        models=models,
    )

    observability = ObservabilityConfig(
        log_level=str(observability_raw.get("log_level", "info")),
    )

    return AppConfig(
        database=database,
        pool=pool,
        limits=limits,
        providers=providers,
        observability=observability,
    )
