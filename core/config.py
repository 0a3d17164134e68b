from __future__ import annotations

import os
from urllib.parse import quote

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("debug", "info", "warning", "error")


def _resolve_env_file() -> str | None:
    # Allow explicit path override
    env_file = os.getenv("MEMORY_ENV_FILE", ".env")
    env_file = (env_file or "").strip()
    if not env_file:
        return None
    return env_file if os.path.exists(env_file) else None


class Settings(BaseSettings):
    # Read .env automatically if present, otherwise rely on environment variables.
    model_config = SettingsConfigDict(
        env_prefix="MEMORY_",
        extra="ignore",
        env_file=_resolve_env_file(),
        env_file_encoding="utf-8",
    )

    # PostgreSQL
    # A full DSN wins over the discrete fields below.
    database_url: str = ""
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "memory"
    postgres_user: str = "postgres"
    postgres_password: str = ""
    pool_min_size: int = 1
    pool_max_size: int = 10

    # HTTP
    host: str = "0.0.0.0"
    port: int = 8080
    # Empty disables authentication.
    api_key: str = ""
    # CORS origin echoed on every response.
    allow_origin: str = "*"
    max_body_bytes: int = 1_048_576

    # Rate limiting (per client address, sliding window)
    rate_limit_max: int = 120
    rate_limit_window_s: float = 60.0
    # Upper bound on tracked client keys; oldest are evicted first.
    rate_limit_max_keys: int = 10_000
    redis_enabled: bool = False
    redis_url: str = "redis://localhost:6379/0"

    # Entry size ceilings (characters)
    max_content_chars: int = 4_000
    max_title_chars: int = 200
    max_raw_chars: int = 20_000
    # Store raw_text as plaintext instead of gzip.
    store_raw_plaintext: bool = False

    # Vector search also requires the pgvector extension and the
    # entries.embedding column; both are detected at startup.
    enable_pgvector: bool = False

    # TTL sweep interval (seconds). 0 disables the sweep.
    cleanup_interval_s: float = 300.0

    # Logging
    log_level: str = "info"
    log_json: bool = True

    @field_validator(
        "pool_min_size",
        "pool_max_size",
        "port",
        "max_body_bytes",
        "rate_limit_max",
        "rate_limit_window_s",
        "rate_limit_max_keys",
        "max_content_chars",
        "max_title_chars",
        "max_raw_chars",
    )
    @classmethod
    def _positive(cls, value, info):
        if value <= 0:
            raise ValueError(f"{info.field_name} must be a positive number")
        return value

    @field_validator("cleanup_interval_s")
    @classmethod
    def _non_negative(cls, value):
        if value < 0:
            raise ValueError("cleanup_interval_s must not be negative")
        return value

    @field_validator("log_level")
    @classmethod
    def _log_level(cls, value: str) -> str:
        level = (value or "info").strip().lower()
        if level == "warn":
            level = "warning"
        if level not in LOG_LEVELS:
            raise ValueError("log_level must be one of debug, info, warn, error")
        return level

    @property
    def dsn(self) -> str:
        if self.database_url.strip():
            return self.database_url.strip()
        user = quote(self.postgres_user, safe="")
        dbname = quote(self.postgres_db, safe="")
        if self.postgres_password:
            password = quote(self.postgres_password, safe="")
            return f"postgresql://{user}:{password}@{self.postgres_host}:{self.postgres_port}/{dbname}"
        return f"postgresql://{user}@{self.postgres_host}:{self.postgres_port}/{dbname}"


settings = Settings()
