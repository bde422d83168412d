"""
moltmark.config — Environment-driven settings.

    MOLTMARK_STORE               postgres | memory          (default: postgres)
    DATABASE_URL                 required for the postgres store
    MOLTMARK_DB_SSL              auto | disable | require   (default: auto)
    MOLTMARK_DB_POOL_MIN/MAX     asyncpg pool size          (default: 2 / 10)
    MOLTMARK_DB_COMMAND_TIMEOUT  seconds per statement      (default: 30)
    MOLTMARK_DB_CONNECT_TIMEOUT  seconds to get a connection (default: 10)
    MOLTMARK_LOG_LEVEL           default: INFO
    MOLTMARK_HOST / MOLTMARK_PORT   default: 127.0.0.1 / 8080
    MOLTMARK_MAX_BODY_BYTES      default: 1048576
"""

from __future__ import annotations

import os
from dataclasses import dataclass, replace
from typing import Mapping, Optional
from urllib.parse import urlparse

from moltmark.errors import ConfigurationError

__all__ = ["Settings", "build_store"]

STORE_BACKENDS = ("postgres", "memory")
SSL_MODES = ("auto", "disable", "require")
_LOCAL_HOSTS = {"localhost", "127.0.0.1", "::1"}


@dataclass(frozen=True)
class Settings:
    store_backend: str = "postgres"
    database_url: str = ""
    db_ssl: str = "auto"
    pool_min_size: int = 2
    pool_max_size: int = 10
    command_timeout: float = 30.0
    connect_timeout: float = 10.0
    log_level: str = "INFO"
    host: str = "127.0.0.1"
    port: int = 8080
    max_body_bytes: int = 1_048_576

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        settings = cls(
            store_backend=env.get("MOLTMARK_STORE", "postgres").strip().lower(),
            database_url=env.get("DATABASE_URL", "").strip(),
            db_ssl=env.get("MOLTMARK_DB_SSL", "auto").strip().lower(),
            pool_min_size=_int(env, "MOLTMARK_DB_POOL_MIN", 2),
            pool_max_size=_int(env, "MOLTMARK_DB_POOL_MAX", 10),
            command_timeout=_float(env, "MOLTMARK_DB_COMMAND_TIMEOUT", 30.0),
            connect_timeout=_float(env, "MOLTMARK_DB_CONNECT_TIMEOUT", 10.0),
            log_level=env.get("MOLTMARK_LOG_LEVEL", "INFO").strip().upper(),
            host=env.get("MOLTMARK_HOST", "127.0.0.1"),
            port=_int(env, "MOLTMARK_PORT", 8080),
            max_body_bytes=_int(env, "MOLTMARK_MAX_BODY_BYTES", 1_048_576),
        )
        settings.validate()
        return settings

    def with_overrides(self, **changes) -> "Settings":
        updated = replace(self, **{k: v for k, v in changes.items() if v is not None})
        updated.validate()
        return updated

    def validate(self) -> None:
        if self.store_backend not in STORE_BACKENDS:
            raise ConfigurationError(
                f"MOLTMARK_STORE must be one of {', '.join(STORE_BACKENDS)}, got '{self.store_backend}'")
        if self.store_backend == "postgres" and not self.database_url:
            raise ConfigurationError("DATABASE_URL environment variable is required")
        if self.db_ssl not in SSL_MODES:
            raise ConfigurationError(
                f"MOLTMARK_DB_SSL must be one of {', '.join(SSL_MODES)}, got '{self.db_ssl}'")
        if not 0 < self.pool_min_size <= self.pool_max_size:
            raise ConfigurationError("Pool sizes must satisfy 0 < min <= max")
        if self.command_timeout <= 0 or self.connect_timeout <= 0:
            raise ConfigurationError("Timeouts must be positive")
        if not 0 < self.port < 65536:
            raise ConfigurationError(f"Invalid port: {self.port}")

    def ssl_mode(self) -> str:
        """asyncpg sslmode. ``auto`` skips TLS only for local databases."""
        if self.db_ssl != "auto":
            return self.db_ssl
        host = urlparse(self.database_url).hostname or ""
        return "disable" if host in _LOCAL_HOSTS else "require"


def build_store(settings: Settings):
    """Instantiate (but do not connect) the configured store backend."""
    if settings.store_backend == "memory":
        from moltmark.store import MemoryStore
        return MemoryStore()
    from moltmark.database import PostgresStore
    return PostgresStore.from_settings(settings)


def _int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'") from None


def _float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got '{raw}'") from None
