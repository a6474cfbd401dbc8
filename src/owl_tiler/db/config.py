"""Configuration objects for the changeset tiler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping
import os

from ..errors import ConfigurationError


SUMMARY_STRATEGIES: tuple[str, ...] = ("per_cell", "grouped")


def _normalise_postgres_dsn(dsn: str) -> str:
    return dsn.replace("postgres://", "postgresql://", 1) if dsn.startswith("postgres://") else dsn


def _int_setting(env: Mapping[str, str], key: str, default: int | None) -> int | None:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection settings for PostgreSQL/PostGIS."""

    dsn: str
    application_name: str = "owl-tiler"
    connect_timeout: int = 10
    statement_timeout_ms: int | None = 600_000

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "DatabaseConfig":
        env = os.environ if env is None else env
        candidates = [
            env.get("POSTGIS_DATABASE_URL"),
            env.get("DATABASE_URL"),
            env.get("PG_DSN"),
        ]
        dsn = next((value for value in candidates if value), None)
        if not dsn:
            raise ConfigurationError(
                "DATABASE_URL (or PG_DSN) must be set in the environment")
        return cls.from_dsn(dsn, env)

    @classmethod
    def from_dsn(cls, dsn: str, env: Mapping[str, str] | None = None) -> "DatabaseConfig":
        env = os.environ if env is None else env
        timeout = _int_setting(env, "PG_STATEMENT_TIMEOUT_MS", 600_000)
        return cls(dsn=_normalise_postgres_dsn(dsn), statement_timeout_ms=timeout)


@dataclass(frozen=True)
class TilerConfig:
    """Processing limits and tuning knobs for a tiling run."""

    max_changes: int = 50_000
    max_tiles: int | None = None
    workers: int = 1
    change_batch_size: int = 500
    summary_strategy: str = "per_cell"
    retry_attempts: int = 3

    def __post_init__(self) -> None:
        if self.summary_strategy not in SUMMARY_STRATEGIES:
            raise ConfigurationError(
                f"Unknown summary strategy {self.summary_strategy!r}; "
                f"expected one of {', '.join(SUMMARY_STRATEGIES)}"
            )
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")
        if self.change_batch_size < 1:
            raise ConfigurationError("change_batch_size must be at least 1")
        if self.retry_attempts < 1:
            raise ConfigurationError("retry_attempts must be at least 1")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "TilerConfig":
        env = os.environ if env is None else env
        return cls(
            max_changes=_int_setting(env, "OWL_PROCESSING_CHANGE_LIMIT", 50_000),
            max_tiles=_int_setting(env, "OWL_PROCESSING_TILE_LIMIT", None),
            workers=_int_setting(env, "OWL_TILER_WORKERS", 1),
            change_batch_size=_int_setting(env, "OWL_CHANGE_BATCH_SIZE", 500),
            summary_strategy=env.get("OWL_SUMMARY_STRATEGY") or "per_cell",
            retry_attempts=_int_setting(env, "OWL_RETRY_ATTEMPTS", 3),
        )


__all__ = ["DatabaseConfig", "TilerConfig", "SUMMARY_STRATEGIES"]
