"""Persistence layer for relayflow runs."""

from __future__ import annotations

import os
from typing import Optional

from ..config import RelayflowConfig, load_config
from .inmemory import InMemoryRunRepository
from .models import RunInstance, StepRecord
from .repository import RunRepository
from .sqlite import SQLiteRunRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresRunRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresRunRepository = None  # type: ignore

_repository_instance: RunRepository | None = None


def _database_url(config: RelayflowConfig) -> Optional[str]:
    return (
        os.getenv("RELAYFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )


def _open(database_url: str) -> RunRepository:
    scheme, _, location = database_url.partition("://")
    scheme = scheme.lower()
    if scheme == "sqlite":
        return SQLiteRunRepository(location or ":memory:")
    if scheme in ("postgres", "postgresql"):
        if PostgresRunRepository is None:
            raise RuntimeError("Postgres support not available; install relayflow[postgres]")
        return PostgresRunRepository(database_url)
    raise ValueError(f"Unsupported database backend: {database_url}")


def get_repository(
    database_url: Optional[str] = None, config: Optional[RelayflowConfig] = None
) -> RunRepository:
    """Return the run repository shared by the coordinator, invoker and CLI.

    ``database_url`` falls back to ``RELAYFLOW_DATABASE_URL``, ``DATABASE_URL``
    and then ``database_url`` in the loaded config. ``sqlite://<path>`` and
    ``postgres(ql)://`` URLs select a durable backend; with no URL runs are
    kept in memory. Called without arguments, the repository opened last is
    reused.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    database_url = database_url or _database_url(config or load_config())
    _repository_instance = _open(database_url) if database_url else InMemoryRunRepository()
    return _repository_instance


__all__ = [
    "RunInstance",
    "RunRepository",
    "StepRecord",
    "InMemoryRunRepository",
    "SQLiteRunRepository",
    "PostgresRunRepository",
    "get_repository",
]
