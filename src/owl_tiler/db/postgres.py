"""PostgreSQL/PostGIS utilities for the tiler."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from itertools import count
from typing import Iterator, Sequence
import logging

import psycopg

from ..errors import StoreUnavailable


LOGGER = logging.getLogger(__name__)

_cursor_ids = count(1)


@contextmanager
def _unavailable_on_disconnect() -> Iterator[None]:
    try:
        yield
    except psycopg.OperationalError as exc:
        raise StoreUnavailable(str(exc)) from exc


@dataclass
class PostgresSession:
    """Statements issued on one connection inside an open transaction."""

    conn: psycopg.Connection

    def execute(self, sql: str, params: Sequence[object] | None = None) -> int:
        with _unavailable_on_disconnect():
            cursor = self.conn.execute(sql, params or ())
            return cursor.rowcount

    def fetch_one(self, sql: str, params: Sequence[object] | None = None) -> tuple | None:
        with _unavailable_on_disconnect():
            with self.conn.cursor() as cur:
                cur.execute(sql, params or ())
                return cur.fetchone()

    def fetch_all(self, sql: str, params: Sequence[object] | None = None) -> list[tuple]:
        with _unavailable_on_disconnect():
            with self.conn.cursor() as cur:
                cur.execute(sql, params or ())
                return cur.fetchall()

    def iter_rows(
        self,
        sql: str,
        params: Sequence[object] | None = None,
        *,
        batch_size: int = 500,
    ) -> Iterator[tuple]:
        """Stream rows through a server-side cursor, ``batch_size`` at a time."""

        name = f"owl_tiler_{next(_cursor_ids)}"
        with _unavailable_on_disconnect():
            with self.conn.cursor(name=name) as cur:
                cur.execute(sql, params or ())
                while True:
                    rows = cur.fetchmany(batch_size)
                    if not rows:
                        break
                    yield from rows


@dataclass
class PostgresClient:
    """Thin wrapper around psycopg connections with sensible defaults."""

    dsn: str
    application_name: str = "owl-tiler"
    connect_timeout: int = 10
    statement_timeout_ms: int | None = 600_000

    @contextmanager
    def connect(self, *, autocommit: bool = False) -> Iterator[psycopg.Connection]:
        with _unavailable_on_disconnect():
            conn = psycopg.connect(
                self.dsn,
                autocommit=autocommit,
                connect_timeout=self.connect_timeout,
                application_name=self.application_name,
            )
        with conn:
            if self.statement_timeout_ms is not None:
                conn.execute(f"SET statement_timeout = {int(self.statement_timeout_ms)}")
            yield conn

    @contextmanager
    def transaction(self) -> Iterator[PostgresSession]:
        """Open a connection and yield a session bound to a single transaction.

        The transaction commits when the block exits normally and rolls back
        when it raises, discarding every write issued through the session.
        """

        with self.connect() as conn:
            with conn.transaction():
                yield PostgresSession(conn)

    def execute(self, sql: str, params: Sequence[object] | None = None) -> int | None:
        with self.connect(autocommit=True) as conn:
            with _unavailable_on_disconnect():
                cursor = conn.execute(sql, params or ())
                return cursor.rowcount

    def fetch_one(self, sql: str, params: Sequence[object] | None = None) -> tuple | None:
        with self.connect() as conn:
            return PostgresSession(conn).fetch_one(sql, params)

    def fetch_all(self, sql: str, params: Sequence[object] | None = None) -> list[tuple]:
        with self.connect() as conn:
            return PostgresSession(conn).fetch_all(sql, params)

    def ensure_extensions(self) -> None:
        LOGGER.debug("Ensuring PostGIS extension")
        self.execute("CREATE EXTENSION IF NOT EXISTS postgis")


__all__ = ["PostgresClient", "PostgresSession"]
