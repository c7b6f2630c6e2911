"""Thread-local Postgres connection reuse for the hot store."""

from __future__ import annotations

from contextlib import AbstractContextManager
import threading
import time
from typing import Any

import psycopg


_THREAD_LOCAL = threading.local()
_CONNECT_RETRIES = 3
_CONNECT_BACKOFF_SECONDS = 0.05


def is_postgres_dsn(value: str | None) -> bool:
    if not value:
        return False
    return value.startswith("postgres://") or value.startswith("postgresql://")


class _ReusedConnection(AbstractContextManager["psycopg.Connection[Any]"]):
    """Commit on clean exit, roll back on error, keep the connection for the thread."""

    def __init__(self, dsn: str) -> None:
        self._dsn = str(dsn or "").strip()
        self._connection: psycopg.Connection[Any] | None = None

    def __enter__(self) -> psycopg.Connection[Any]:
        self._connection = _acquire(self._dsn)
        return self._connection

    def __exit__(self, exc_type: Any, exc: Any, tb: Any) -> bool:
        connection = self._connection
        self._connection = None
        if connection is None:
            return False
        if exc_type is not None:
            try:
                connection.rollback()
            except psycopg.Error:
                _drop(self._dsn)
            return False
        try:
            connection.commit()
        except psycopg.Error:
            _drop(self._dsn)
            raise
        if connection.closed or connection.broken:
            _drop(self._dsn)
        return False


def threadlocal_connection(dsn: str) -> AbstractContextManager[psycopg.Connection[Any]]:
    """Return a context manager over this thread's cached connection to ``dsn``."""
    return _ReusedConnection(dsn)


def close_threadlocal_connections() -> None:
    for dsn in list(_connections().keys()):
        _drop(dsn)


def _connections() -> dict[str, psycopg.Connection[Any]]:
    value = getattr(_THREAD_LOCAL, "connections", None)
    if isinstance(value, dict):
        return value
    connections: dict[str, psycopg.Connection[Any]] = {}
    _THREAD_LOCAL.connections = connections
    return connections


def _acquire(dsn: str) -> psycopg.Connection[Any]:
    connections = _connections()
    cached = connections.get(dsn)
    if cached is not None and not (cached.closed or cached.broken):
        return cached
    if cached is not None:
        _drop(dsn)
    last_error: psycopg.OperationalError | None = None
    for attempt in range(_CONNECT_RETRIES):
        try:
            connection = psycopg.connect(dsn)
            connections[dsn] = connection
            return connection
        except psycopg.OperationalError as exc:
            last_error = exc
            if attempt < _CONNECT_RETRIES - 1:
                time.sleep(_CONNECT_BACKOFF_SECONDS * (2**attempt))
    assert last_error is not None
    raise last_error


def _drop(dsn: str) -> None:
    connection = _connections().pop(dsn, None)
    if connection is None:
        return
    try:
        connection.close()
    except psycopg.Error:
        pass
