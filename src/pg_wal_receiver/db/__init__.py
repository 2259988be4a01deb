"""Database utilities and psycopg2 helpers for the WAL receiver."""

from __future__ import annotations

from typing import Any, Iterator, List, Optional, Tuple

import psycopg2
from psycopg2 import Error, errors
from psycopg2.extras import (
    LogicalReplicationConnection as _LogicalReplicationConnection,
)
from psycopg2.extras import (
    PhysicalReplicationConnection as _PhysicalReplicationConnection,
)
from psycopg2.extras import RealDictCursor


class _DictRowSentinel:
    """Sentinel representing row factory for dictionary rows."""


dict_row = _DictRowSentinel()

_USE_DEFAULT_FACTORY = object()


class _ExecuteResult:
    def __init__(self, cursor):
        self._cursor = cursor
        self._rows: Optional[list] = None
        self._index = 0
        self.columns: List[str] = [
            column[0] for column in (cursor.description or ())
        ]
        self._load_rows()

    def fetchone(self):
        rows = self._load_rows()
        if self._index >= len(rows):
            return None
        row = rows[self._index]
        self._index += 1
        return row

    def fetchall(self):
        rows = self._load_rows()
        remaining = rows[self._index :]
        self._index = len(rows)
        return remaining

    def __iter__(self) -> Iterator:
        rows = self._load_rows()
        start = self._index
        self._index = len(rows)
        return iter(rows[start:])

    def _load_rows(self) -> list:
        if self._rows is None:
            if self._cursor.description is not None:
                self._rows = list(self._cursor.fetchall())
            else:
                self._rows = []
            self._cursor.close()
        return self._rows


class Connection(psycopg2.extensions.connection):
    """psycopg2 connection subclass with a psycopg3-style `execute` helper."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.autocommit = True
        self._row_factory = None

    def cursor(self, *args, **kwargs):
        row_factory = kwargs.pop("row_factory", _USE_DEFAULT_FACTORY)
        if kwargs.get("cursor_factory") is None:
            if row_factory is dict_row:
                kwargs["cursor_factory"] = RealDictCursor
            elif row_factory is _USE_DEFAULT_FACTORY:
                if self._row_factory is dict_row:
                    kwargs["cursor_factory"] = RealDictCursor
            elif row_factory is not None:
                kwargs["cursor_factory"] = row_factory
        return super().cursor(*args, **kwargs)

    def execute(
        self, query: str, params: Optional[Tuple[Any, ...]] = None
    ) -> _ExecuteResult:
        cursor = self.cursor()
        cursor.execute(query, params)
        return _ExecuteResult(cursor)

    @property
    def row_factory(self):
        return self._row_factory

    @row_factory.setter
    def row_factory(self, factory) -> None:
        self._row_factory = factory


class LogicalReplicationConnection(_LogicalReplicationConnection):
    """Replication connection opened with ``replication=database``."""

    @classmethod
    def connect(cls, dsn: str):
        return psycopg2.connect(dsn, connection_factory=cls)


class PhysicalReplicationConnection(_PhysicalReplicationConnection):
    """Replication connection opened with ``replication=true``."""

    @classmethod
    def connect(cls, dsn: str):
        return psycopg2.connect(dsn, connection_factory=cls)


REPLICATION_CONNECTIONS = {
    "database": LogicalReplicationConnection,
    "true": PhysicalReplicationConnection,
}


def connect(*args, **kwargs) -> Connection:
    """Create a Connection instance using psycopg2."""

    kwargs.setdefault("connection_factory", Connection)
    return psycopg2.connect(*args, **kwargs)


__all__ = [
    "Connection",
    "Error",
    "LogicalReplicationConnection",
    "PhysicalReplicationConnection",
    "REPLICATION_CONNECTIONS",
    "connect",
    "dict_row",
    "errors",
]
