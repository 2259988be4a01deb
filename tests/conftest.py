"""Test session configuration.

This module auto-loads environment variables from the project `.env` file so
integration tests can read `PG*` settings without requiring the developer to
export them manually in the shell. It also provides an in-process fake of the
PostgreSQL surface the receiver talks to (slot catalog, slot procedures,
information_schema and a replication cursor).
"""

from __future__ import annotations

import fnmatch
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import psycopg2
import pytest
from dotenv import load_dotenv

from pg_wal_receiver.cdc.lsn import LogSequenceNumber
from pg_wal_receiver.db import dict_row


@pytest.fixture(scope="session", autouse=True)
def _load_dotenv_for_tests() -> None:
    # Load once per test session; no error if .env is absent.
    load_dotenv()


@dataclass
class FakeMessage:
    data_start: int
    wal_end: int
    payload: bytes
    send_time: datetime = datetime(2024, 1, 1, tzinfo=timezone.utc)


@dataclass
class FakeKeepalive:
    wal_end: int


class FakeResult:
    def __init__(self, columns: List[str], rows: List[Any]):
        self.columns = columns
        self._rows = rows

    def fetchall(self) -> List[Any]:
        return list(self._rows)

    def fetchone(self) -> Optional[Any]:
        return self._rows[0] if self._rows else None

    def __iter__(self):
        return iter(list(self._rows))


def _like(pattern: str, value: str) -> bool:
    return fnmatch.fnmatchcase(value, pattern.replace("%", "*").replace("_", "?"))


class FakePostgres:
    """Minimal server state shared by every fake connection."""

    SLOT_COLUMNS = [
        "slot_name",
        "plugin",
        "slot_type",
        "datoid",
        "database",
        "temporary",
        "active",
        "active_pid",
        "xmin",
        "catalog_xmin",
        "restart_lsn",
        "confirmed_flush_lsn",
    ]

    def __init__(self) -> None:
        self.slots: Dict[str, Dict[str, Any]] = {}
        self.has_confirmed_flush_column = True
        self.next_slot_lsn = "0/16B3748"
        self.created_name_override: Optional[str] = None
        self.failing_queries: Dict[str, Exception] = {}
        # number of slot lookups after a terminate before the slot deactivates
        self.deactivate_after: Optional[int] = 0
        self._pending_deactivation: Dict[str, int] = {}
        self.tables: List[Tuple[str, str]] = []
        self.failing_table_patterns: set = set()
        self.executed: List[Tuple[str, Any]] = []
        self.control_opened = 0
        self.control_closed = 0
        self.replication_opened = 0
        self.messages: deque = deque()
        self.start_error: Optional[Exception] = None
        self.feedback_error: Optional[Exception] = None
        self.cursors: List["FakeReplicationCursor"] = []

    # -- helpers used by tests
    def add_slot(
        self,
        name: str,
        *,
        plugin: str = "wal2json",
        active: bool = False,
        active_pid: Optional[int] = None,
        restart_lsn: Optional[str] = "0/100",
        confirmed_flush_lsn: Optional[str] = "0/200",
    ) -> None:
        self.slots[name] = {
            "slot_name": name,
            "plugin": plugin,
            "slot_type": "logical",
            "datoid": 1,
            "database": "postgres",
            "temporary": False,
            "active": active,
            "active_pid": active_pid,
            "xmin": None,
            "catalog_xmin": "1",
            "restart_lsn": restart_lsn,
            "confirmed_flush_lsn": confirmed_flush_lsn,
        }

    def push_message(self, lsn: str, payload: bytes, wal_end: Optional[str] = None) -> None:
        start = LogSequenceNumber.parse(lsn).value
        end = LogSequenceNumber.parse(wal_end).value if wal_end else start
        self.messages.append(FakeMessage(data_start=start, wal_end=end, payload=payload))

    def push_keepalive(self, wal_end: str) -> None:
        self.messages.append(FakeKeepalive(LogSequenceNumber.parse(wal_end).value))

    # -- query dispatch
    def execute(self, query: str, params: Any, as_dict: bool) -> FakeResult:
        normalized = " ".join(query.split())
        self.executed.append((normalized, params))
        for prefix, error in self.failing_queries.items():
            if normalized.startswith(prefix):
                raise error
        if normalized.startswith("SELECT * FROM pg_replication_slots"):
            return self._select_slot(params[0], as_dict)
        if normalized.startswith("SELECT * FROM pg_create_logical_replication_slot"):
            name, plugin = params
            if name in self.slots:
                raise psycopg2.ProgrammingError(f'replication slot "{name}" already exists')
            self.add_slot(
                name,
                plugin=plugin,
                restart_lsn=self.next_slot_lsn,
                confirmed_flush_lsn=self.next_slot_lsn,
            )
            echoed = self.created_name_override or name
            return FakeResult(["slot_name", "lsn"], [(echoed, self.next_slot_lsn)])
        if normalized.startswith("SELECT pg_terminate_backend"):
            name = params[0]
            slot = self.slots.get(name)
            if slot and slot["active"] and self.deactivate_after is not None:
                self._pending_deactivation[name] = self.deactivate_after
            return FakeResult(["pg_terminate_backend"], [(True,)] if slot else [])
        if normalized.startswith("SELECT pg_drop_replication_slot"):
            name = params[0]
            if name in self.slots and self.slots[name]["active"]:
                raise psycopg2.OperationalError(f'replication slot "{name}" is active')
            self.slots.pop(name, None)
            return FakeResult(["pg_drop_replication_slot"], [("",)])
        if normalized.startswith("SELECT table_schema, table_name"):
            schema_pattern, table_pattern = params
            if (schema_pattern, table_pattern) in self.failing_table_patterns:
                raise psycopg2.ProgrammingError("permission denied for schema")
            rows = [
                (schema, table)
                for schema, table in self.tables
                if _like(schema_pattern, schema) and _like(table_pattern, table)
            ]
            return FakeResult(["table_schema", "table_name"], rows)
        raise AssertionError(f"unexpected query: {normalized}")

    def _select_slot(self, name: str, as_dict: bool) -> FakeResult:
        columns = list(self.SLOT_COLUMNS)
        if not self.has_confirmed_flush_column:
            columns.remove("confirmed_flush_lsn")
        pending = self._pending_deactivation.get(name)
        if pending is not None:
            if pending <= 0:
                self.slots[name]["active"] = False
                self.slots[name]["active_pid"] = None
                del self._pending_deactivation[name]
            else:
                self._pending_deactivation[name] = pending - 1
        slot = self.slots.get(name)
        if slot is None:
            return FakeResult(columns, [])
        if as_dict:
            row: Any = {column: slot[column] for column in columns}
        else:
            row = tuple(slot[column] for column in columns)
        return FakeResult(columns, [row])


class FakeControlConnection:
    def __init__(self, server: FakePostgres):
        self._server = server
        self.row_factory = None
        self.autocommit = True
        self.closed = False

    def execute(self, query: str, params: Any = None) -> FakeResult:
        return self._server.execute(query, params, self.row_factory is dict_row)

    def close(self) -> None:
        self.closed = True
        self._server.control_closed += 1


class FakeReplicationCursor:
    def __init__(self, server: FakePostgres):
        self._server = server
        self.start_kwargs: Optional[Dict[str, Any]] = None
        self.feedback: List[Dict[str, Any]] = []
        self.closed = False
        self.wal_end = 0

    def start_replication(self, **kwargs) -> None:
        if self._server.start_error is not None:
            raise self._server.start_error
        self.start_kwargs = kwargs

    def read_message(self):
        if not self._server.messages:
            return None
        item = self._server.messages.popleft()
        if isinstance(item, Exception):
            raise item
        self.wal_end = max(self.wal_end, item.wal_end)
        if isinstance(item, FakeKeepalive):
            return None
        return item

    def send_feedback(self, **kwargs) -> None:
        if self._server.feedback_error is not None:
            raise self._server.feedback_error
        self.feedback.append(kwargs)

    def close(self) -> None:
        self.closed = True


class FakeReplicationConnection:
    def __init__(self, server: FakePostgres):
        self._server = server
        self.closed = False
        self.server_version = 150004

    def cursor(self) -> FakeReplicationCursor:
        cursor = FakeReplicationCursor(self._server)
        self._server.cursors.append(cursor)
        return cursor

    def close(self) -> None:
        self.closed = True


class FakeConnectionManager:
    def __init__(self, server: FakePostgres):
        self._server = server
        self.replication_connections: List[FakeReplicationConnection] = []

    @contextmanager
    def control_connection(self):
        self._server.control_opened += 1
        conn = FakeControlConnection(self._server)
        try:
            yield conn
        finally:
            conn.close()

    def replication_connection(self) -> FakeReplicationConnection:
        self._server.replication_opened += 1
        conn = FakeReplicationConnection(self._server)
        self.replication_connections.append(conn)
        return conn


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_pg() -> FakePostgres:
    return FakePostgres()


@pytest.fixture
def connections(fake_pg: FakePostgres) -> FakeConnectionManager:
    return FakeConnectionManager(fake_pg)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()
