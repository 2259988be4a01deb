"""Replication slot lifecycle: metadata refresh, creation and bounded-wait drop."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from ..db import Error, dict_row
from ..errors import (
    SlotCreationError,
    SlotCreationMismatchError,
    SlotDropError,
    SlotDropTimeoutError,
    SlotMetadataQueryError,
)
from .lsn import LogSequenceNumber

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from ..db.connections import ConnectionManager

logger = logging.getLogger(__name__)

SELECT_SLOT = "SELECT * FROM pg_replication_slots WHERE slot_name = %s"
CREATE_SLOT = "SELECT * FROM pg_create_logical_replication_slot(%s, %s)"
TERMINATE_SLOT_BACKEND = (
    "SELECT pg_terminate_backend(active_pid) FROM pg_replication_slots "
    "WHERE active = true AND slot_name = %s"
)
DROP_SLOT = (
    "SELECT pg_drop_replication_slot(slot_name) FROM pg_replication_slots "
    "WHERE slot_name = %s"
)

CONFIRMED_FLUSH_COLUMN = "confirmed_flush_lsn"
RESTART_COLUMN = "restart_lsn"

DROP_POLL_INTERVAL_SECONDS = 0.1
DROP_TIMEOUT_SECONDS = 30.0


@dataclass(frozen=True)
class ReplicationSlot:
    """Snapshot of one `pg_replication_slots` row, valid only at query time."""

    name: str
    plugin: Optional[str] = None
    slot_type: Optional[str] = None
    active: bool = False
    active_pid: Optional[int] = None
    restart_lsn: Optional[LogSequenceNumber] = None
    confirmed_flush_lsn: Optional[LogSequenceNumber] = None

    @property
    def exists(self) -> bool:
        return self.plugin is not None

    @classmethod
    def absent(cls, name: str) -> "ReplicationSlot":
        return cls(name=name)


class SlotLifecycleManager:
    """Checks, creates and drops a logical replication slot.

    Every check opens its own control connection and returns a fresh
    snapshot. Nothing is held between calls, so concurrent administration of
    the same slot name by another client can invalidate a snapshot at any
    time.
    """

    def __init__(
        self,
        connections: "ConnectionManager",
        *,
        poll_interval_seconds: float = DROP_POLL_INTERVAL_SECONDS,
        drop_timeout_seconds: float = DROP_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be positive")
        if drop_timeout_seconds < 0:
            raise ValueError("drop_timeout_seconds must not be negative")
        self._connections = connections
        self._poll_interval = poll_interval_seconds
        self._drop_timeout = drop_timeout_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_snapshot: Optional[ReplicationSlot] = None

    @property
    def last_snapshot(self) -> Optional[ReplicationSlot]:
        return self._last_snapshot

    def refresh_slot_info(self, name: str) -> ReplicationSlot:
        """Query the slot row and replace the cached snapshot in full."""

        try:
            with self._connections.control_connection() as conn:
                conn.row_factory = dict_row
                result = conn.execute(SELECT_SLOT, (name,))
                flushed_column = CONFIRMED_FLUSH_COLUMN
                if CONFIRMED_FLUSH_COLUMN not in result.columns:
                    logger.debug(
                        "no %s column found; using %s",
                        CONFIRMED_FLUSH_COLUMN,
                        RESTART_COLUMN,
                    )
                    flushed_column = RESTART_COLUMN
                rows = result.fetchall()
        except Error as exc:
            raise SlotMetadataQueryError(
                f"failed to read replication slot metadata: {exc}", slot_name=name
            ) from exc

        if not rows:
            snapshot = ReplicationSlot.absent(name)
        else:
            row = rows[-1]
            snapshot = ReplicationSlot(
                name=name,
                plugin=row.get("plugin"),
                slot_type=row.get("slot_type"),
                active=bool(row.get("active")),
                active_pid=row.get("active_pid"),
                restart_lsn=LogSequenceNumber.parse_optional(row.get(RESTART_COLUMN)),
                confirmed_flush_lsn=LogSequenceNumber.parse_optional(
                    row.get(flushed_column)
                ),
            )
        logger.debug("slot %s snapshot: %s", name, snapshot)
        self._last_snapshot = snapshot
        return snapshot

    def exists(self, name: str) -> bool:
        # no configured plugin means the slot does not exist
        return self.refresh_slot_info(name).exists

    def is_active(self, name: str) -> bool:
        return self.refresh_slot_info(name).active

    def create(self, name: str, output_plugin: str) -> Optional[LogSequenceNumber]:
        """Create the logical slot and return its consistent point, if reported."""

        created_lsn: Optional[LogSequenceNumber] = None
        try:
            with self._connections.control_connection() as conn:
                rows = conn.execute(CREATE_SLOT, (name, output_plugin)).fetchall()
        except Error as exc:
            raise SlotCreationError(
                f"failed to create replication slot with plugin {output_plugin}: {exc}",
                slot_name=name,
            ) from exc
        for row in rows:
            if row[0] != name:
                raise SlotCreationMismatchError(
                    f"server created slot {row[0]!r} instead of the requested one",
                    slot_name=name,
                )
            if len(row) > 1:
                created_lsn = LogSequenceNumber.parse_optional(row[1])
            logger.debug("slot name: %s %s", row[0], created_lsn)
        logger.info(
            "replication slot %s created with plugin %s at %s",
            name,
            output_plugin,
            created_lsn,
        )
        return created_lsn

    def drop(self, name: str) -> None:
        """Drop the slot, terminating and waiting out its holder first."""

        try:
            with self._connections.control_connection() as conn:
                snapshot = self.refresh_slot_info(name)
                if snapshot.active:
                    logger.warning(
                        "slot %s is held by backend %s; terminating it",
                        name,
                        snapshot.active_pid,
                    )
                    conn.execute(TERMINATE_SLOT_BACKEND, (name,))
                    self._wait_until_inactive(name)
                conn.execute(DROP_SLOT, (name,))
        except Error as exc:
            raise SlotDropError(
                f"failed to drop replication slot: {exc}", slot_name=name
            ) from exc
        logger.info("replication slot %s dropped", name)

    def _wait_until_inactive(self, name: str) -> None:
        started = self._clock()
        while True:
            if not self.is_active(name):
                return
            waited = self._clock() - started
            if waited > self._drop_timeout:
                raise SlotDropTimeoutError(
                    f"replication slot still active after {waited:.1f}s",
                    slot_name=name,
                )
            self._sleep(self._poll_interval)


__all__ = [
    "ReplicationSlot",
    "SlotLifecycleManager",
    "DROP_POLL_INTERVAL_SECONDS",
    "DROP_TIMEOUT_SECONDS",
]
