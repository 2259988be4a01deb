"""Logical replication stream session and offset acknowledgement."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Dict, Optional

from psycopg2.extras import REPLICATION_LOGICAL

from ..db import Error
from ..errors import (
    CommitError,
    StreamReadError,
    StreamSessionStateError,
    StreamStartError,
)
from .lsn import INVALID_LSN, LogSequenceNumber, LsnLike

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from ..db.connections import ConnectionManager

logger = logging.getLogger(__name__)

STREAM_OPTIONS: Dict[str, str] = {
    "include-xids": "true",
    "include-timestamp": "true",
    "include-lsn": "true",
}


@dataclass(frozen=True)
class ReplicationStreamMessage:
    """Raw message yielded by a logical replication stream."""

    lsn: LogSequenceNumber
    data: bytes
    wal_end: LogSequenceNumber
    send_timestamp: float


@dataclass(frozen=True)
class ReadResult:
    """Outcome of one non-blocking read: a message, or nothing pending."""

    message: Optional[ReplicationStreamMessage] = None

    NO_DATA: ClassVar["ReadResult"]

    @property
    def has_data(self) -> bool:
        return self.message is not None

    def __bool__(self) -> bool:
        return self.has_data


ReadResult.NO_DATA = ReadResult()


class StreamSession:
    """One replication connection carrying one logical stream.

    A session is single use: once closed it cannot be reopened and a new
    session has to be created.
    """

    def __init__(self, connections: "ConnectionManager") -> None:
        self._connections = connections
        self._conn = None
        self._cursor = None
        self._slot_name: Optional[str] = None
        self._position = INVALID_LSN
        self._closed = False

    @property
    def slot_name(self) -> Optional[str]:
        return self._slot_name

    @property
    def is_open(self) -> bool:
        return self._cursor is not None and not self._closed

    def open(
        self,
        slot_name: str,
        is_new_slot: bool,
        start_lsn: Optional[LsnLike],
        poll_interval_seconds: int,
    ) -> LogSequenceNumber:
        """Start streaming and return the position the stream starts from."""

        if self._closed or self._cursor is not None:
            raise StreamSessionStateError(
                "stream session cannot be reopened", slot_name=slot_name
            )
        self._slot_name = slot_name
        seed: Optional[LogSequenceNumber] = None
        if is_new_slot:
            # a new slot has no stored position yet; seed it explicitly
            try:
                seed = LogSequenceNumber.parse_optional(start_lsn) or INVALID_LSN
            except ValueError as exc:
                self._closed = True
                raise StreamStartError(
                    f"invalid start position {start_lsn!r}: {exc}", slot_name=slot_name
                ) from exc
        conn = self._connections.replication_connection()
        start_kwargs = {
            "slot_name": slot_name,
            "slot_type": REPLICATION_LOGICAL,
            "decode": False,
            "options": dict(STREAM_OPTIONS),
            "status_interval": poll_interval_seconds,
        }
        if seed is not None:
            self._position = seed
            start_kwargs["start_lsn"] = str(seed)
        try:
            cursor = conn.cursor()
            cursor.start_replication(**start_kwargs)
        except Error as exc:
            conn.close()
            self._closed = True
            raise StreamStartError(
                f"failed to start logical replication: {exc}", slot_name=slot_name
            ) from exc
        self._conn = conn
        self._cursor = cursor
        logger.info(
            "logical stream started for slot %s from %s (new_slot=%s)",
            slot_name,
            self._position,
            is_new_slot,
        )
        return self._position

    def read_non_blocking(self) -> ReadResult:
        cursor = self._require_cursor()
        try:
            raw = cursor.read_message()
        except Error as exc:
            raise StreamReadError(
                f"failed to read from replication stream: {exc}",
                slot_name=self._slot_name,
            ) from exc
        if raw is None:
            # keepalives move wal_end once every pending message is consumed
            wal_end = LogSequenceNumber(int(cursor.wal_end or 0))
            if wal_end > self._position:
                self._position = wal_end
            return ReadResult.NO_DATA
        lsn = LogSequenceNumber(int(raw.data_start))
        if lsn > self._position:
            self._position = lsn
        send_time = getattr(raw, "send_time", None)
        message = ReplicationStreamMessage(
            lsn=lsn,
            data=bytes(raw.payload),
            wal_end=LogSequenceNumber(int(raw.wal_end)),
            send_timestamp=send_time.timestamp() if send_time else time.time(),
        )
        return ReadResult(message)

    def current_position(self) -> LogSequenceNumber:
        return self._position

    def send_status(self, lsn: LogSequenceNumber) -> None:
        """Report `lsn` as written, flushed and applied, bypassing the interval."""

        cursor = self._require_cursor()
        cursor.send_feedback(
            write_lsn=lsn.value,
            flush_lsn=lsn.value,
            apply_lsn=lsn.value,
            force=True,
        )

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        cursor, conn = self._cursor, self._conn
        self._cursor = None
        self._conn = None
        try:
            if cursor is not None:
                cursor.close()
        finally:
            if conn is not None:
                conn.close()
        logger.info("logical stream for slot %s closed", self._slot_name)

    def __enter__(self) -> "StreamSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def _require_cursor(self):
        if self._closed or self._cursor is None:
            raise StreamSessionStateError(
                "stream session is not open", slot_name=self._slot_name
            )
        return self._cursor


class OffsetCommitter:
    """Acknowledges the session's received position back to the server."""

    def __init__(self, session: StreamSession) -> None:
        self._session = session
        self._last_committed: Optional[LogSequenceNumber] = None

    @property
    def last_committed(self) -> Optional[LogSequenceNumber]:
        return self._last_committed

    def commit(self) -> LogSequenceNumber:
        lsn = self._session.current_position()
        if self._last_committed is not None and lsn < self._last_committed:
            lsn = self._last_committed
        try:
            self._session.send_status(lsn)
        except Error as exc:
            logger.error("error forcing status update: %s", exc)
            raise CommitError(
                f"forced status update failed: {exc}",
                slot_name=self._session.slot_name,
            ) from exc
        self._last_committed = lsn
        logger.debug("committed %s for slot %s", lsn, self._session.slot_name)
        return lsn


__all__ = [
    "OffsetCommitter",
    "ReadResult",
    "ReplicationStreamMessage",
    "STREAM_OPTIONS",
    "StreamSession",
]
