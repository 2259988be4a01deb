"""WAL receiver wiring slot lifecycle, start position and the stream session."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from ..db.connections import ConnectionManager
from ..errors import StreamSessionStateError
from .lsn import LogSequenceNumber, LsnLike
from .schema_tables import (
    ConfigValidationIssue,
    SchemaAndTable,
    SchemaTableConfig,
    SchemaTableValidator,
)
from .slots import ReplicationSlot, SlotLifecycleManager
from .start_position import SEED_LSN, StartOffsetPolicy, resolve_start_position
from .stream import OffsetCommitter, ReadResult, StreamSession

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from ..config import Settings

logger = logging.getLogger(__name__)


class WalReceiver:
    """Drives one logical replication slot for a change-data-capture pipeline.

    The receiver owns at most one stream session at a time. It never retries:
    every failure propagates to the caller, which decides whether to reopen,
    fail the run, or leave the slot for a later resume.
    """

    def __init__(
        self,
        *,
        slot_name: str,
        output_plugin: str,
        connections: ConnectionManager,
        start_policy: StartOffsetPolicy = StartOffsetPolicy.LATEST,
        configured_lsn: Optional[str] = None,
        seed_lsn: str = SEED_LSN,
        poll_interval_seconds: int = 10,
        schema_tables: Sequence[SchemaTableConfig] = (),
        slots: Optional[SlotLifecycleManager] = None,
        session_factory: Optional[Callable[[ConnectionManager], StreamSession]] = None,
    ) -> None:
        self.slot_name = slot_name
        self.output_plugin = output_plugin
        self._connections = connections
        self._start_policy = start_policy
        self._configured_lsn = configured_lsn
        self._seed_lsn = seed_lsn
        self._poll_interval = poll_interval_seconds
        self._schema_tables = tuple(schema_tables)
        self._slots = slots or SlotLifecycleManager(connections)
        self._session_factory = session_factory or StreamSession
        self._session: Optional[StreamSession] = None
        self._committer: Optional[OffsetCommitter] = None
        self.schemas_and_tables: List[SchemaAndTable] = []

    @classmethod
    def from_settings(
        cls, settings: "Settings", *, connections: Optional[ConnectionManager] = None
    ) -> "WalReceiver":
        return cls(
            slot_name=settings.slot_name,
            output_plugin=settings.output_plugin,
            connections=connections or ConnectionManager.from_settings(settings),
            start_policy=settings.start_policy,
            configured_lsn=settings.start_lsn or None,
            seed_lsn=settings.seed_lsn,
            poll_interval_seconds=settings.poll_interval_seconds,
            schema_tables=settings.schema_tables,
        )

    @property
    def connections(self) -> ConnectionManager:
        return self._connections

    @property
    def slots(self) -> SlotLifecycleManager:
        return self._slots

    @property
    def session(self) -> Optional[StreamSession]:
        return self._session

    def slot_info(self) -> ReplicationSlot:
        return self._slots.refresh_slot_info(self.slot_name)

    def create_replication_stream(
        self, start_offset: Optional[LsnLike] = None
    ) -> LogSequenceNumber:
        """Ensure the slot exists, then open the stream.

        `start_offset` is the offset the pipeline persisted on its last run;
        it is only consulted when the slot had to be created.
        """

        if self._session is not None and self._session.is_open:
            raise StreamSessionStateError(
                "a stream is already open for this receiver", slot_name=self.slot_name
            )
        new_slot = False
        if not self._slots.exists(self.slot_name):
            self._slots.create(self.slot_name, self.output_plugin)
            new_slot = True
        slot = self._slots.refresh_slot_info(self.slot_name)

        start_lsn: Optional[LogSequenceNumber] = None
        if new_slot:
            # postgres has no stored position for a new slot yet
            start_lsn = resolve_start_position(
                self._start_policy,
                start_offset,
                slot.confirmed_flush_lsn or slot.restart_lsn,
                configured_lsn=self._configured_lsn,
                seed_lsn=self._seed_lsn,
            )

        session = self._session_factory(self._connections)
        position = session.open(self.slot_name, new_slot, start_lsn, self._poll_interval)
        self._session = session
        self._committer = OffsetCommitter(session)
        logger.debug("starting from LSN %s", position)
        return position

    def read_non_blocking(self) -> ReadResult:
        return self._require_session().read_non_blocking()

    def current_position(self) -> LogSequenceNumber:
        return self._require_session().current_position()

    def commit_current_offset(self) -> LogSequenceNumber:
        self._require_session()
        assert self._committer is not None
        return self._committer.commit()

    def validate_schema_and_tables(self) -> List[ConfigValidationIssue]:
        validation = SchemaTableValidator(self._connections).validate(
            self._schema_tables
        )
        self.schemas_and_tables = validation.tables
        return validation.issues

    def drop_replication_slot(self) -> None:
        self._slots.drop(self.slot_name)

    def close(self) -> None:
        if self._session is not None:
            self._session.close()

    def _require_session(self) -> StreamSession:
        if self._session is None:
            raise StreamSessionStateError(
                "replication stream has not been created", slot_name=self.slot_name
            )
        return self._session


__all__ = ["WalReceiver"]
