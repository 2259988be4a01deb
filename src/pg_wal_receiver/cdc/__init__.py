"""Replication slot management, start-position resolution and WAL streaming."""

from .checkpoint import FileOffsetStore, InMemoryOffsetStore, OffsetStore
from .lsn import INVALID_LSN, LogSequenceNumber, int_to_lsn
from .receiver import WalReceiver
from .schema_tables import (
    ConfigValidationIssue,
    SchemaAndTable,
    SchemaTableConfig,
    SchemaTableValidation,
    SchemaTableValidator,
)
from .slots import ReplicationSlot, SlotLifecycleManager
from .start_position import SEED_LSN, StartOffsetPolicy, resolve_start_position
from .stream import (
    OffsetCommitter,
    ReadResult,
    ReplicationStreamMessage,
    StreamSession,
)

__all__ = [
    "ConfigValidationIssue",
    "FileOffsetStore",
    "INVALID_LSN",
    "InMemoryOffsetStore",
    "LogSequenceNumber",
    "OffsetCommitter",
    "OffsetStore",
    "ReadResult",
    "ReplicationSlot",
    "ReplicationStreamMessage",
    "SEED_LSN",
    "SchemaAndTable",
    "SchemaTableConfig",
    "SchemaTableValidation",
    "SchemaTableValidator",
    "SlotLifecycleManager",
    "StartOffsetPolicy",
    "StreamSession",
    "WalReceiver",
    "int_to_lsn",
    "resolve_start_position",
]
