"""Exception hierarchy raised by the WAL receiver."""

from __future__ import annotations

from typing import Optional


class WalReceiverError(Exception):
    """Base class for receiver failures; always tied to a slot name."""

    def __init__(self, message: str, *, slot_name: Optional[str] = None) -> None:
        if slot_name:
            message = f"{message} (slot={slot_name})"
        super().__init__(message)
        self.slot_name = slot_name


class ConfigError(WalReceiverError):
    """Raised when runtime settings are invalid."""


class DatabaseConnectionError(WalReceiverError):
    """Raised when a control or replication connection cannot be established."""


class SlotMetadataQueryError(WalReceiverError):
    """Raised when `pg_replication_slots` cannot be queried."""


class SlotCreationError(WalReceiverError):
    """Raised when the slot creation procedure fails."""


class SlotCreationMismatchError(SlotCreationError):
    """Raised when the server echoes a slot name other than the requested one."""


class SlotDropError(WalReceiverError):
    """Raised when terminating the holder or dropping the slot fails."""


class SlotDropTimeoutError(WalReceiverError):
    """Raised when an active slot does not deactivate before the drop deadline."""


class StreamStartError(WalReceiverError):
    """Raised when the logical stream cannot be started."""


class StreamReadError(WalReceiverError):
    """Raised on protocol or connection failures while draining the stream."""


class StreamSessionStateError(WalReceiverError):
    """Raised when a session is used before open, or reopened after close."""


class CommitError(WalReceiverError):
    """Raised when the standby status update cannot be sent."""


__all__ = [
    "CommitError",
    "ConfigError",
    "DatabaseConnectionError",
    "SlotCreationError",
    "SlotCreationMismatchError",
    "SlotDropError",
    "SlotDropTimeoutError",
    "SlotMetadataQueryError",
    "StreamReadError",
    "StreamSessionStateError",
    "StreamStartError",
    "WalReceiverError",
]
