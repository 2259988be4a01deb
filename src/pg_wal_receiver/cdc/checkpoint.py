"""Offset stores holding the last committed LSN per slot between runs."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from threading import Lock, RLock
from typing import Dict, Optional, Protocol

from .lsn import LogSequenceNumber, LsnLike

logger = logging.getLogger(__name__)


class OffsetStore(Protocol):
    """Persistence backend for the opaque committed offset of a slot."""

    def load(self, slot_name: str) -> Optional[str]: ...

    def save(self, slot_name: str, lsn: LsnLike) -> None: ...

    def clear(self, slot_name: str) -> None: ...


def _advances(current: Optional[str], candidate: LogSequenceNumber) -> bool:
    if current is None:
        return True
    try:
        return candidate > LogSequenceNumber.parse(current)
    except ValueError:
        logger.warning("stored offset %r is not a valid LSN; replacing it", current)
        return True


class InMemoryOffsetStore:
    """Volatile store keeping slot offsets in-memory."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._offsets: Dict[str, str] = {}

    def load(self, slot_name: str) -> Optional[str]:
        with self._lock:
            return self._offsets.get(slot_name)

    def save(self, slot_name: str, lsn: LsnLike) -> None:
        candidate = LogSequenceNumber.parse(lsn)
        with self._lock:
            if _advances(self._offsets.get(slot_name), candidate):
                self._offsets[slot_name] = str(candidate)

    def clear(self, slot_name: str) -> None:
        with self._lock:
            self._offsets.pop(slot_name, None)


class FileOffsetStore:
    """Durable store that persists slot offsets to a JSON file atomically."""

    def __init__(self, path: Path | str, *, fsync: bool = False) -> None:
        self._path = Path(path)
        self._fsync = fsync
        self._lock = RLock()
        self._offsets: Dict[str, str] = {}
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:  # pragma: no cover - only raised on permission issues
            logger.warning(
                "unable to create offset directory %s: %s",
                self._path.parent,
                exc,
            )
        self._load_from_disk()

    @property
    def path(self) -> Path:
        return self._path

    def load(self, slot_name: str) -> Optional[str]:
        with self._lock:
            return self._offsets.get(slot_name)

    def save(self, slot_name: str, lsn: LsnLike) -> None:
        candidate = LogSequenceNumber.parse(lsn)
        with self._lock:
            if not _advances(self._offsets.get(slot_name), candidate):
                return
            self._offsets[slot_name] = str(candidate)
            self._write_locked()

    def clear(self, slot_name: str) -> None:
        with self._lock:
            if self._offsets.pop(slot_name, None) is None:
                return
            self._write_locked()

    def _load_from_disk(self) -> None:
        if not self._path.exists():
            return
        try:
            raw = self._path.read_text(encoding="utf-8")
            data = json.loads(raw) if raw else {}
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("failed to load offset file %s: %s", self._path, exc)
            return
        if not isinstance(data, dict):
            logger.warning("offset file %s has invalid format; ignoring", self._path)
            return
        with self._lock:
            self._offsets = {
                key: value
                for key, value in data.items()
                if isinstance(key, str) and isinstance(value, str)
            }

    def _write_locked(self) -> None:
        temp_path: Optional[str] = None
        try:
            temp_fd, temp_path = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=str(self._path.parent)
            )
            with os.fdopen(temp_fd, "w", encoding="utf-8") as tmp:
                json.dump(self._offsets, tmp, sort_keys=True)
                tmp.flush()
                if self._fsync:
                    os.fsync(tmp.fileno())
            os.replace(temp_path, self._path)
            temp_path = None
        except OSError as exc:
            logger.error("failed to persist offset file %s: %s", self._path, exc)
            raise
        finally:
            if temp_path is not None:
                try:
                    os.unlink(temp_path)
                except OSError:
                    pass


__all__ = ["FileOffsetStore", "InMemoryOffsetStore", "OffsetStore"]
