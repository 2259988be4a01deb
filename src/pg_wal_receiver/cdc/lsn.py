"""Log sequence number parsing and formatting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Union

_MAX_LSN = (1 << 64) - 1

LsnLike = Union["LogSequenceNumber", int, str]


@dataclass(frozen=True, order=True)
class LogSequenceNumber:
    """A position in the WAL byte stream.

    Accepts the server's ``X/Y`` text form (two hexadecimal halves) as well as
    plain decimal integers, which is how offset stores commonly persist them.
    """

    value: int

    def __post_init__(self) -> None:
        if not 0 <= self.value <= _MAX_LSN:
            raise ValueError(f"LSN out of range: {self.value}")

    @classmethod
    def parse(cls, raw: LsnLike) -> "LogSequenceNumber":
        if isinstance(raw, LogSequenceNumber):
            return raw
        if isinstance(raw, bool):
            raise ValueError(f"invalid LSN: {raw!r}")
        if isinstance(raw, int):
            return cls(raw)
        text = str(raw).strip()
        if "/" in text:
            upper, _, lower = text.partition("/")
            try:
                high = int(upper, 16)
                low = int(lower, 16)
            except ValueError as exc:
                raise ValueError(f"invalid LSN: {raw!r}") from exc
            if high > 0xFFFFFFFF or low > 0xFFFFFFFF or high < 0 or low < 0:
                raise ValueError(f"invalid LSN: {raw!r}")
            return cls((high << 32) | low)
        if not text.isdigit():
            raise ValueError(f"invalid LSN: {raw!r}")
        return cls(int(text))

    @classmethod
    def parse_optional(
        cls, raw: Optional[LsnLike]
    ) -> Optional["LogSequenceNumber"]:
        if raw is None:
            return None
        if isinstance(raw, str) and not raw.strip():
            return None
        return cls.parse(raw)

    @property
    def is_valid(self) -> bool:
        return self.value != 0

    def __str__(self) -> str:
        return f"{self.value >> 32:X}/{self.value & 0xFFFFFFFF:X}"

    def __int__(self) -> int:
        return self.value


INVALID_LSN = LogSequenceNumber(0)


def int_to_lsn(value: int) -> str:
    return str(LogSequenceNumber(value))


__all__ = ["INVALID_LSN", "LogSequenceNumber", "LsnLike", "int_to_lsn"]
