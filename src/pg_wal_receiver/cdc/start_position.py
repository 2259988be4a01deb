"""Resume-position policies for newly created replication slots."""

from __future__ import annotations

import enum
import logging
from typing import Optional

from .lsn import INVALID_LSN, LogSequenceNumber, LsnLike

logger = logging.getLogger(__name__)

SEED_LSN = "0/1"


class StartOffsetPolicy(enum.Enum):
    LATEST = "latest"
    EXPLICIT_LSN = "explicit_lsn"
    DATE_SEEDED = "date_seeded"

    @classmethod
    def from_config(cls, value: str) -> "StartOffsetPolicy":
        normalized = value.strip().lower().replace("-", "_")
        aliases = {"lsn": cls.EXPLICIT_LSN, "date": cls.DATE_SEEDED}
        if normalized in aliases:
            return aliases[normalized]
        for policy in cls:
            if policy.value == normalized:
                return policy
        raise ValueError(f"unknown start offset policy {value!r}")


def resolve_start_position(
    policy: StartOffsetPolicy,
    persisted_offset: Optional[LsnLike],
    confirmed_flush_lsn: Optional[LsnLike],
    *,
    configured_lsn: Optional[LsnLike] = None,
    seed_lsn: LsnLike = SEED_LSN,
) -> LogSequenceNumber:
    """Pick the LSN a freshly created slot should start streaming from.

    Only meaningful for new slots; an existing slot resumes from its own
    server-side position. Absent inputs resolve to ``0/0``, which tells the
    server to use the slot's own position.
    """

    persisted = LogSequenceNumber.parse_optional(persisted_offset)
    confirmed = LogSequenceNumber.parse_optional(confirmed_flush_lsn)

    if policy is StartOffsetPolicy.LATEST:
        if persisted is None:
            return confirmed or INVALID_LSN
        if confirmed is None:
            return persisted
        if persisted < confirmed:
            logger.debug(
                "persisted offset %s is behind confirmed flush %s; using the latter",
                persisted,
                confirmed,
            )
        return max(persisted, confirmed)

    if policy is StartOffsetPolicy.EXPLICIT_LSN:
        if persisted is not None:
            return persisted
        return LogSequenceNumber.parse_optional(configured_lsn) or INVALID_LSN

    if policy is StartOffsetPolicy.DATE_SEEDED:
        if persisted is not None:
            return persisted
        return LogSequenceNumber.parse_optional(seed_lsn) or INVALID_LSN

    raise ValueError(f"unsupported start offset policy: {policy!r}")


__all__ = ["SEED_LSN", "StartOffsetPolicy", "resolve_start_position"]
