"""Resumable PostgreSQL logical replication receiver for CDC pipelines."""

from .cdc import LogSequenceNumber, StartOffsetPolicy, WalReceiver
from .errors import WalReceiverError


def main() -> int:
    """Entrypoint proxy that defers importing the CLI until needed."""

    from .cli import main as _cli_main

    return _cli_main()


__all__ = ["LogSequenceNumber", "StartOffsetPolicy", "WalReceiver", "WalReceiverError", "main"]
