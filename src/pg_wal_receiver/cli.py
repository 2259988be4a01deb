"""Command line interface for slot administration and stream draining."""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import Callable, Optional, TextIO

from .cdc.checkpoint import FileOffsetStore, OffsetStore
from .cdc.lsn import LogSequenceNumber
from .cdc.receiver import WalReceiver
from .cdc.slots import DROP_TIMEOUT_SECONDS, SlotLifecycleManager
from .config import Settings, load_settings
from .errors import WalReceiverError

logger = logging.getLogger(__name__)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="PostgreSQL logical replication receiver")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("slot-info", help="Print the replication slot metadata")
    subparsers.add_parser(
        "create-slot", help="Create the replication slot if it does not exist"
    )

    drop_parser = subparsers.add_parser(
        "drop-slot", help="Terminate the slot holder (if any) and drop the slot"
    )
    drop_parser.add_argument(
        "--timeout",
        type=float,
        default=DROP_TIMEOUT_SECONDS,
        help="Seconds to wait for an active slot to deactivate",
    )

    subparsers.add_parser(
        "validate-tables", help="Resolve CDC_SCHEMA_TABLES against the catalog"
    )

    stream_parser = subparsers.add_parser(
        "stream", help="Drain the logical stream to stdout, committing offsets"
    )
    stream_parser.add_argument(
        "--max-messages",
        type=int,
        default=None,
        help="Stop after this many messages",
    )
    stream_parser.add_argument(
        "--commit-every",
        type=int,
        default=None,
        help="Messages between offset commits (defaults to CDC_COMMIT_EVERY)",
    )
    return parser


def _configure_logging(verbose: bool) -> None:
    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="%(asctime)s %(levelname)s %(name)s - %(message)s",
        )


def _commit(receiver: WalReceiver, store: OffsetStore) -> LogSequenceNumber:
    lsn = receiver.commit_current_offset()
    store.save(receiver.slot_name, lsn)
    return lsn


def drain(
    receiver: WalReceiver,
    store: OffsetStore,
    *,
    out: TextIO,
    max_messages: Optional[int] = None,
    commit_every: int = 500,
    commit_interval_seconds: float = 10.0,
    idle_sleep_seconds: float = 0.1,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """Poll the receiver until the budget is spent or the user interrupts.

    Offsets are committed every `commit_every` messages, when
    `commit_interval_seconds` have passed and the position moved (by messages
    or server keepalives), and once more on the way out.
    """

    processed = 0
    pending = 0
    last_commit = clock()
    committed = receiver.current_position()
    try:
        while max_messages is None or processed < max_messages:
            result = receiver.read_non_blocking()
            if result.has_data:
                out.write(result.message.data.decode("utf-8", errors="replace"))
                out.write("\n")
                processed += 1
                pending += 1
            else:
                sleep(idle_sleep_seconds)
            if pending >= commit_every or (
                clock() - last_commit >= commit_interval_seconds
                and (pending or receiver.current_position() > committed)
            ):
                committed = _commit(receiver, store)
                pending = 0
                last_commit = clock()
    except KeyboardInterrupt:
        logger.info("shutdown requested (KeyboardInterrupt)")
    if pending or receiver.current_position() > committed:
        _commit(receiver, store)
    out.flush()
    return processed


def _cmd_slot_info(receiver: WalReceiver, settings: Settings, args) -> int:
    slot = receiver.slot_info()
    print(
        json.dumps(
            {
                "name": slot.name,
                "exists": slot.exists,
                "plugin": slot.plugin,
                "slot_type": slot.slot_type,
                "active": slot.active,
                "active_pid": slot.active_pid,
                "restart_lsn": str(slot.restart_lsn) if slot.restart_lsn else None,
                "confirmed_flush_lsn": (
                    str(slot.confirmed_flush_lsn) if slot.confirmed_flush_lsn else None
                ),
            },
            indent=2,
        )
    )
    return 0


def _cmd_create_slot(receiver: WalReceiver, settings: Settings, args) -> int:
    if receiver.slots.exists(settings.slot_name):
        print(f"Replication slot {settings.slot_name} already exists")
        return 0
    receiver.slots.create(settings.slot_name, settings.output_plugin)
    print(f"Created replication slot {settings.slot_name} ({settings.output_plugin})")
    return 0


def _cmd_drop_slot(receiver: WalReceiver, settings: Settings, args) -> int:
    slots = SlotLifecycleManager(
        receiver.connections,
        drop_timeout_seconds=args.timeout,
    )
    if not slots.exists(settings.slot_name):
        print(f"Replication slot {settings.slot_name} does not exist")
        return 0
    slots.drop(settings.slot_name)
    print(f"Dropped replication slot {settings.slot_name}")
    return 0


def _cmd_validate_tables(receiver: WalReceiver, settings: Settings, args) -> int:
    issues = receiver.validate_schema_and_tables()
    for table in receiver.schemas_and_tables:
        print(table)
    for issue in issues:
        print(
            f"ISSUE {issue.entry.schema}:{issue.entry.table}: {issue.message}",
            file=sys.stderr,
        )
    return 1 if issues else 0


def _cmd_stream(receiver: WalReceiver, settings: Settings, args) -> int:
    store = FileOffsetStore(settings.offset_path, fsync=settings.offset_fsync)
    start_offset = store.load(settings.slot_name)
    position = receiver.create_replication_stream(start_offset)
    logger.info(
        "streaming slot %s from %s (persisted offset %s)",
        settings.slot_name,
        position,
        start_offset,
    )
    try:
        processed = drain(
            receiver,
            store,
            out=sys.stdout,
            max_messages=args.max_messages,
            commit_every=args.commit_every or settings.commit_every,
            commit_interval_seconds=float(settings.poll_interval_seconds),
            idle_sleep_seconds=settings.idle_sleep_seconds,
        )
    finally:
        receiver.close()
    logger.info("drained %d messages; offset %s", processed, store.load(settings.slot_name))
    return 0


_COMMANDS = {
    "slot-info": _cmd_slot_info,
    "create-slot": _cmd_create_slot,
    "drop-slot": _cmd_drop_slot,
    "validate-tables": _cmd_validate_tables,
    "stream": _cmd_stream,
}


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    try:
        settings = load_settings()
        receiver = WalReceiver.from_settings(settings)
        return _COMMANDS[args.command](receiver, settings, args)
    except WalReceiverError as exc:
        logger.error("%s failed: %s", args.command, exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
