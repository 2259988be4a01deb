"""Runtime configuration helpers for the WAL receiver."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigError
from .cdc.schema_tables import SchemaTableConfig
from .cdc.start_position import StartOffsetPolicy

REPLICATION_MODES = ("database", "true")


@dataclass(frozen=True)
class Settings:
    """Immutable container for receiver configuration."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    db_sslmode: str
    db_connect_timeout: int
    slot_name: str
    output_plugin: str
    start_policy: StartOffsetPolicy
    start_lsn: str
    seed_lsn: str
    poll_interval_seconds: int
    min_server_version: str
    replication_mode: str
    schema_tables: Tuple[SchemaTableConfig, ...] = ()
    offset_path: Path = Path("cdc_offsets.json")
    offset_fsync: bool = False
    commit_every: int = 500
    idle_sleep_seconds: float = 0.1


def _as_bool(value: Optional[str], default: bool) -> bool:
    """Convert environment strings to booleans."""
    if value is None:
        return default
    return value.strip().lower() not in {"0", "false", "no"}


def _env_number(name: str, default: str, cast=int):
    raw = os.getenv(name, default)
    try:
        return cast(raw.strip())
    except ValueError as exc:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from exc


def _coerce_policy(value: Optional[str]) -> StartOffsetPolicy:
    if value is None or not value.strip():
        return StartOffsetPolicy.LATEST
    try:
        return StartOffsetPolicy.from_config(value)
    except ValueError as exc:
        raise ConfigError(str(exc)) from exc


def _coerce_replication_mode(value: Optional[str]) -> str:
    if value is None:
        return "database"
    normalized = value.strip().lower()
    if normalized in REPLICATION_MODES:
        return normalized
    raise ConfigError(
        f"unsupported replication mode {value!r}; expected one of {REPLICATION_MODES}"
    )


def parse_schema_tables(value: Optional[str]) -> Tuple[SchemaTableConfig, ...]:
    """Parse ``schema:table[:exclude]`` entries separated by semicolons."""

    if not value:
        return ()
    entries = []
    for raw in value.split(";"):
        if not raw.strip():
            continue
        parts = raw.split(":", 2)
        if len(parts) < 2:
            raise ConfigError(
                f"schema/table entry {raw.strip()!r} must look like schema:table[:exclude]"
            )
        schema, table = parts[0].strip(), parts[1].strip()
        exclude = parts[2].strip() if len(parts) == 3 else ""
        entries.append(
            SchemaTableConfig(schema=schema, table=table, exclude_pattern=exclude)
        )
    return tuple(entries)


def load_settings() -> Settings:
    """Load configuration from the environment (and `.env`)."""
    load_dotenv()
    db_host = os.getenv("PGHOST", "localhost")
    db_port = _env_number("PGPORT", "5432")
    db_name = os.getenv("PGDATABASE", "postgres")
    db_user = os.getenv("PGUSER", "postgres")
    db_password = os.getenv("PGPASSWORD", "")
    db_sslmode = os.getenv("PGSSLMODE", "prefer")
    db_connect_timeout = _env_number("PGCONNECT_TIMEOUT", "10")

    slot_name = os.getenv("CDC_SLOT", "cdc_slot").strip()
    output_plugin = os.getenv("CDC_OUTPUT_PLUGIN", "wal2json").strip()
    start_policy = _coerce_policy(os.getenv("CDC_START_POLICY"))
    start_lsn = os.getenv("CDC_START_LSN", "").strip()
    seed_lsn = os.getenv("CDC_SEED_LSN", "0/1").strip()
    poll_interval_seconds = _env_number("CDC_POLL_INTERVAL_SECONDS", "10")
    min_server_version = os.getenv("CDC_MIN_SERVER_VERSION", "9.4").strip()
    replication_mode = _coerce_replication_mode(os.getenv("CDC_REPLICATION_MODE"))
    schema_tables = parse_schema_tables(os.getenv("CDC_SCHEMA_TABLES"))
    offset_path = Path(os.getenv("CDC_OFFSET_PATH", "cdc_offsets.json"))
    offset_fsync = _as_bool(os.getenv("CDC_OFFSET_FSYNC"), False)
    commit_every = _env_number("CDC_COMMIT_EVERY", "500")
    idle_sleep_seconds = _env_number("CDC_IDLE_SLEEP_SECONDS", "0.1", float)

    if not slot_name:
        raise ConfigError("CDC_SLOT must not be empty")
    if start_policy is StartOffsetPolicy.EXPLICIT_LSN and not start_lsn:
        raise ConfigError("CDC_START_LSN is required when CDC_START_POLICY=explicit_lsn")
    if poll_interval_seconds <= 0:
        raise ConfigError("CDC_POLL_INTERVAL_SECONDS must be positive")

    return Settings(
        db_host=db_host,
        db_port=db_port,
        db_name=db_name,
        db_user=db_user,
        db_password=db_password,
        db_sslmode=db_sslmode,
        db_connect_timeout=db_connect_timeout,
        slot_name=slot_name,
        output_plugin=output_plugin or "wal2json",
        start_policy=start_policy,
        start_lsn=start_lsn,
        seed_lsn=seed_lsn or "0/1",
        poll_interval_seconds=poll_interval_seconds,
        min_server_version=min_server_version,
        replication_mode=replication_mode,
        schema_tables=schema_tables,
        offset_path=offset_path,
        offset_fsync=offset_fsync,
        commit_every=max(1, commit_every),
        idle_sleep_seconds=idle_sleep_seconds,
    )
