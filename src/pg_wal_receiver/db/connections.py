"""Control and replication connection management."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator, Optional

from psycopg2.extensions import make_dsn

from ..errors import ConfigError, DatabaseConnectionError
from . import REPLICATION_CONNECTIONS, Connection, Error, connect

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from ..config import Settings

logger = logging.getLogger(__name__)


def server_version_number(version: str) -> int:
    """Translate ``"9.4"`` / ``"10"`` style versions to ``server_version_num``."""

    parts = version.strip().split(".")
    try:
        numbers = [int(part) for part in parts if part]
    except ValueError as exc:
        raise ConfigError(f"invalid server version {version!r}") from exc
    if not numbers:
        raise ConfigError(f"invalid server version {version!r}")
    major = numbers[0]
    minor = numbers[1] if len(numbers) > 1 else 0
    if major >= 10:
        return major * 10000 + minor
    patch = numbers[2] if len(numbers) > 2 else 0
    return major * 10000 + minor * 100 + patch


class ConnectionManager:
    """Owns credentials and opens the two connection roles.

    The control connection is short-lived and used for catalog and slot
    metadata; the replication connection is protocol-flagged and held by a
    stream session for its whole life.
    """

    def __init__(
        self,
        *,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        sslmode: str = "prefer",
        connect_timeout: int = 10,
        replication_mode: str = "database",
        min_server_version: str = "9.4",
        slot_name: Optional[str] = None,
    ) -> None:
        if replication_mode not in REPLICATION_CONNECTIONS:
            raise ConfigError(f"unsupported replication mode {replication_mode!r}")
        self._conn_kwargs = {
            "host": host,
            "port": port,
            "dbname": database,
            "user": user,
            "password": password,
            "sslmode": sslmode,
            "connect_timeout": int(connect_timeout),
        }
        self._replication_mode = replication_mode
        self._min_server_version = server_version_number(min_server_version)
        self._slot_name = slot_name

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ConnectionManager":
        return cls(
            host=settings.db_host,
            port=settings.db_port,
            database=settings.db_name,
            user=settings.db_user,
            password=settings.db_password,
            sslmode=settings.db_sslmode,
            connect_timeout=settings.db_connect_timeout,
            replication_mode=settings.replication_mode,
            min_server_version=settings.min_server_version,
            slot_name=settings.slot_name,
        )

    @property
    def replication_mode(self) -> str:
        return self._replication_mode

    @property
    def min_server_version(self) -> int:
        return self._min_server_version

    def replication_dsn(self) -> str:
        return make_dsn(**self._conn_kwargs)

    @contextmanager
    def control_connection(self) -> Iterator[Connection]:
        """Yield an autocommit connection that is closed on every exit path."""

        try:
            conn = connect(**self._conn_kwargs)
        except Error as exc:
            raise DatabaseConnectionError(
                f"unable to open control connection to {self._describe()}: {exc}",
                slot_name=self._slot_name,
            ) from exc
        conn.autocommit = True
        try:
            yield conn
        finally:
            conn.close()

    def replication_connection(self):
        """Open a replication connection; the caller owns closing it."""

        factory = REPLICATION_CONNECTIONS[self._replication_mode]
        try:
            conn = factory.connect(self.replication_dsn())
        except Error as exc:
            raise DatabaseConnectionError(
                f"unable to open replication connection to {self._describe()}: {exc}",
                slot_name=self._slot_name,
            ) from exc
        server_version = getattr(conn, "server_version", 0) or 0
        if server_version < self._min_server_version:
            conn.close()
            raise DatabaseConnectionError(
                f"server version {server_version} is below the required minimum "
                f"{self._min_server_version}",
                slot_name=self._slot_name,
            )
        logger.debug(
            "replication connection open (mode=%s, server_version=%s)",
            self._replication_mode,
            server_version,
        )
        return conn

    def _describe(self) -> str:
        return "{host}:{port}/{dbname} as {user}".format(**self._conn_kwargs)


__all__ = ["ConnectionManager", "server_version_number"]
