"""Resolution of configured schema/table patterns into a concrete allow-list."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List, Optional, Pattern

from ..db import Error

if TYPE_CHECKING:  # pragma: no cover - import-time helper only
    from ..db.connections import ConnectionManager

logger = logging.getLogger(__name__)

SELECT_TABLES = """
    SELECT table_schema, table_name
      FROM information_schema.tables
     WHERE table_schema LIKE %s
       AND table_name LIKE %s
       AND table_type IN ('BASE TABLE', 'VIEW')
     ORDER BY table_schema, table_name
"""


@dataclass(frozen=True)
class SchemaTableConfig:
    """One configured schema/table pattern pair with an optional exclude regex."""

    schema: str = ""
    table: str = ""
    exclude_pattern: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.schema and not self.table


@dataclass(frozen=True)
class SchemaAndTable:
    schema: str
    table: str

    def __str__(self) -> str:
        return f"{self.schema}.{self.table}"


@dataclass(frozen=True)
class ConfigValidationIssue:
    """A pattern entry that could not be resolved."""

    entry: SchemaTableConfig
    message: str


@dataclass
class SchemaTableValidation:
    tables: List[SchemaAndTable] = field(default_factory=list)
    issues: List[ConfigValidationIssue] = field(default_factory=list)


class SchemaTableValidator:
    """Looks up catalog tables matching each configured entry.

    Entries with both patterns empty are skipped, since they would match
    every table. A failing entry is reported as an issue and does not stop
    the remaining entries from resolving.
    """

    def __init__(self, connections: "ConnectionManager") -> None:
        self._connections = connections

    def validate(self, entries: Iterable[SchemaTableConfig]) -> SchemaTableValidation:
        validation = SchemaTableValidation()
        seen = set()
        with self._connections.control_connection() as conn:
            for entry in entries:
                if entry.is_empty:
                    continue
                try:
                    exclude = _compile_exclude(entry.exclude_pattern)
                except re.error as exc:
                    validation.issues.append(
                        ConfigValidationIssue(
                            entry, f"invalid exclude pattern {entry.exclude_pattern!r}: {exc}"
                        )
                    )
                    continue
                try:
                    rows = conn.execute(
                        SELECT_TABLES, (entry.schema or "%", entry.table or "%")
                    ).fetchall()
                except Error as exc:
                    logger.warning(
                        "table metadata lookup failed for %s.%s: %s",
                        entry.schema,
                        entry.table,
                        exc,
                    )
                    validation.issues.append(
                        ConfigValidationIssue(
                            entry, f"unable to read table metadata: {exc}"
                        )
                    )
                    continue
                for schema_name, table_name in rows:
                    if exclude is not None and exclude.fullmatch(table_name):
                        continue
                    resolved = SchemaAndTable(schema_name.strip(), table_name.strip())
                    if resolved in seen:
                        continue
                    seen.add(resolved)
                    validation.tables.append(resolved)
        logger.debug(
            "resolved %d tables with %d issues",
            len(validation.tables),
            len(validation.issues),
        )
        return validation


def _compile_exclude(pattern: str) -> Optional[Pattern[str]]:
    if not pattern:
        return None
    return re.compile(pattern)


__all__ = [
    "ConfigValidationIssue",
    "SchemaAndTable",
    "SchemaTableConfig",
    "SchemaTableValidation",
    "SchemaTableValidator",
]
