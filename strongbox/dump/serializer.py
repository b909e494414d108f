"""SQL dump serializer — renders a SchemaSource as a stream of SQL text chunks."""

from __future__ import annotations

import math
from datetime import date, datetime, time, timezone
from decimal import Decimal
from typing import Any, Iterator

from .source import SchemaSource

KIND_FULL = "full"
KIND_STRUCTURE = "structure"
BACKUP_KINDS = (KIND_FULL, KIND_STRUCTURE)

_MYSQL_DIALECTS = ("mysql", "mariadb")


def sql_literal(value: Any, dialect_name: str = "sqlite") -> str:
    """Render a Python value as a SQL literal for an INSERT statement."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            return "NULL"
        return repr(value)
    if isinstance(value, Decimal):
        return "NULL" if not value.is_finite() else str(value)
    if isinstance(value, datetime):
        return _quote(value.isoformat(sep=" "), dialect_name)
    if isinstance(value, (date, time)):
        return _quote(value.isoformat(), dialect_name)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return f"X'{bytes(value).hex()}'"
    return _quote(str(value), dialect_name)


def _quote(text: str, dialect_name: str) -> str:
    if dialect_name in _MYSQL_DIALECTS:
        # MySQL treats backslash as an escape character inside string literals
        text = text.replace("\\", "\\\\")
    return "'" + text.replace("'", "''") + "'"


def _fk_toggle(dialect_name: str, enabled: bool) -> str:
    if dialect_name in _MYSQL_DIALECTS:
        return f"SET FOREIGN_KEY_CHECKS={1 if enabled else 0};\n"
    if dialect_name == "sqlite":
        return f"PRAGMA foreign_keys={'ON' if enabled else 'OFF'};\n"
    return ""


class DumpWriter:
    """Streams a dump of *tables* from *source*.

    ``tables`` is resolved once by the caller so the reported table count and
    the dump content always agree.
    """

    def __init__(
        self,
        source: SchemaSource,
        tables: list[str],
        kind: str = KIND_FULL,
        generated_at: datetime | None = None,
    ) -> None:
        if kind not in BACKUP_KINDS:
            raise ValueError(f"Unknown backup kind '{kind}'. Expected one of {BACKUP_KINDS}")
        self.source = source
        self.tables = tables
        self.kind = kind
        self.generated_at = generated_at or datetime.now(timezone.utc)
        self.rows_written = 0

    def chunks(self) -> Iterator[str]:
        """Yield the dump as SQL text, one statement group at a time."""
        dialect = self.source.dialect_name
        title = "Database Backup" if self.kind == KIND_FULL else "Database Structure Backup"
        yield (
            f"-- {title}\n"
            f"-- Generated: {self.generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC\n"
            f"-- Database: {self.source.database_name}\n"
            f"-- Dialect: {dialect}\n"
            f"-- Tables: {len(self.tables)}\n\n"
        )
        if self.kind == KIND_FULL:
            yield _fk_toggle(dialect, enabled=False) + "\n"

        for table in self.tables:
            yield from self._table_chunks(table)

        if self.kind == KIND_FULL:
            yield _fk_toggle(dialect, enabled=True)

    def _table_chunks(self, table: str) -> Iterator[str]:
        quoted = self.source.quote_identifier(table)
        label = "Table" if self.kind == KIND_FULL else "Table structure"
        yield (
            f"-- {label}: {table}\n"
            f"DROP TABLE IF EXISTS {quoted};\n"
            f"{self.source.table_ddl(table)};\n\n"
        )
        if self.kind != KIND_FULL:
            return

        dialect = self.source.dialect_name
        columns = ", ".join(self.source.quote_identifier(c) for c in self.source.column_names(table))
        prefix = f"INSERT INTO {quoted} ({columns}) VALUES ("
        for row in self.source.iter_rows(table):
            values = ", ".join(sql_literal(v, dialect) for v in row)
            self.rows_written += 1
            yield f"{prefix}{values});\n"
        yield "\n"
