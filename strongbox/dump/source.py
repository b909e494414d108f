"""Table sources for SQL dumps.

A source answers three questions about a database: which tables exist, what
DDL recreates each one, and what rows it holds. The dump serializer only talks
to this interface, so tests can feed it fakes and the controller never manages
connection lifecycle itself.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Iterator, Sequence

from sqlalchemy import MetaData, Table, inspect, select
from sqlalchemy.engine import Engine
from sqlalchemy.schema import CreateTable

logger = logging.getLogger(__name__)

ROW_BATCH_SIZE = 500


class SchemaSource(ABC):
    """Interface every dump source must implement."""

    @property
    @abstractmethod
    def dialect_name(self) -> str:
        """Return the SQL dialect name (e.g. 'mysql', 'sqlite')."""
        ...

    @property
    @abstractmethod
    def database_name(self) -> str:
        """Return a display name for the database being dumped."""
        ...

    @abstractmethod
    def list_tables(self) -> list[str]:
        """Return table names in a stable (alphabetical) order."""
        ...

    @abstractmethod
    def table_ddl(self, table: str) -> str:
        """Return the CREATE TABLE statement for *table*, without a trailing semicolon."""
        ...

    @abstractmethod
    def column_names(self, table: str) -> list[str]:
        ...

    @abstractmethod
    def iter_rows(self, table: str) -> Iterator[Sequence[Any]]:
        """Yield rows of *table* in primary-key order, values aligned with column_names()."""
        ...

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        ...


class SQLAlchemySource(SchemaSource):
    """Dump source backed by a SQLAlchemy engine and runtime reflection."""

    def __init__(self, engine: Engine, include_tables: Sequence[str] | None = None) -> None:
        self._engine = engine
        self._include = set(include_tables or ())
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @property
    def database_name(self) -> str:
        url = self._engine.url
        if url.database:
            # SQLite URLs carry a file path; the basename reads better in headers
            return url.database.replace("\\", "/").rsplit("/", 1)[-1]
        return "database"

    def list_tables(self) -> list[str]:
        names = sorted(inspect(self._engine).get_table_names())
        if self._include:
            names = [n for n in names if n in self._include]
        return names

    def _table(self, name: str) -> Table:
        if name not in self._tables:
            self._tables[name] = Table(name, self._metadata, autoload_with=self._engine)
        return self._tables[name]

    def table_ddl(self, table: str) -> str:
        if self.dialect_name in ("mysql", "mariadb"):
            # Native DDL keeps engine, charset and index options intact
            with self._engine.connect() as conn:
                row = conn.exec_driver_sql(
                    f"SHOW CREATE TABLE {self.quote_identifier(table)}"
                ).fetchone()
            return row[1]
        ddl = CreateTable(self._table(table)).compile(dialect=self._engine.dialect)
        return str(ddl).strip()

    def column_names(self, table: str) -> list[str]:
        return [c.name for c in self._table(table).columns]

    def iter_rows(self, table: str) -> Iterator[Sequence[Any]]:
        tbl = self._table(table)
        order_by = list(tbl.primary_key.columns) or list(tbl.columns)
        stmt = select(*tbl.columns).order_by(*order_by)
        with self._engine.connect() as conn:
            result = conn.execution_options(stream_results=True).execute(stmt)
            for partition in result.partitions(ROW_BATCH_SIZE):
                for row in partition:
                    yield tuple(row)

    def quote_identifier(self, name: str) -> str:
        return self._engine.dialect.identifier_preparer.quote_identifier(name)
