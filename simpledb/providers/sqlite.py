"""SQLite provider backed by aiosqlite."""

from __future__ import annotations

import logging
import os
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, List, Mapping, Optional, Sequence
from urllib.parse import quote

from ..query.dialect import SQLITE
from ..transfer import codec
from ..utils.drivers import load_driver
from ..utils.errors import ConnectivityError
from .base import (
    DatabaseProvider,
    QueryContext,
    Records,
    UpdateResult,
    normalize_sort,
    normalize_window,
    require_mutation_args,
)
from .identity import identifier_from_primary_key

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


def database_path(conn: str) -> str:
    """Strip an optional ``sqlite://`` scheme from a descriptor."""
    for prefix in ("sqlite:///", "sqlite://"):
        if conn.startswith(prefix):
            return conn[len(prefix) :] or MEMORY
    return conn


def _open_target(path: str, mode: str) -> str:
    """URI opening ``path`` with ``mode`` (ro, rw or rwc)."""
    absolute = os.path.abspath(os.path.expanduser(path))
    return f"file:{quote(absolute)}?mode={mode}"


def rows_to_records(cursor: Any, rows: Sequence[Sequence[Any]]) -> Records:
    if not cursor.description:
        return []
    columns = [d[0] for d in cursor.description]
    return [dict(zip(columns, row)) for row in rows]


class SQLiteProvider(DatabaseProvider):
    """Local SQLite database files.

    Reads open the file read-only, updates open it read-write, and only
    imports may create a missing file.
    """

    engine = "sqlite"
    dialect = SQLITE

    @asynccontextmanager
    async def _connect(self, conn: str, mode: str = "ro") -> AsyncIterator[Any]:
        aiosqlite = load_driver("aiosqlite")
        path = database_path(conn)

        if path == MEMORY or path.startswith("file:"):
            target, uri = path, path.startswith("file:")
        else:
            target, uri = _open_target(path, mode), True

        logger.debug(f"Opening SQLite database {path} (mode={mode})")
        try:
            db = await aiosqlite.connect(
                target, uri=uri, timeout=self.timeout, isolation_level=None
            )
        except sqlite3.Error as e:
            raise ConnectivityError(
                f"{e} ({path})",
                solutions=["Check that the database file exists and is readable"],
                engine=self.engine,
            ) from e

        try:
            yield db
        finally:
            await db.close()

    async def list_tables(self, conn: str) -> List[str]:
        async with self._connect(conn) as db:
            cursor = await db.execute(
                "SELECT name FROM sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            rows = await cursor.fetchall()
        return [row[0] for row in rows]

    async def get_records(
        self, conn: str, table: str, limit: Any = None, offset: Any = None, sort: Any = None
    ) -> Records:
        limit, offset = normalize_window(limit, offset)
        if limit == 0:
            return []

        sql, params = self.dialect.select_page(table, limit, offset, normalize_sort(sort))
        async with self._connect(conn) as db:
            cursor = await db.execute(sql, params)
            rows = await cursor.fetchall()
            return rows_to_records(cursor, rows)

    async def get_record_count(self, conn: str, table: str) -> int:
        async with self._connect(conn) as db:
            cursor = await db.execute(self.dialect.count(table))
            row = await cursor.fetchone()
        return int(row[0]) if row else 0

    async def run_query(
        self, conn: str, query: str, context: Optional[QueryContext] = None
    ) -> Records:
        limit = context.limit if context else None

        async with self._connect(conn, mode="rw") as db:
            try:
                cursor = await db.execute(query)
            except (sqlite3.ProgrammingError, sqlite3.Warning) as e:
                if "one statement at a time" not in str(e):
                    raise
                logger.debug("Running multi-statement SQLite script")
                await db.executescript(query)
                return []

            if not cursor.description:
                return []
            rows = await (cursor.fetchmany(limit) if limit else cursor.fetchall())
            return rows_to_records(cursor, rows)

    async def update_record(
        self, conn: str, table: str, identifier: Mapping[str, Any], updates: Mapping[str, Any]
    ) -> UpdateResult:
        require_mutation_args(identifier, updates)
        sql, params = self.dialect.update(table, updates, identifier)

        async with self._connect(conn, mode="rw") as db:
            cursor = await db.execute(sql, params)
            affected = max(cursor.rowcount, 0)

        logger.info(f"Updated {affected} row(s) in {table}")
        return UpdateResult(success=True, affected_count=affected)

    async def primary_key(self, conn: str, table: str) -> List[str]:
        async with self._connect(conn) as db:
            cursor = await db.execute(f"PRAGMA table_info({self.dialect.quote_identifier(table)})")
            rows = await cursor.fetchall()
        # table_info: cid, name, type, notnull, dflt_value, pk
        keyed = sorted((row[5], row[1]) for row in rows if row[5])
        return [name for _, name in keyed]

    async def resolve_identifier(self, conn: str, table: str, record: Mapping[str, Any]) -> dict:
        primary_key = await self.primary_key(conn, table)
        return identifier_from_primary_key(table, primary_key, record, self.engine)

    async def export_table(
        self,
        conn: str,
        table: str,
        destination: codec.PathLike,
        records: Optional[Sequence[Mapping[str, Any]]] = None,
        fmt: Any = None,
    ) -> str:
        if records is None:
            records = await self.get_records(conn, table)
        return codec.write_export(destination, records, fmt)

    async def import_table(
        self, conn: str, table: str, source: codec.PathLike, fmt: Any = None
    ) -> int:
        records = codec.read_records(source, fmt)
        columns, rows = codec.records_to_rows(records)

        path = database_path(conn)
        if path != MEMORY and not path.startswith("file:"):
            Path(path).expanduser().parent.mkdir(parents=True, exist_ok=True)

        async with self._connect(conn, mode="rwc") as db:
            await db.execute("BEGIN")
            try:
                await db.execute(self.dialect.create_text_table(table, columns))
                await db.executemany(self.dialect.insert(table, columns), rows)
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise

        logger.info(f"Imported {len(rows)} record(s) into {table} from {source}")
        return len(rows)
