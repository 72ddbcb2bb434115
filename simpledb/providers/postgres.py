"""PostgreSQL provider backed by asyncpg."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Mapping, Optional, Sequence

from ..query.dialect import POSTGRESQL
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
    sanitize_connection_string,
)
from .identity import identifier_from_primary_key

logger = logging.getLogger(__name__)

PRIMARY_KEY_SQL = """
SELECT a.attname
FROM pg_index i
JOIN pg_attribute a ON a.attrelid = i.indrelid AND a.attnum = ANY(i.indkey)
WHERE i.indrelid = $1::regclass AND i.indisprimary
ORDER BY a.attnum
"""

TABLES_SQL = """
SELECT table_name
FROM information_schema.tables
WHERE table_schema = 'public' AND table_type = 'BASE TABLE'
ORDER BY table_name
"""


def parse_status_count(status: str) -> int:
    """Row count from a command tag such as ``UPDATE 5`` or ``INSERT 0 3``."""
    try:
        return int(status.split()[-1])
    except (ValueError, IndexError, AttributeError):
        return 0


class PostgreSQLProvider(DatabaseProvider):
    """PostgreSQL databases in the ``public`` schema.

    Parameters are sent with asyncpg's typed protocol, so update values must
    already have the column's Python type (``int`` for integer columns).
    """

    engine = "postgresql"
    dialect = POSTGRESQL

    @asynccontextmanager
    async def _connect(self, conn: str) -> AsyncIterator[Any]:
        asyncpg = load_driver("asyncpg")

        logger.debug(f"Connecting to PostgreSQL: {sanitize_connection_string(conn)}")
        try:
            db = await asyncpg.connect(dsn=conn, timeout=self.timeout, command_timeout=self.timeout)
        except (OSError, asyncio.TimeoutError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise ConnectivityError(
                str(e) or type(e).__name__,
                solutions=["Check host, port, credentials and that the server is running"],
                engine=self.engine,
            ) from e

        try:
            yield db
        finally:
            await db.close()

    async def list_tables(self, conn: str) -> List[str]:
        async with self._connect(conn) as db:
            rows = await db.fetch(TABLES_SQL)
        return [row["table_name"] for row in rows]

    async def get_records(
        self, conn: str, table: str, limit: Any = None, offset: Any = None, sort: Any = None
    ) -> Records:
        limit, offset = normalize_window(limit, offset)
        if limit == 0:
            return []

        sql, params = self.dialect.select_page(table, limit, offset, normalize_sort(sort))
        async with self._connect(conn) as db:
            rows = await db.fetch(sql, *params)
        return [dict(row) for row in rows]

    async def get_record_count(self, conn: str, table: str) -> int:
        async with self._connect(conn) as db:
            count = await db.fetchval(self.dialect.count(table))
        return int(count or 0)

    async def run_query(
        self, conn: str, query: str, context: Optional[QueryContext] = None
    ) -> Records:
        asyncpg = load_driver("asyncpg")
        limit = context.limit if context else None

        async with self._connect(conn) as db:
            try:
                rows = await db.fetch(query)
            except asyncpg.PostgresSyntaxError as e:
                if "multiple commands" not in str(e):
                    raise
                # Simple query protocol accepts several statements but returns no rows
                status = await db.execute(query)
                logger.debug(f"Multi-statement query finished: {status}")
                return []

        records = [dict(row) for row in rows]
        return records[:limit] if limit else records

    async def update_record(
        self, conn: str, table: str, identifier: Mapping[str, Any], updates: Mapping[str, Any]
    ) -> UpdateResult:
        require_mutation_args(identifier, updates)
        sql, params = self.dialect.update(table, updates, identifier)

        async with self._connect(conn) as db:
            status = await db.execute(sql, *params)

        affected = parse_status_count(status)
        logger.info(f"Updated {affected} row(s) in {table}")
        return UpdateResult(success=True, affected_count=affected)

    async def primary_key(self, conn: str, table: str) -> List[str]:
        async with self._connect(conn) as db:
            rows = await db.fetch(PRIMARY_KEY_SQL, self.dialect.quote_identifier(table))
        return [row["attname"] for row in rows]

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

        async with self._connect(conn) as db:
            async with db.transaction():
                await db.execute(self.dialect.create_text_table(table, columns))
                await db.executemany(self.dialect.insert(table, columns), rows)

        logger.info(f"Imported {len(rows)} record(s) into {table} from {source}")
        return len(rows)
