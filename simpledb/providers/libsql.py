"""LibSQL / Turso provider backed by libsql-client."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, List, Mapping, Optional, Sequence, Tuple, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from ..query.dialect import LIBSQL
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

T = TypeVar("T")


def split_auth_token(conn: str) -> Tuple[str, Optional[str]]:
    """Separate an ``authToken`` query parameter from a LibSQL URL."""
    parts = urlsplit(conn)
    if not parts.query:
        return conn, None

    token = None
    kept = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == "authToken":
            token = value or None
        else:
            kept.append((key, value))

    url = urlunsplit(parts._replace(query=urlencode(kept)))
    return url, token


def result_to_records(result: Any) -> Records:
    columns = list(result.columns)
    return [dict(zip(columns, row)) for row in result.rows]


class LibSQLProvider(DatabaseProvider):
    """Remote (libsql://, https://, wss://) or local (file:) LibSQL databases."""

    engine = "libsql"
    dialect = LIBSQL

    async def _call(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.timeout)

    @asynccontextmanager
    async def _connect(self, conn: str) -> AsyncIterator[Any]:
        libsql_client = load_driver("libsql_client")
        url, auth_token = split_auth_token(conn)

        logger.debug(f"Opening LibSQL client for {sanitize_connection_string(conn)}")
        try:
            client = libsql_client.create_client(url, auth_token=auth_token)
        except (libsql_client.LibsqlError, ValueError) as e:
            raise ConnectivityError(str(e), engine=self.engine) from e

        try:
            yield client
        finally:
            await client.close()

    async def list_tables(self, conn: str) -> List[str]:
        async with self._connect(conn) as client:
            result = await self._call(
                client.execute(
                    "SELECT name FROM sqlite_master "
                    "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
                )
            )
        return [row[0] for row in result.rows]

    async def get_records(
        self, conn: str, table: str, limit: Any = None, offset: Any = None, sort: Any = None
    ) -> Records:
        limit, offset = normalize_window(limit, offset)
        if limit == 0:
            return []

        sql, params = self.dialect.select_page(table, limit, offset, normalize_sort(sort))
        async with self._connect(conn) as client:
            result = await self._call(client.execute(sql, params))
        return result_to_records(result)

    async def get_record_count(self, conn: str, table: str) -> int:
        async with self._connect(conn) as client:
            result = await self._call(client.execute(self.dialect.count(table)))
        return int(result.rows[0][0]) if result.rows else 0

    async def run_query(
        self, conn: str, query: str, context: Optional[QueryContext] = None
    ) -> Records:
        libsql_client = load_driver("libsql_client")
        limit = context.limit if context else None

        async with self._connect(conn) as client:
            try:
                result = await self._call(client.execute(query))
            except libsql_client.LibsqlError as e:
                message = str(e).lower()
                if "multiple" not in message and "one statement" not in message:
                    raise
                logger.debug("Running multi-statement LibSQL script")
                await self._call(client.sequence(query))
                return []

        records = result_to_records(result)
        return records[:limit] if limit else records

    async def update_record(
        self, conn: str, table: str, identifier: Mapping[str, Any], updates: Mapping[str, Any]
    ) -> UpdateResult:
        require_mutation_args(identifier, updates)
        sql, params = self.dialect.update(table, updates, identifier)

        async with self._connect(conn) as client:
            result = await self._call(client.execute(sql, params))

        affected = int(result.rows_affected or 0)
        logger.info(f"Updated {affected} row(s) in {table}")
        return UpdateResult(success=True, affected_count=affected)

    async def primary_key(self, conn: str, table: str) -> List[str]:
        async with self._connect(conn) as client:
            result = await self._call(
                client.execute(f"PRAGMA table_info({self.dialect.quote_identifier(table)})")
            )
        keyed = sorted((row[5], row[1]) for row in result.rows if row[5])
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
        libsql_client = load_driver("libsql_client")
        records = codec.read_records(source, fmt)
        columns, rows = codec.records_to_rows(records)

        insert = self.dialect.insert(table, columns)
        statements = [libsql_client.Statement(self.dialect.create_text_table(table, columns))]
        statements.extend(libsql_client.Statement(insert, row) for row in rows)

        # batch() runs every statement in one transaction
        async with self._connect(conn) as client:
            await self._call(client.batch(statements))

        logger.info(f"Imported {len(rows)} record(s) into {table} from {source}")
        return len(rows)
