"""MongoDB provider backed by pymongo's asyncio client."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence

from ..config.settings import Settings
from ..query.mongo_shell import parse_mongo_query
from ..transfer import codec
from ..utils.drivers import load_driver
from ..utils.errors import ConfigurationError, ConnectivityError, OperationNotSupportedError
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
from .identity import identifier_from_field

logger = logging.getLogger(__name__)


def coerce_object_id_filter(identifier: Mapping[str, Any]) -> Dict[str, Any]:
    """Match an ``_id`` given as hex text against both string and ObjectId ids."""
    bson = load_driver("bson")
    query = dict(identifier)
    raw = query.get("_id")
    if isinstance(raw, str) and bson.ObjectId.is_valid(raw):
        query["_id"] = {"$in": [raw, bson.ObjectId(raw)]}
    return query


class MongoDBProvider(DatabaseProvider):
    """MongoDB deployments addressed by ``mongodb://`` or ``mongodb+srv://`` URIs.

    The database comes from the URI path, falling back to
    ``SIMPLEDB_MONGO_DEFAULT_DB``. Collections play the role of tables.
    """

    engine = "mongodb"
    supports_import = False

    @asynccontextmanager
    async def _connect(self, conn: str) -> AsyncIterator[Any]:
        pymongo = load_driver("pymongo")
        errors = load_driver("pymongo.errors")

        logger.debug(f"Connecting to MongoDB: {sanitize_connection_string(conn)}")
        try:
            client = pymongo.AsyncMongoClient(
                conn,
                serverSelectionTimeoutMS=int(self.timeout * 1000),
                connectTimeoutMS=int(self.timeout * 1000),
            )
        except (errors.ConfigurationError, errors.InvalidURI) as e:
            raise ConfigurationError(str(e), engine=self.engine) from e

        try:
            yield client.get_default_database(default=Settings.SIMPLEDB_MONGO_DEFAULT_DB)
        except errors.ConnectionFailure as e:
            # the client connects lazily, so server selection fails on first use
            raise ConnectivityError(
                str(e),
                solutions=["Check the MongoDB URI and that the server is reachable"],
                engine=self.engine,
            ) from e
        finally:
            await client.close()

    async def list_tables(self, conn: str) -> List[str]:
        async with self._connect(conn) as db:
            names = await db.list_collection_names()
        return sorted(names)

    async def get_records(
        self, conn: str, table: str, limit: Any = None, offset: Any = None, sort: Any = None
    ) -> Records:
        limit, offset = normalize_window(limit, offset)
        if limit == 0:
            return []

        keys = normalize_sort(sort)
        async with self._connect(conn) as db:
            cursor = db[table].find({})
            if keys:
                cursor = cursor.sort([(key.column, key.direction.mongo) for key in keys])
            if offset:
                cursor = cursor.skip(offset)
            if limit is not None:
                cursor = cursor.limit(limit)
            return await cursor.to_list(None)

    async def get_record_count(self, conn: str, table: str) -> int:
        async with self._connect(conn) as db:
            return await db[table].count_documents({})

    async def run_query(
        self, conn: str, query: str, context: Optional[QueryContext] = None
    ) -> Records:
        context = context or QueryContext()
        parsed = parse_mongo_query(query, default_collection=context.table_name)

        async with self._connect(conn) as db:
            collection = db[parsed.collection]

            if parsed.operation == "count":
                count = await collection.count_documents(parsed.filter)
                return [{"count": count}]

            cursor = collection.find(parsed.filter, parsed.projection)
            if parsed.sort:
                cursor = cursor.sort(parsed.sort)
            if parsed.skip:
                cursor = cursor.skip(parsed.skip)
            cursor = cursor.limit(
                parsed.limit or context.limit or Settings.SIMPLEDB_MONGO_QUERY_LIMIT
            )
            return await cursor.to_list(None)

    async def update_record(
        self, conn: str, table: str, identifier: Mapping[str, Any], updates: Mapping[str, Any]
    ) -> UpdateResult:
        require_mutation_args(identifier, updates)
        query = coerce_object_id_filter(identifier)

        async with self._connect(conn) as db:
            result = await db[table].update_many(query, {"$set": dict(updates)})

        logger.info(f"Updated {result.modified_count} document(s) in {table}")
        return UpdateResult(success=bool(result.acknowledged), affected_count=result.modified_count)

    async def resolve_identifier(self, conn: str, table: str, record: Mapping[str, Any]) -> dict:
        return identifier_from_field(record, "_id", self.engine)

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
        return codec.write_export(destination, records, fmt, flatten=True)

    async def import_table(
        self, conn: str, table: str, source: codec.PathLike, fmt: Any = None
    ) -> int:
        raise OperationNotSupportedError(
            "Import is not supported for MongoDB databases",
            solutions=["Use mongoimport for bulk loads"],
            engine=self.engine,
        )
