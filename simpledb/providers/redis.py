"""Redis provider backed by redis.asyncio.

Keys are grouped into "tables" by the text before their first ``:``; keys
without such a prefix live in the ``__no_prefix__`` table. Every listing is
a full SCAN of the keyspace, so cost grows with the number of keys, not
with the page size.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Sequence, Tuple

from ..config.settings import Settings
from ..query.redis_command import normalize_reply, parse_command
from ..transfer import codec
from ..utils.drivers import load_driver
from ..utils.errors import (
    ConnectivityError,
    DataShapeError,
    OperationNotSupportedError,
    SafetyViolationError,
    UnsupportedFeatureError,
)
from .base import (
    NO_PREFIX,
    DatabaseProvider,
    QueryContext,
    Records,
    SortKey,
    UpdateResult,
    normalize_sort,
    normalize_window,
    require_mutation_args,
    sanitize_connection_string,
)
from .identity import identifier_from_field

logger = logging.getLogger(__name__)

_GLOB_SPECIAL = "\\*?[]"


def key_prefix(key: str) -> str:
    idx = key.find(":")
    return key[:idx] if idx > 0 else NO_PREFIX


def escape_glob(text: str) -> str:
    return "".join(f"\\{ch}" if ch in _GLOB_SPECIAL else ch for ch in text)


def _sort_value(value: Any) -> Tuple[int, Any]:
    # None sorts last; numbers before text so ttl values compare numerically
    if value is None:
        return (2, "")
    if isinstance(value, (int, float)):
        return (0, value)
    return (1, str(value))


def sort_rows(rows: List[Dict[str, Any]], keys: Sequence[SortKey]) -> List[Dict[str, Any]]:
    """Stable multi-key sort, applied from the least significant key."""
    for key in reversed(keys):
        rows.sort(
            key=lambda row: _sort_value(row.get(key.column)),
            reverse=key.direction.value == "desc",
        )
    return rows


def _decode_json(value: Any, expected: Any, type_name: str) -> Any:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise DataShapeError(f"Value for a {type_name} key must be JSON: {e}") from e
    if not isinstance(value, expected):
        shape = "object" if expected is dict else "array"
        raise DataShapeError(
            f"Value for a {type_name} key must be a JSON {shape}",
            engine="redis",
        )
    return value


class RedisProvider(DatabaseProvider):
    """Redis servers addressed by ``redis://`` or ``rediss://`` URLs."""

    engine = "redis"
    supports_import = False

    @asynccontextmanager
    async def _connect(self, conn: str, raw: bool = False) -> AsyncIterator[Any]:
        aioredis = load_driver("redis.asyncio")
        exceptions = load_driver("redis.exceptions")

        logger.debug(f"Connecting to Redis: {sanitize_connection_string(conn)}")
        try:
            client = aioredis.from_url(
                conn,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=self.timeout,
                socket_timeout=self.timeout,
            )
        except ValueError as e:
            raise ConnectivityError(str(e), engine=self.engine) from e

        if raw:
            # Return replies as the server sends them, the way redis-cli shows them
            client.response_callbacks.clear()

        try:
            yield client
        except (exceptions.ConnectionError, exceptions.TimeoutError) as e:
            # the client connects lazily, so the first command reports failures
            raise ConnectivityError(
                str(e),
                solutions=["Check the Redis URL and that the server is reachable"],
                engine=self.engine,
            ) from e
        finally:
            await client.aclose()

    async def _scan(self, client: Any, table: Optional[str] = None) -> List[str]:
        """Keys belonging to ``table`` (every key when None), sorted."""
        if table is None or table == NO_PREFIX:
            pattern = "*"
        else:
            pattern = f"{escape_glob(table)}:*"

        keys = set()
        async for key in client.scan_iter(match=pattern, count=Settings.SIMPLEDB_REDIS_SCAN_COUNT):
            if table is None or key_prefix(key) == table:
                keys.add(key)
        return sorted(keys)

    async def _load_row(self, client: Any, key: str) -> Optional[Dict[str, Any]]:
        key_type = await client.type(key)
        if key_type == "none":
            return None

        if key_type == "string":
            value: Any = await client.get(key)
        elif key_type == "list":
            value = json.dumps(await client.lrange(key, 0, -1))
        elif key_type == "set":
            value = json.dumps(sorted(await client.smembers(key)))
        elif key_type == "zset":
            pairs = await client.zrange(key, 0, -1, withscores=True)
            value = json.dumps([[member, score] for member, score in pairs])
        elif key_type == "hash":
            value = json.dumps(await client.hgetall(key))
        elif key_type == "stream":
            value = "[stream]"
        else:
            value = f"[{key_type}]"

        ttl = await client.ttl(key)
        if ttl == -2:
            return None
        return {"key": key, "type": key_type, "value": value, "ttl": "none" if ttl == -1 else ttl}

    async def _load_rows(self, client: Any, keys: Sequence[str]) -> Records:
        rows = []
        for key in keys:
            row = await self._load_row(client, key)
            if row is not None:
                rows.append(row)
        return rows

    async def list_tables(self, conn: str) -> List[str]:
        async with self._connect(conn) as client:
            keys = await self._scan(client)
        tables = sorted({key_prefix(key) for key in keys})
        logger.debug(f"Found {len(tables)} key prefix(es) across {len(keys)} key(s)")
        return tables

    async def get_records(
        self, conn: str, table: str, limit: Any = None, offset: Any = None, sort: Any = None
    ) -> Records:
        limit, offset = normalize_window(limit, offset)
        if limit == 0:
            return []

        keys_order = normalize_sort(sort)
        end = None if limit is None else offset + limit

        async with self._connect(conn) as client:
            keys = await self._scan(client, table)

            if keys_order and [k.column for k in keys_order] != ["key"]:
                # Sorting by type, value or ttl needs every row in memory
                rows = await self._load_rows(client, keys)
                return sort_rows(rows, keys_order)[offset:end]

            if keys_order and keys_order[0].direction.value == "desc":
                keys.reverse()
            return await self._load_rows(client, keys[offset:end])

    async def get_record_count(self, conn: str, table: str) -> int:
        async with self._connect(conn) as client:
            keys = await self._scan(client, table)
        return len(keys)

    async def run_query(
        self, conn: str, query: str, context: Optional[QueryContext] = None
    ) -> Records:
        args = parse_command(query)
        limit = context.limit if context else None

        async with self._connect(conn, raw=True) as client:
            reply = await client.execute_command(*args)

        rows = normalize_reply(reply)
        return rows[:limit] if limit else rows

    async def update_record(
        self, conn: str, table: str, identifier: Mapping[str, Any], updates: Mapping[str, Any]
    ) -> UpdateResult:
        require_mutation_args(identifier, updates)
        key = identifier.get("key")
        if not key:
            raise SafetyViolationError(
                "Redis updates require the key in the identifier", engine=self.engine
            )
        if "value" not in updates and "ttl" not in updates:
            raise DataShapeError(
                "Redis updates accept only the 'value' and 'ttl' fields", engine=self.engine
            )

        async with self._connect(conn) as client:
            key_type = await client.type(key)
            if key_type == "none":
                return UpdateResult(success=True, affected_count=0)

            if "value" in updates:
                await self._write_value(client, key, key_type, updates["value"])
            if "ttl" in updates:
                await self._write_ttl(client, key, updates["ttl"])

        logger.info(f"Updated Redis {key_type} key {key}")
        return UpdateResult(success=True, affected_count=1)

    async def _write_value(self, client: Any, key: str, key_type: str, value: Any) -> None:
        if key_type == "string":
            await client.set(key, codec.to_text(value) or "", keepttl=True)
            return

        if key_type not in ("hash", "list", "set", "zset"):
            raise UnsupportedFeatureError(
                f"Updating {key_type} keys is not supported through the grid editor. "
                "Use the query panel instead.",
                engine=self.engine,
            )

        # Collections are replaced wholesale; DEL drops the TTL so it is restored after
        pttl = await client.pttl(key)
        async with client.pipeline(transaction=True) as pipe:
            pipe.delete(key)
            if key_type == "hash":
                mapping = _decode_json(value, dict, key_type)
                if mapping:
                    pipe.hset(key, mapping={k: codec.to_text(v) or "" for k, v in mapping.items()})
            elif key_type == "list":
                items = _decode_json(value, list, key_type)
                if items:
                    pipe.rpush(key, *[codec.to_text(item) or "" for item in items])
            elif key_type == "set":
                members = _decode_json(value, list, key_type)
                if members:
                    pipe.sadd(key, *[codec.to_text(item) or "" for item in members])
            else:
                scores = self._zset_mapping(_decode_json(value, (list, dict), key_type))
                if scores:
                    pipe.zadd(key, scores)
            if pttl and pttl > 0:
                pipe.pexpire(key, pttl)
            await pipe.execute()

    @staticmethod
    def _zset_mapping(value: Any) -> Dict[str, float]:
        if isinstance(value, dict):
            pairs = list(value.items())
        else:
            pairs = []
            for item in value:
                if not isinstance(item, (list, tuple)) or len(item) != 2:
                    raise DataShapeError("zset values must be [member, score] pairs")
                pairs.append((item[0], item[1]))
        try:
            return {str(member): float(score) for member, score in pairs}
        except (TypeError, ValueError) as e:
            raise DataShapeError(f"Invalid zset score: {e}") from e

    async def _write_ttl(self, client: Any, key: str, ttl: Any) -> None:
        if ttl in (None, "none", "", -1, "-1"):
            await client.persist(key)
            return
        try:
            seconds = int(ttl)
        except (TypeError, ValueError) as e:
            raise DataShapeError(f"TTL must be a number of seconds or 'none', got {ttl!r}") from e
        if seconds <= 0:
            raise DataShapeError("TTL must be positive; use 'none' to remove expiry")
        await client.expire(key, seconds)

    async def resolve_identifier(self, conn: str, table: str, record: Mapping[str, Any]) -> dict:
        return identifier_from_field(record, "key", self.engine)

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
        raise OperationNotSupportedError(
            "Import is not supported for Redis. Use the query panel to SET keys.",
            engine=self.engine,
        )
