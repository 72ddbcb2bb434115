from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pymongo
import pytest
from bson import ObjectId

from simpledb.providers.base import QueryContext
from simpledb.providers.mongodb import MongoDBProvider, coerce_object_id_filter
from simpledb.utils.errors import (
    ConnectivityError,
    IdentifierError,
    OperationNotSupportedError,
    SafetyViolationError,
    UnsupportedFeatureError,
)

CONN = "mongodb://localhost:27017/app"

PEOPLE = [
    {"_id": 1, "name": "Ann", "status": "active", "age": 31},
    {"_id": 2, "name": "Bob", "status": "inactive", "age": 25},
    {"_id": 3, "name": "Cy", "status": "active", "age": 40, "addr": {"city": "Oslo"}},
]


def make_cursor(docs):
    cursor = MagicMock()
    cursor.sort.return_value = cursor
    cursor.skip.return_value = cursor
    cursor.limit.return_value = cursor
    cursor.to_list = AsyncMock(return_value=docs)
    return cursor


def equality_find(filter_doc, projection=None):
    """find() that understands plain equality filters."""
    docs = [d for d in PEOPLE if all(d.get(k) == v for k, v in filter_doc.items())]
    return make_cursor(docs)


@pytest.fixture
def collection():
    coll = MagicMock()
    coll.find.side_effect = equality_find
    coll.count_documents = AsyncMock(return_value=len(PEOPLE))
    coll.update_many = AsyncMock(
        return_value=SimpleNamespace(modified_count=1, acknowledged=True)
    )
    return coll


@pytest.fixture
def database(collection):
    db = MagicMock()
    db.__getitem__.return_value = collection
    db.list_collection_names = AsyncMock(return_value=["people", "orders"])
    return db


@pytest.fixture
def client(database):
    mock = MagicMock()
    mock.get_default_database.return_value = database
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def client_cls(client):
    with patch.object(pymongo, "AsyncMongoClient", return_value=client) as cls:
        yield cls


@pytest.fixture
def provider(client_cls):
    return MongoDBProvider(timeout=2)


class TestMongoDBProvider:
    """Test the MongoDB provider against a mocked async client."""

    @pytest.mark.asyncio
    async def test_list_collections_sorted(self, provider, client_cls, client):
        assert await provider.list_tables(CONN) == ["orders", "people"]
        client_cls.assert_called_once_with(
            CONN, serverSelectionTimeoutMS=2000, connectTimeoutMS=2000
        )
        client.get_default_database.assert_called_once_with(default="test")
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_server_selection_failure(self, provider, database, client):
        database.list_collection_names.side_effect = pymongo.errors.ServerSelectionTimeoutError(
            "localhost:27017: connection refused"
        )
        with pytest.raises(ConnectivityError, match="connection refused"):
            await provider.list_tables(CONN)
        client.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_get_records_window_and_sort(self, provider, collection):
        cursor = make_cursor(PEOPLE[1:2])
        collection.find.side_effect = None
        collection.find.return_value = cursor

        records = await provider.get_records(
            CONN, "people", limit=1, offset=1, sort=[("age", "desc"), ("name", "asc")]
        )

        assert records == PEOPLE[1:2]
        collection.find.assert_called_once_with({})
        cursor.sort.assert_called_once_with([("age", -1), ("name", 1)])
        cursor.skip.assert_called_once_with(1)
        cursor.limit.assert_called_once_with(1)

    @pytest.mark.asyncio
    async def test_limit_zero(self, provider, client_cls):
        assert await provider.get_records(CONN, "people", limit=0) == []
        assert await provider.get_records(CONN, "people", limit=-2) == []
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_count(self, provider):
        assert await provider.get_record_count(CONN, "people") == 3

    @pytest.mark.asyncio
    async def test_find_active_people(self, provider):
        records = await provider.run_query(
            CONN, 'db.people.find({status:"active"})', QueryContext(table_name="people")
        )
        assert [r["name"] for r in records] == ["Ann", "Cy"]

    @pytest.mark.asyncio
    async def test_bare_filter(self, provider, collection):
        records = await provider.run_query(
            CONN, "{status: 'inactive'}", QueryContext(table_name="people", limit=5)
        )
        assert [r["name"] for r in records] == ["Bob"]

    @pytest.mark.asyncio
    async def test_default_query_limit(self, provider, collection):
        cursor = make_cursor([])
        collection.find.side_effect = None
        collection.find.return_value = cursor

        await provider.run_query(CONN, "db.people.find({})")

        cursor.limit.assert_called_once_with(1000)

    @pytest.mark.asyncio
    async def test_count_documents_query(self, provider, collection):
        collection.count_documents.return_value = 2
        rows = await provider.run_query(CONN, "db.people.countDocuments({status: 'active'})")
        assert rows == [{"count": 2}]
        collection.count_documents.assert_awaited_once_with({"status": "active"})

    @pytest.mark.asyncio
    async def test_aggregate_not_supported(self, provider, client_cls):
        with pytest.raises(UnsupportedFeatureError):
            await provider.run_query(CONN, "db.people.aggregate([])")
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("identifier,updates", [({}, {"age": 31}), ({"_id": 1}, {})])
    async def test_update_refused_before_writing(
        self, provider, client_cls, collection, identifier, updates
    ):
        with pytest.raises(SafetyViolationError):
            await provider.update_record(CONN, "people", identifier, updates)
        client_cls.assert_not_called()
        collection.update_many.assert_not_called()

    @pytest.mark.asyncio
    async def test_update_sets_only_given_fields(self, provider, collection):
        result = await provider.update_record(CONN, "people", {"_id": 1}, {"age": 32})

        assert result.to_dict() == {"success": True, "affectedCount": 1}
        collection.update_many.assert_awaited_once_with({"_id": 1}, {"$set": {"age": 32}})

    def test_object_id_text_matches_both_forms(self):
        raw = "64b7f0c2a1b2c3d4e5f60718"
        assert coerce_object_id_filter({"_id": raw}) == {"_id": {"$in": [raw, ObjectId(raw)]}}
        assert coerce_object_id_filter({"_id": "plain"}) == {"_id": "plain"}

    @pytest.mark.asyncio
    async def test_resolve_identifier(self, provider):
        assert await provider.resolve_identifier(CONN, "people", PEOPLE[0]) == {"_id": 1}
        with pytest.raises(IdentifierError):
            await provider.resolve_identifier(CONN, "people", {"name": "x"})

    @pytest.mark.asyncio
    async def test_import_not_supported(self, provider, client_cls, users_json):
        with pytest.raises(OperationNotSupportedError) as exc_info:
            await provider.import_table(CONN, "people", users_json)
        assert isinstance(exc_info.value, SafetyViolationError)
        client_cls.assert_not_called()

    @pytest.mark.asyncio
    async def test_csv_export_flattens_documents(self, provider, tmp_path):
        path = await provider.export_table(CONN, "people", tmp_path / "people.csv")
        lines = open(path).read().splitlines()

        assert lines[0] == "_id,name,status,age,addr.city"
        assert lines[3] == "3,Cy,active,40,Oslo"
