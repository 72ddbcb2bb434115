"""Parsing the subset of mongo shell syntax accepted by the query panel.

Accepted forms::

    db.people.find({status: "active"})
    db.people.find({}, {name: 1}).sort({age: -1}).skip(10).limit(5)
    db.people.findOne({_id: ObjectId("...")})
    db.people.countDocuments({age: {$gt: 30}})
    {status: "active"}            # bare filter on the selected collection
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ..utils.errors import QuerySyntaxError, UnsupportedFeatureError
from . import relaxed_json

ACCEPTED_SYNTAX = [
    'db.<collection>.find({field: "value"})',
    "db.<collection>.find({}).sort({field: -1}).skip(0).limit(10)",
    "db.<collection>.countDocuments({})",
    'db.getCollection("<collection>").find({})',
    '{field: "value"} to filter the selected collection',
]

_READ_METHODS = {"find", "findOne", "countDocuments", "count"}
_CURSOR_METHODS = {"sort", "skip", "limit", "count", "pretty", "toArray"}
_UNSUPPORTED_METHODS = {
    "aggregate",
    "distinct",
    "estimatedDocumentCount",
    "insertOne",
    "insertMany",
    "updateOne",
    "updateMany",
    "replaceOne",
    "deleteOne",
    "deleteMany",
    "findOneAndUpdate",
    "findOneAndDelete",
    "drop",
    "createIndex",
}

_CALL_RE = re.compile(r"\.\s*([A-Za-z_][A-Za-z0-9_]*)\s*\(")
_COLLECTION_RE = re.compile(r"db\s*\.\s*([A-Za-z_][A-Za-z0-9_\-]*)")
# Shortest dotted name that is followed by a method call, e.g. db.system.users.find(
_DOTTED_COLLECTION_RE = re.compile(
    r"db\s*\.\s*([A-Za-z_][A-Za-z0-9_\-]*(?:\.[A-Za-z_][A-Za-z0-9_\-]*)*?)"
    r"(?=\s*\.\s*[A-Za-z_]\w*\s*\()"
)
_GET_COLLECTION_RE = re.compile(r"db\s*\.\s*getCollection\s*\(")


@dataclass
class MongoQuery:
    collection: str
    operation: str = "find"  # find | count
    filter: Dict[str, Any] = field(default_factory=dict)
    projection: Optional[Dict[str, Any]] = None
    sort: List[Tuple[str, int]] = field(default_factory=list)
    skip: int = 0
    limit: Optional[int] = None


def _syntax_error(message: str) -> QuerySyntaxError:
    return QuerySyntaxError(message, solutions=list(ACCEPTED_SYNTAX), engine="mongodb")


def _read_call(text: str, pos: int) -> Tuple[str, int]:
    """Return the text between the parenthesis at ``pos`` and its match."""
    depth = 0
    quote = ""
    i = pos
    while i < len(text):
        ch = text[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = ""
        elif ch in ('"', "'"):
            quote = ch
        elif ch in "([{":
            depth += 1
        elif ch in ")]}":
            depth -= 1
            if depth == 0:
                if ch != ")":
                    break
                return text[pos + 1 : i], i + 1
        i += 1
    raise _syntax_error("Unbalanced parentheses in query")


def parse_document(text: str) -> Any:
    """Parse a filter literal, strict JSON first and relaxed syntax second."""
    try:
        return json.loads(text)
    except ValueError:
        return relaxed_json.loads(text)


def _parse_args(text: str) -> List[Any]:
    if not text.strip():
        return []
    try:
        value = json.loads(f"[{text}]")
    except ValueError:
        return relaxed_json.parse_arguments(text)
    return value


def _as_filter(value: Any, what: str = "filter") -> Dict[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise _syntax_error(f"The {what} must be an object, got {type(value).__name__}")
    return value


def _as_int(value: Any, method: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise _syntax_error(f".{method}() expects a number")
    return max(0, int(value))


def _as_sort(value: Any) -> List[Tuple[str, int]]:
    spec = _as_filter(value, "sort specification")
    sort = []
    for key, direction in spec.items():
        if direction in (1, -1):
            sort.append((key, int(direction)))
        elif isinstance(direction, str) and direction.lower() in ("asc", "desc"):
            sort.append((key, 1 if direction.lower() == "asc" else -1))
        else:
            raise _syntax_error(f"Sort direction for {key} must be 1 or -1")
    return sort


def _collection(text: str) -> Tuple[str, int]:
    match = _GET_COLLECTION_RE.match(text)
    if match:
        args_text, end = _read_call(text, match.end() - 1)
        args = _parse_args(args_text)
        if len(args) != 1 or not isinstance(args[0], str):
            raise _syntax_error("getCollection() expects a collection name")
        return args[0], end

    match = _DOTTED_COLLECTION_RE.match(text) or _COLLECTION_RE.match(text)
    if not match:
        raise _syntax_error("Expected db.<collection>.<method>(...)")
    return match.group(1), match.end()


def parse_mongo_query(text: str, default_collection: Optional[str] = None) -> MongoQuery:
    query = text.strip().rstrip(";").strip()
    if not query:
        raise _syntax_error("Empty query")

    if query.startswith("{"):
        if not default_collection:
            raise _syntax_error("A bare filter needs a selected collection")
        return MongoQuery(collection=default_collection, filter=_as_filter(parse_document(query)))

    if not query.startswith("db"):
        raise _syntax_error(f"Unrecognised query: {query[:60]}")

    collection, pos = _collection(query)
    result: Optional[MongoQuery] = None

    while pos < len(query):
        rest = query[pos:]
        if not rest.strip():
            break
        match = _CALL_RE.match(rest)
        if not match:
            raise _syntax_error(f"Unexpected text: {rest.strip()[:40]}")

        method = match.group(1)
        args_text, end = _read_call(query, pos + match.end() - 1)
        pos = end

        if method in _UNSUPPORTED_METHODS:
            raise UnsupportedFeatureError(
                f"db.{collection}.{method}() is not supported in the query panel",
                solutions=list(ACCEPTED_SYNTAX),
                engine="mongodb",
            )

        args = _parse_args(args_text)

        if result is None:
            if method not in _READ_METHODS:
                raise _syntax_error(f"Unknown collection method: {method}()")
            result = MongoQuery(collection=collection)
            result.filter = _as_filter(args[0] if args else None)
            if method in ("find", "findOne") and len(args) > 1:
                result.projection = _as_filter(args[1], "projection")
            if method in ("countDocuments", "count"):
                result.operation = "count"
            elif method == "findOne":
                result.limit = 1
            continue

        if method not in _CURSOR_METHODS or result.operation == "count":
            raise _syntax_error(f"Cannot chain .{method}() here")
        if method == "sort":
            result.sort = _as_sort(args[0] if args else None)
        elif method == "skip":
            result.skip = _as_int(args[0] if args else None, method)
        elif method == "limit":
            result.limit = _as_int(args[0] if args else None, method)
        elif method == "count":
            result.operation = "count"

    if result is None:
        raise _syntax_error(f"Missing method call on db.{collection}")
    return result
