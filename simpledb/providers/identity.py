"""Choosing the filter that addresses a single record."""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Sequence

from ..utils.errors import IdentifierError

logger = logging.getLogger(__name__)


def identifier_from_primary_key(
    table: str, primary_key: Sequence[str], record: Mapping[str, Any], engine: str = ""
) -> Dict[str, Any]:
    """Relational identifier policy.

    With a primary key, the identifier is exactly its columns. Without one,
    every column of the record is used, which may match more than one row.
    """
    if primary_key:
        identifier: Dict[str, Any] = {}
        for column in primary_key:
            if column not in record:
                raise IdentifierError(
                    f"Primary key column {column} not found in row data",
                    solutions=[f"Include '{column}' when selecting rows from {table}"],
                    engine=engine,
                )
            identifier[column] = record[column]
        return identifier

    if not record:
        raise IdentifierError(
            f"Table {table} has no primary key and the row has no columns to match on",
            engine=engine,
        )

    logger.warning(
        f"Table {table} has no primary key; identifying the row by all "
        f"{len(record)} column(s). The update may affect duplicate rows."
    )
    return dict(record)


def identifier_from_field(
    record: Mapping[str, Any], field: str, engine: str = ""
) -> Dict[str, Any]:
    """Identifier made of one required field (``_id`` or ``key``)."""
    if field not in record or record[field] is None:
        raise IdentifierError(
            f"Record is missing the '{field}' field required to identify it",
            engine=engine,
        )
    return {field: record[field]}
