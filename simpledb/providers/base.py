"""Provider contract shared by every database engine."""

from __future__ import annotations

import logging
import math
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from ..config.settings import Settings
from ..transfer.codec import PathLike, TransferFormat
from ..utils.errors import DataShapeError, QuerySyntaxError, SafetyViolationError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
Records = List[Record]

# Redis "table" holding keys without a ``prefix:`` part
NO_PREFIX = "__no_prefix__"


class SortDirection(Enum):
    ASC = "asc"
    DESC = "desc"

    @property
    def sql(self) -> str:
        return self.value.upper()

    @property
    def mongo(self) -> int:
        return 1 if self is SortDirection.ASC else -1


@dataclass(frozen=True)
class SortKey:
    column: str
    direction: SortDirection = SortDirection.ASC

    @classmethod
    def parse(cls, value: Any) -> "SortKey":
        """Build a sort key from a SortKey, tuple, mapping or ``col:dir`` string."""
        if isinstance(value, SortKey):
            return value
        if isinstance(value, str):
            # Only a trailing :asc / :desc is a direction; "user:id" is a column
            column, _, direction = value.rpartition(":")
            if column and direction.strip().lower() in ("asc", "desc"):
                return cls(column, _direction(direction))
            return cls(value)
        if isinstance(value, Mapping):
            column = value.get("column", value.get("col"))
            direction = value.get("direction", value.get("dir", "asc"))
            if not column:
                raise QuerySyntaxError(f"Sort entry has no column: {value!r}")
            return cls(str(column), _direction(direction))
        if isinstance(value, (tuple, list)) and len(value) == 2:
            return cls(str(value[0]), _direction(value[1]))
        raise QuerySyntaxError(f"Unrecognised sort entry: {value!r}")


def _direction(value: Any) -> SortDirection:
    if isinstance(value, SortDirection):
        return value
    try:
        return SortDirection(str(value).strip().lower())
    except ValueError:
        raise QuerySyntaxError(
            f"Sort direction must be 'asc' or 'desc', got {value!r}",
            solutions=["Write sort keys as COLUMN, COLUMN:asc or COLUMN:desc"],
        ) from None


SortSpec = Optional[Sequence[Union[SortKey, Tuple[str, str], Mapping[str, Any], str]]]


def normalize_sort(sort: SortSpec) -> List[SortKey]:
    if not sort:
        return []
    return [SortKey.parse(entry) for entry in sort]


@dataclass
class UpdateResult:
    success: bool
    affected_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "affectedCount": self.affected_count}


@dataclass
class QueryContext:
    """Optional hints for ``run_query``."""

    table_name: Optional[str] = None
    limit: Optional[int] = None


def _as_count(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise DataShapeError(f"Expected a number, got {value!r}") from None
    if not math.isfinite(number):
        return None
    return max(0, math.floor(number))


def normalize_window(limit: Any = None, offset: Any = None) -> Tuple[Optional[int], int]:
    """Clamp a limit/offset pair.

    A missing or non-finite limit means "all rows"; negatives clamp to 0.
    The offset defaults to 0 and never goes negative.
    """
    normalized_limit = _as_count(limit)
    normalized_offset = _as_count(offset) or 0
    return normalized_limit, normalized_offset


def require_mutation_args(identifier: Mapping[str, Any], updates: Mapping[str, Any]) -> None:
    """Refuse updates that would touch every row or change nothing."""
    if not identifier:
        raise SafetyViolationError(
            "WHERE clause is required for safety",
            solutions=["Pass an identifier that selects the record to update"],
        )
    if not updates:
        raise SafetyViolationError("No columns to update")


def sanitize_connection_string(conn_str: str) -> str:
    """Remove password from connection string for logging."""
    # Match patterns like :password@ and replace password
    masked = re.sub(r":([^:@/]+)@", r":***@", conn_str)
    return re.sub(r"(authToken=)[^&]+", r"\1***", masked)


class DatabaseProvider(ABC):
    """Uniform asynchronous interface to one database engine.

    A provider holds no connection state. Each operation opens a fresh
    native connection from the descriptor it is given and closes it on every
    exit path.
    """

    engine: str = ""
    supports_import: bool = True

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = float(timeout) if timeout else Settings.SIMPLEDB_TIMEOUT

    def __repr__(self) -> str:
        return f"{type(self).__name__}(timeout={self.timeout})"

    @abstractmethod
    async def list_tables(self, conn: str) -> List[str]:
        """Return table, collection or key prefix names, sorted."""
        ...

    @abstractmethod
    async def get_records(
        self,
        conn: str,
        table: str,
        limit: Any = None,
        offset: Any = None,
        sort: SortSpec = None,
    ) -> Records:
        """Return a window of records, ordered by ``sort`` when given."""
        ...

    @abstractmethod
    async def get_record_count(self, conn: str, table: str) -> int:
        ...

    @abstractmethod
    async def run_query(
        self, conn: str, query: str, context: Optional[QueryContext] = None
    ) -> Records:
        """Execute native query text as written and return result rows."""
        ...

    @abstractmethod
    async def update_record(
        self,
        conn: str,
        table: str,
        identifier: Mapping[str, Any],
        updates: Mapping[str, Any],
    ) -> UpdateResult:
        ...

    @abstractmethod
    async def resolve_identifier(self, conn: str, table: str, record: Mapping[str, Any]) -> Record:
        """Return the minimal filter that addresses ``record``."""
        ...

    @abstractmethod
    async def export_table(
        self,
        conn: str,
        table: str,
        destination: PathLike,
        records: Optional[Sequence[Mapping[str, Any]]] = None,
        fmt: Union[str, TransferFormat, None] = None,
    ) -> str:
        """Write ``records`` (or the whole table) to a CSV or JSON file."""
        ...

    @abstractmethod
    async def import_table(
        self,
        conn: str,
        table: str,
        source: PathLike,
        fmt: Union[str, TransferFormat, None] = None,
    ) -> int:
        """Load a CSV or JSON file into ``table`` and return the number of records.

        Engines without safe bulk import raise OperationNotSupportedError.
        """
        ...
