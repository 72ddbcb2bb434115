"""SQL text builders for the relational engines.

Only identifiers are ever interpolated into SQL, always quoted. Values,
limits and offsets travel as bound parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ..utils.errors import SafetyViolationError

Statement = Tuple[str, List[Any]]


@dataclass(frozen=True)
class Dialect:
    name: str
    quote_char: str = '"'
    paramstyle: str = "qmark"  # qmark (?), numeric ($1), format (%s)

    def quote_identifier(self, name: str) -> str:
        q = self.quote_char
        quoted = str(name).replace(q, q + q)
        if self.paramstyle == "format":
            # The driver applies "sql % args", so a literal % must be doubled
            quoted = quoted.replace("%", "%%")
        return f"{q}{quoted}{q}"

    def placeholder(self, index: int) -> str:
        """Placeholder for the 1-based parameter ``index``."""
        if self.paramstyle == "numeric":
            return f"${index}"
        if self.paramstyle == "format":
            return "%s"
        return "?"

    def order_by(self, sort: Optional[Sequence[Any]]) -> str:
        if not sort:
            return ""
        parts = [f"{self.quote_identifier(key.column)} {key.direction.sql}" for key in sort]
        return " ORDER BY " + ", ".join(parts)

    def select_page(
        self,
        table: str,
        limit: Optional[int] = None,
        offset: int = 0,
        sort: Optional[Sequence[Any]] = None,
    ) -> Statement:
        sql = f"SELECT * FROM {self.quote_identifier(table)}{self.order_by(sort)}"
        params: List[Any] = []

        if limit is not None:
            params.append(limit)
            sql += f" LIMIT {self.placeholder(len(params))}"
            if offset > 0:
                params.append(offset)
                sql += f" OFFSET {self.placeholder(len(params))}"
        elif offset > 0:
            # OFFSET needs a LIMIT in SQLite and MySQL
            params.append(offset)
            sql += f" LIMIT {self.unbounded_limit} OFFSET {self.placeholder(len(params))}"

        return sql, params

    @property
    def unbounded_limit(self) -> str:
        if self.name == "postgresql":
            return "ALL"
        if self.name == "mysql":
            return "18446744073709551615"
        return "-1"

    def count(self, table: str) -> str:
        return f"SELECT COUNT(*) AS count FROM {self.quote_identifier(table)}"

    def update(
        self, table: str, updates: Mapping[str, Any], identifier: Mapping[str, Any]
    ) -> Statement:
        if not updates:
            raise SafetyViolationError("No columns to update")
        if not identifier:
            raise SafetyViolationError("WHERE clause is required for safety")

        params: List[Any] = []
        assignments = []
        for column, value in updates.items():
            params.append(value)
            assignments.append(f"{self.quote_identifier(column)} = {self.placeholder(len(params))}")

        conditions = []
        for column, value in identifier.items():
            if value is None:
                conditions.append(f"{self.quote_identifier(column)} IS NULL")
                continue
            params.append(value)
            conditions.append(f"{self.quote_identifier(column)} = {self.placeholder(len(params))}")

        sql = (
            f"UPDATE {self.quote_identifier(table)} SET {', '.join(assignments)} "
            f"WHERE {' AND '.join(conditions)}"
        )
        return sql, params

    def create_text_table(self, table: str, columns: Sequence[str]) -> str:
        column_defs = ", ".join(f"{self.quote_identifier(col)} TEXT" for col in columns)
        return f"CREATE TABLE IF NOT EXISTS {self.quote_identifier(table)} ({column_defs})"

    def insert(self, table: str, columns: Sequence[str]) -> str:
        names = ", ".join(self.quote_identifier(col) for col in columns)
        marks = ", ".join(self.placeholder(i) for i in range(1, len(columns) + 1))
        return f"INSERT INTO {self.quote_identifier(table)} ({names}) VALUES ({marks})"


SQLITE = Dialect("sqlite")
LIBSQL = Dialect("libsql")
POSTGRESQL = Dialect("postgresql", paramstyle="numeric")
MYSQL = Dialect("mysql", quote_char="`", paramstyle="format")
