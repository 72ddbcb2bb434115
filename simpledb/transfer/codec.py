"""CSV and JSON codec shared by every provider for export and import.

Providers compose these helpers rather than inheriting them. The codec knows
nothing about engines: it turns lists of records into text and back, and
flattens nested documents for tabular output.
"""

from __future__ import annotations

import csv
import io
import json
import logging
import os
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from ..config.settings import Settings
from ..utils.errors import DataShapeError

logger = logging.getLogger(__name__)

Record = Dict[str, Any]
PathLike = Union[str, os.PathLike]

_CSV_SPECIAL = (",", '"', "\n", "\r")


class TransferFormat(str, Enum):
    CSV = "csv"
    JSON = "json"


def resolve_format(path: PathLike, fmt: Union[str, TransferFormat, None] = None) -> TransferFormat:
    """Pick the transfer format from an explicit value or the file suffix."""
    if fmt is not None:
        try:
            return TransferFormat(str(getattr(fmt, "value", fmt)).lower())
        except ValueError:
            raise DataShapeError(
                f"Unsupported transfer format: {fmt}",
                solutions=["Use 'csv' or 'json'"],
            ) from None

    suffix = Path(path).suffix.lower().lstrip(".")
    if suffix in ("csv", "json"):
        return TransferFormat(suffix)
    raise DataShapeError(
        f"Cannot infer transfer format from file name: {path}",
        solutions=["Use a .csv or .json file extension", "Pass the format explicitly"],
    )


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def to_text(value: Any) -> Optional[str]:
    """Convert a value to the text stored in an all-TEXT import table."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=_json_default)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def escape_csv_cell(value: Any) -> str:
    text = to_text(value)
    if text is None:
        return ""
    if any(ch in text for ch in _CSV_SPECIAL):
        return '"' + text.replace('"', '""') + '"'
    return text


def collect_columns(records: Iterable[Mapping[str, Any]]) -> List[str]:
    """Ordered union of the keys of every record."""
    columns: Dict[str, None] = {}
    for record in records:
        for key in record:
            columns.setdefault(key, None)
    return list(columns)


def records_to_csv(
    records: Sequence[Mapping[str, Any]], columns: Optional[Sequence[str]] = None
) -> str:
    """Serialize records as CSV.

    The header is ``columns`` when given, otherwise the keys of the first
    record. Missing values are written as empty cells.
    """
    if not records:
        return ""

    header = list(columns) if columns is not None else list(records[0].keys())
    lines = [",".join(escape_csv_cell(col) for col in header)]
    for record in records:
        lines.append(",".join(escape_csv_cell(record.get(col)) for col in header))
    return "\n".join(lines)


def parse_csv_line(line: str) -> List[str]:
    """Split one CSV line into cells, honouring quotes and doubled quotes."""
    reader = csv.reader([line])
    return next(reader, [])


def parse_csv(text: str, strict: Optional[bool] = None) -> List[Record]:
    """Parse CSV text into records keyed by the header row.

    Blank lines are skipped. Rows whose cell count differs from the header
    are dropped with a warning, or rejected when ``strict`` is enabled.
    """
    if strict is None:
        strict = Settings.SIMPLEDB_STRICT_CSV

    rows = [
        row
        for row in csv.reader(io.StringIO(text))
        if row and not (len(row) == 1 and not row[0].strip())
    ]
    if not rows:
        return []

    header = [cell.strip() for cell in rows[0]]
    records: List[Record] = []
    dropped: List[int] = []

    for line_no, row in enumerate(rows[1:], start=2):
        if len(row) != len(header):
            dropped.append(line_no)
            continue
        records.append(dict(zip(header, row)))

    if dropped:
        if strict:
            raise DataShapeError(
                f"{len(dropped)} CSV row(s) do not match the header's {len(header)} columns "
                f"(rows {', '.join(str(n) for n in dropped[:10])})",
                solutions=["Fix the malformed rows", "Disable SIMPLEDB_STRICT_CSV to skip them"],
            )
        logger.warning(
            f"Dropped {len(dropped)} CSV row(s) whose column count does not match the header"
        )

    return records


def records_to_json(records: Sequence[Mapping[str, Any]]) -> str:
    return json.dumps(list(records), indent=2, default=_json_default)


def flatten_document(document: Mapping[str, Any], prefix: str = "") -> Record:
    """Flatten nested mappings into dotted keys.

    Arrays are kept as JSON text leaves; other non-JSON values such as
    ObjectId and datetime become strings.
    """
    flat: Record = {}
    for key, value in document.items():
        path = f"{prefix}.{key}" if prefix else str(key)
        if isinstance(value, Mapping):
            nested = flatten_document(value, path)
            if nested:
                flat.update(nested)
            else:
                flat[path] = "{}"
        elif isinstance(value, (list, tuple)):
            flat[path] = json.dumps(list(value), default=_json_default)
        elif value is None or isinstance(value, (str, int, float, bool)):
            flat[path] = value
        else:
            flat[path] = _json_default(value)
    return flat


def flatten_documents(documents: Iterable[Mapping[str, Any]]) -> List[Record]:
    return [flatten_document(doc) for doc in documents]


def encode_records(
    records: Sequence[Mapping[str, Any]], fmt: TransferFormat, flatten: bool = False
) -> str:
    """Render records in the requested format.

    With ``flatten`` (document stores), CSV output uses flattened rows and
    the union of their keys as header.
    """
    if not records:
        raise DataShapeError("No data to export", solutions=["Check that the table has rows"])

    if fmt is TransferFormat.JSON:
        return records_to_json(records)

    if flatten:
        flat = flatten_documents(records)
        return records_to_csv(flat, collect_columns(flat))
    return records_to_csv(records)


def write_export(
    destination: PathLike,
    records: Sequence[Mapping[str, Any]],
    fmt: Union[str, TransferFormat, None] = None,
    flatten: bool = False,
) -> str:
    """Write records to ``destination`` and return its path."""
    resolved = resolve_format(destination, fmt)
    content = encode_records(records, resolved, flatten=flatten)

    path = Path(destination)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")

    logger.info(f"Exported {len(records)} record(s) to {path} as {resolved.value}")
    return str(path)


def decode_records(content: str, fmt: TransferFormat) -> List[Record]:
    """Parse import content and check it holds at least one record."""
    if fmt is TransferFormat.JSON:
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise DataShapeError(f"Invalid JSON file: {e}") from e

        if not isinstance(data, list) or not data:
            raise DataShapeError("JSON file must contain a non-empty array of objects")
        if not all(isinstance(item, dict) for item in data):
            raise DataShapeError("JSON file must contain a non-empty array of objects")
        return data

    records = parse_csv(content)
    if not records:
        raise DataShapeError("CSV file is empty or has no data rows")
    return records


def read_records(source: PathLike, fmt: Union[str, TransferFormat, None] = None) -> List[Record]:
    resolved = resolve_format(source, fmt)
    path = Path(source)
    if not path.is_file():
        raise DataShapeError(f"Import file not found: {path}")
    return decode_records(path.read_text(encoding="utf-8"), resolved)


def records_to_rows(
    records: Sequence[Mapping[str, Any]],
) -> Tuple[List[str], List[List[Optional[str]]]]:
    """Columns and text-valued rows for inserting records into an all-TEXT table."""
    columns = collect_columns(records)
    rows = [[to_text(record.get(col)) for col in columns] for record in records]
    return columns, rows
