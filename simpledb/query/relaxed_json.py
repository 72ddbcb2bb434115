"""Parser for the relaxed JSON used in mongo shell filters.

Accepts strict JSON plus the shell conveniences people type by hand:
unquoted keys (``status``, ``$gt``, ``addr.city``), single-quoted strings,
trailing commas, and the ``ObjectId("...")``, ``ISODate("...")``,
``NumberInt(..)`` and ``NumberLong(..)`` helpers. Nothing is evaluated.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Callable, Dict, List, Tuple

from ..utils.drivers import load_driver
from ..utils.errors import QuerySyntaxError

_KEY_CHARS = set("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789_$.")
_ESCAPES = {
    '"': '"',
    "'": "'",
    "\\": "\\",
    "/": "/",
    "b": "\b",
    "f": "\f",
    "n": "\n",
    "r": "\r",
    "t": "\t",
}


def _object_id(value: Any) -> Any:
    bson = load_driver("bson")
    try:
        return bson.ObjectId(value)
    except (bson.errors.InvalidId, TypeError) as e:
        raise QuerySyntaxError(f"Invalid ObjectId: {value!r}", engine="mongodb") from e


def _iso_date(value: Any = None) -> datetime:
    if value is None:
        return datetime.now()
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as e:
        raise QuerySyntaxError(f"Invalid date: {value!r}", engine="mongodb") from e


def _number_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise QuerySyntaxError(f"Invalid integer: {value!r}", engine="mongodb") from e


_CONSTRUCTORS: Dict[str, Callable[..., Any]] = {
    "ObjectId": _object_id,
    "ISODate": _iso_date,
    "Date": _iso_date,
    "NumberInt": _number_int,
    "NumberLong": _number_int,
}

_LITERALS = {"true": True, "false": False, "null": None}


class _Parser:
    def __init__(self, text: str):
        self.text = text
        self.pos = 0

    def error(self, message: str) -> QuerySyntaxError:
        return QuerySyntaxError(f"{message} at position {self.pos}", engine="mongodb")

    def peek(self) -> str:
        return self.text[self.pos] if self.pos < len(self.text) else ""

    def skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def expect(self, ch: str) -> None:
        self.skip_ws()
        if self.peek() != ch:
            found = self.peek() or "end of input"
            raise self.error(f"Expected '{ch}' but found {found!r}")
        self.pos += 1

    def parse_value(self) -> Any:
        self.skip_ws()
        ch = self.peek()
        if ch == "{":
            return self.parse_object()
        if ch == "[":
            return self.parse_array()
        if ch in ('"', "'"):
            return self.parse_string()
        if ch == "-" or ch == "+" or ch.isdigit() or ch == ".":
            return self.parse_number()
        if ch.isalpha() or ch == "_":
            return self.parse_word()
        if not ch:
            raise self.error("Unexpected end of input")
        raise self.error(f"Unexpected character {ch!r}")

    def parse_object(self) -> Dict[str, Any]:
        self.expect("{")
        result: Dict[str, Any] = {}
        while True:
            self.skip_ws()
            if self.peek() == "}":
                self.pos += 1
                return result
            key = self.parse_key()
            self.expect(":")
            result[key] = self.parse_value()
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1
                continue
            self.expect("}")
            return result

    def parse_array(self) -> List[Any]:
        self.expect("[")
        items: List[Any] = []
        while True:
            self.skip_ws()
            if self.peek() == "]":
                self.pos += 1
                return items
            items.append(self.parse_value())
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1
                continue
            self.expect("]")
            return items

    def parse_key(self) -> str:
        self.skip_ws()
        if self.peek() in ('"', "'"):
            return self.parse_string()
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] in _KEY_CHARS:
            self.pos += 1
        if start == self.pos:
            raise self.error("Expected a field name")
        return self.text[start : self.pos]

    def parse_string(self) -> str:
        quote = self.peek()
        self.pos += 1
        chars: List[str] = []
        while True:
            if self.pos >= len(self.text):
                raise self.error("Unterminated string")
            ch = self.text[self.pos]
            if ch == quote:
                self.pos += 1
                return "".join(chars)
            if ch == "\\":
                self.pos += 1
                esc = self.peek()
                if esc == "u":
                    digits = self.text[self.pos + 1 : self.pos + 5]
                    if len(digits) != 4:
                        raise self.error("Invalid unicode escape")
                    try:
                        chars.append(chr(int(digits, 16)))
                    except ValueError:
                        raise self.error("Invalid unicode escape") from None
                    self.pos += 5
                    continue
                chars.append(_ESCAPES.get(esc, esc))
                self.pos += 1
                continue
            chars.append(ch)
            self.pos += 1

    def parse_number(self) -> Any:
        start = self.pos
        while self.pos < len(self.text) and self.text[self.pos] in "+-0123456789.eE":
            self.pos += 1
        token = self.text[start : self.pos]
        try:
            if any(c in token for c in ".eE"):
                return float(token)
            return int(token)
        except ValueError:
            self.pos = start
            raise self.error(f"Invalid number {token!r}") from None

    def parse_word(self) -> Any:
        start = self.pos
        while self.pos < len(self.text) and (
            self.text[self.pos].isalnum() or self.text[self.pos] == "_"
        ):
            self.pos += 1
        word = self.text[start : self.pos]

        if word == "new":
            self.skip_ws()
            return self.parse_word()
        if word in _LITERALS:
            return _LITERALS[word]
        if word in _CONSTRUCTORS:
            args = self.parse_call_args()
            return _CONSTRUCTORS[word](*args)

        self.pos = start
        raise self.error(f"Unknown identifier {word!r}")

    def parse_call_args(self) -> Tuple[Any, ...]:
        self.expect("(")
        args: List[Any] = []
        while True:
            self.skip_ws()
            if self.peek() == ")":
                self.pos += 1
                return tuple(args)
            args.append(self.parse_value())
            self.skip_ws()
            if self.peek() == ",":
                self.pos += 1
                continue
            self.expect(")")
            return tuple(args)


def loads(text: str) -> Any:
    """Parse one relaxed JSON value; trailing text is an error."""
    parser = _Parser(text)
    value = parser.parse_value()
    parser.skip_ws()
    if parser.pos != len(text):
        raise parser.error("Unexpected trailing text")
    return value


def parse_arguments(text: str) -> List[Any]:
    """Parse a comma separated argument list such as ``{a: 1}, {b: 0}``."""
    parser = _Parser(text)
    args: List[Any] = []
    parser.skip_ws()
    if not parser.peek():
        return args
    while True:
        args.append(parser.parse_value())
        parser.skip_ws()
        if parser.peek() == ",":
            parser.pos += 1
            continue
        if parser.pos != len(text):
            raise parser.error("Unexpected trailing text")
        return args
