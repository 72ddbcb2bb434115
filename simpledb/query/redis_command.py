"""redis-cli style command parsing and reply formatting."""

from __future__ import annotations

from typing import Any, Dict, List, Mapping

from ..utils.errors import QuerySyntaxError

_WHITESPACE = (" ", "\t", "\r", "\n")


def tokenize(command: str) -> List[str]:
    """Split a command line into arguments.

    Single and double quotes group words; inside double quotes a backslash
    escapes the next character. Quotes may start mid-token, as in redis-cli.
    """
    tokens: List[str] = []
    current: List[str] = []
    in_token = False
    quote = ""
    i = 0

    while i < len(command):
        ch = command[i]

        if quote:
            if quote == '"' and ch == "\\" and i + 1 < len(command):
                current.append(command[i + 1])
                i += 2
                continue
            if ch == quote:
                quote = ""
            else:
                current.append(ch)
        elif ch in ('"', "'"):
            quote = ch
            in_token = True
        elif ch in _WHITESPACE:
            if in_token:
                tokens.append("".join(current))
                current = []
                in_token = False
        else:
            current.append(ch)
            in_token = True
        i += 1

    if quote:
        raise QuerySyntaxError(
            f"Unterminated {quote} quote in command",
            solutions=["Close the quoted argument", 'Example: SET greeting "hello world"'],
            engine="redis",
        )
    if in_token:
        tokens.append("".join(current))
    return tokens


def parse_command(command: str) -> List[str]:
    tokens = tokenize(command.strip())
    if not tokens:
        raise QuerySyntaxError(
            "Empty Redis command",
            solutions=["Type a command such as: GET mykey", "KEYS user:*"],
            engine="redis",
        )
    return tokens


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_text(item) for item in value) + "]"
    return str(value)


def normalize_reply(reply: Any) -> List[Dict[str, Any]]:
    """Turn a raw reply into rows for display."""
    if reply is None:
        return [{"result": "(nil)"}]
    if isinstance(reply, Mapping):
        if not reply:
            return [{"result": "(empty array)"}]
        return [{"field": _text(k), "value": _text(v)} for k, v in reply.items()]
    if isinstance(reply, (list, tuple, set)):
        items = list(reply)
        if not items:
            return [{"result": "(empty array)"}]
        return [{"index": i, "value": _text(item)} for i, item in enumerate(items)]
    return [{"result": _text(reply)}]
