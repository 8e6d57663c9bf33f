"""S-expression codec for EPC payloads.

Values map onto plain Python objects where possible:

- list   -> ``list``
- cons   -> :class:`Cons`
- number -> ``int``
- symbol -> :class:`Symbol`
- string -> ``str``
- nil    -> ``None``

``parse()`` never raises on malformed input. It returns a :class:`ParseError`
instance instead, so the transport can treat a broken payload as data and
report a protocol desync without unwinding its read loop. ``loads()`` is the
raising variant.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

_NUMBER_RE = re.compile(r"^-?[0-9]+$")
_WHITESPACE = frozenset(" \t\r\n")
_DELIMITERS = _WHITESPACE | frozenset('()"')
# Characters a symbol cannot carry; spaces are escaped instead.
_UNWRITABLE = _DELIMITERS - {" "}


class ParseError(Exception):
    """Malformed S-expression input."""

    def __init__(self, message: str, position: int = 0):
        super().__init__(f"{message} (at offset {position})")
        self.message = message
        self.position = position


@dataclass(frozen=True, slots=True)
class Symbol:
    """A bare identifier such as ``return`` or ``skProc``."""

    name: str

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True, slots=True)
class Cons:
    """A dotted pair ``(car . cdr)``."""

    car: Any
    cdr: Any


_DOT = Symbol(".")


class _Parser:
    """Single-cursor recursive descent parser."""

    def __init__(self, text: str):
        self._text = text
        self._pos = 0

    def parse(self) -> Any:
        items = self._parse_items(root=True)
        if not items:
            raise ParseError("Empty input", self._pos)
        if len(items) > 1:
            raise ParseError("Unexpected data after value", self._pos)
        return items[0]

    def _parse_items(self, root: bool = False) -> list[Any]:
        text = self._text
        items: list[Any] = []
        dotted = False
        closed = False

        while True:
            while self._pos < len(text) and text[self._pos] in _WHITESPACE:
                self._pos += 1
            if self._pos >= len(text):
                break

            char = text[self._pos]
            if char == ")":
                if root:
                    raise ParseError("Unbalanced closing bracket", self._pos)
                self._pos += 1
                closed = True
                break
            if char == "(":
                self._pos += 1
                items.append(self._parse_list())
            elif char == '"':
                self._pos += 1
                items.append(self._parse_string())
            else:
                start = self._pos
                symbol = self._parse_symbol()
                if symbol == _DOT:
                    # Only "(car . cdr)" is legal.
                    if root or dotted or len(items) != 1:
                        raise ParseError("Invalid cons cell syntax", start)
                    dotted = True
                items.append(symbol)

        if not root and not closed:
            raise ParseError("Premature end, expected closing bracket", self._pos)
        if dotted and len(items) != 3:
            raise ParseError("Invalid cons cell syntax", self._pos)
        return items

    def _parse_list(self) -> list[Any] | Cons:
        items = self._parse_items()
        if len(items) == 3 and items[1] == _DOT:
            return Cons(items[0], items[2])
        return items

    def _parse_symbol(self) -> int | Symbol | None:
        text = self._text
        chars: list[str] = []
        while self._pos < len(text) and text[self._pos] not in _DELIMITERS:
            if text[self._pos] == "\\" and text[self._pos + 1 : self._pos + 2] == " ":
                chars.append(" ")
                self._pos += 2
            else:
                chars.append(text[self._pos])
                self._pos += 1
        name = "".join(chars)

        if _NUMBER_RE.match(name):
            return int(name)
        if name == "nil":
            return None
        return Symbol(name)

    def _parse_string(self) -> str:
        text = self._text
        start = self._pos
        has_escapes = False
        while self._pos < len(text) and text[self._pos] != '"':
            if text[self._pos] == "\\":
                if self._pos + 1 >= len(text):
                    raise ParseError(
                        "Expected character after escape backslash", self._pos
                    )
                self._pos += 2
                has_escapes = True
            else:
                self._pos += 1
        if self._pos >= len(text):
            raise ParseError("Unterminated string", start - 1)

        end = self._pos
        self._pos += 1
        if not has_escapes:
            return text[start:end]
        try:
            return json.loads(text[start - 1 : end + 1])
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid string escape: {e.msg}", start - 1) from None


def parse(text: str) -> Any:
    """Parse one S-expression.

    Args:
        text: Source text holding exactly one value.

    Returns:
        The decoded value, or a ParseError instance if the input is malformed.
    """
    try:
        return _Parser(text).parse()
    except ParseError as e:
        return e


def loads(text: str) -> Any:
    """Parse one S-expression, raising ParseError on malformed input."""
    result = parse(text)
    if isinstance(result, ParseError):
        raise result
    return result


def dumps(value: Any) -> str:
    """Serialize a value to S-expression text.

    Raises:
        TypeError: If the value (or a nested value) has no S-expression form.
        ValueError: If a symbol name would read back as a different value.
    """
    if value is None or value is False:
        return "nil"
    if value is True:
        return "t"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str):
        return json.dumps(value, ensure_ascii=False)
    if isinstance(value, Symbol):
        return _dump_symbol(value)
    if isinstance(value, Cons):
        return f"({dumps(value.car)} . {dumps(value.cdr)})"
    if isinstance(value, (list, tuple)):
        return "(" + " ".join(dumps(item) for item in value) + ")"
    raise TypeError(f"Cannot serialize {type(value).__name__} as S-expression")


def _dump_symbol(symbol: Symbol) -> str:
    name = symbol.name
    if (
        not name
        or name in ("nil", ".")
        or name.endswith("\\")
        or _NUMBER_RE.match(name)
        or any(char in _UNWRITABLE for char in name)
    ):
        raise ValueError(f"Symbol {name!r} cannot be written as an S-expression")
    return name.replace(" ", "\\ ")
