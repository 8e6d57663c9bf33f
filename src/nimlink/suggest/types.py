"""nimsuggest request and answer types."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from nimlink.epc.sexp import Symbol

# Reply returned by nimsuggest when its own EPC link is broken.
CONNECTION_CLOSED_SENTINEL = "EPC Connection closed"

ROW_FIELD_COUNT = 8


class SuggestType(Enum):
    """nimsuggest commands. The value is sent verbatim as the method symbol."""

    SUGGEST = "sug"
    CONTEXT = "con"
    DEFINITION = "def"
    USAGES = "use"
    PROJECT_USAGES = "dus"
    CHECK = "chk"
    # Every token in the file as (symbol kind, line, column, length)
    HIGHLIGHT = "highlight"
    OUTLINE = "outline"
    # Answers "true" when the file belongs to the project
    KNOWN = "known"


class RowDecodeError(ValueError):
    """A daemon answer row does not have the expected shape."""


@dataclass(slots=True)
class SuggestResult:
    """One answer row from nimsuggest.

    Lines start at 1 and columns at 0, as nimsuggest reports them.
    """

    # Three letter answer kind, e.g. "def" or "sug"
    answer_type: str = ""
    # Symbol kind, e.g. "skProc"; for scalar answers, the answer itself
    suggest: str = ""
    # Qualified name parts, e.g. ["module", "proc"]
    names: list[str] = field(default_factory=list)
    # Type or full signature
    type: str = ""
    path: str = ""
    line: int = 1
    column: int = 0
    documentation: str = ""

    @property
    def full_name(self) -> str:
        return ".".join(self.names)

    @property
    def symbol_name(self) -> str:
        return self.names[-1] if self.names else ""

    @property
    def module_name(self) -> str:
        return self.names[0] if self.names else ""

    @property
    def container_name(self) -> str:
        return ".".join(self.names[:-1])


def _text(value: Any, field_name: str) -> str:
    if value is None:
        return ""
    if isinstance(value, Symbol):
        return value.name
    if isinstance(value, str):
        return value
    raise RowDecodeError(f"{field_name} must be text, got {type(value).__name__}")


def _integer(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise RowDecodeError(f"{field_name} must be an integer, got {value!r}")
    return value


def _names(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, Symbol)):
        return [_text(value, "names")]
    if not isinstance(value, list):
        raise RowDecodeError(f"names must be a list, got {type(value).__name__}")
    return [_text(part, "names") for part in value]


_CODE_BLOCK_RE = re.compile(r"\.\. code-block:: (\w+)\r?\n(( .*\r?\n?)+)")
_LINK_RE = re.compile(r"`([^<`]+)<([^>]+)>`_")


def rst_to_markdown(doc: str) -> str:
    """Convert the reStructuredText bits nimsuggest emits to Markdown."""
    if not doc:
        return doc
    doc = doc.replace("``", "`")
    doc = _CODE_BLOCK_RE.sub(lambda m: f"```{m.group(1)}\n{m.group(2)}\n```\n", doc)
    return _LINK_RE.sub(r"[\1](\2)", doc)


def decode_row(parts: Any) -> SuggestResult:
    """Decode one positional answer row.

    Row layout: answer type, symbol kind, qualified name parts, file path,
    type/signature, line, column, documentation. Extra trailing fields are
    ignored.

    Raises:
        RowDecodeError: If the row is too short or a field has the wrong type.
    """
    if not isinstance(parts, Sequence) or isinstance(parts, str):
        raise RowDecodeError(f"row must be a list, got {type(parts).__name__}")
    if len(parts) < ROW_FIELD_COUNT:
        raise RowDecodeError(
            f"row has {len(parts)} fields, expected at least {ROW_FIELD_COUNT}"
        )

    return SuggestResult(
        answer_type=_text(parts[0], "answer_type"),
        suggest=_text(parts[1], "suggest"),
        names=_names(parts[2]),
        path=_text(parts[3], "path").replace("\\,\\", "\\"),
        type=_text(parts[4], "type"),
        line=_integer(parts[5], "line"),
        column=_integer(parts[6], "column"),
        documentation=rst_to_markdown(_text(parts[7], "documentation")),
    )
