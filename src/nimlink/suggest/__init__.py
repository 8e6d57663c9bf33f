"""nimsuggest integration.

Public API:
- SuggestClient: Runs nimsuggest commands for source files
- SuggestSupervisor: Owns one nimsuggest daemon per project

Types:
- SuggestResult: One decoded answer row
- SuggestType: The nimsuggest commands
- ProjectFile / ProjectResolver: Which daemon answers for a file
"""

from nimlink.suggest.client import SuggestClient, decode_answer
from nimlink.suggest.executable import (
    detect_version,
    find_nimsuggest,
    is_version_at_least,
)
from nimlink.suggest.projects import ProjectFile, ProjectResolver
from nimlink.suggest.supervisor import (
    DaemonSession,
    HandshakeError,
    SuggestError,
    SuggestSupervisor,
)
from nimlink.suggest.types import (
    RowDecodeError,
    SuggestResult,
    SuggestType,
    decode_row,
)

__all__ = [
    "DaemonSession",
    "HandshakeError",
    "ProjectFile",
    "ProjectResolver",
    "RowDecodeError",
    "SuggestClient",
    "SuggestError",
    "SuggestResult",
    "SuggestSupervisor",
    "SuggestType",
    "decode_answer",
    "decode_row",
    "detect_version",
    "find_nimsuggest",
    "is_version_at_least",
]
