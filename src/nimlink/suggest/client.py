"""Request facade over the nimsuggest supervisor.

Every editor feature goes through SuggestClient.request(). Failures never
reach the caller: a broken daemon is logged, closed so the next request starts
a fresh one, and the request answers with an empty list.
"""

import asyncio
import logging
import os
import re
from collections.abc import Callable, Iterable
from pathlib import Path
from typing import Any

from nimlink.config.models import NimlinkConfig
from nimlink.epc.errors import EPCEncodeError
from nimlink.epc.sexp import Symbol
from nimlink.logging import TRACE_LOGGER
from nimlink.suggest.executable import find_nimsuggest
from nimlink.suggest.projects import ProjectFile, ProjectResolver, normalize_path
from nimlink.suggest.supervisor import DaemonSession, SuggestSupervisor
from nimlink.suggest.types import (
    CONNECTION_CLOSED_SENTINEL,
    RowDecodeError,
    SuggestResult,
    SuggestType,
    decode_row,
)

logger = logging.getLogger(__name__)
trace_logger = logging.getLogger(TRACE_LOGGER)

# nimsuggest cannot analyze NimScript or config files
IGNORED_SUFFIXES = frozenset({".nims", ".cfg"})

OpenDocuments = Callable[[], Iterable[str | os.PathLike[str]]]


def decode_answer(value: Any) -> list[SuggestResult]:
    """Turn a raw nimsuggest return value into result rows.

    Lists are decoded row by row and malformed rows are dropped. Any other
    non-nil value becomes a single row carrying it in ``suggest``.
    """
    if value is None:
        return []
    if isinstance(value, list):
        results = []
        for row in value:
            try:
                results.append(decode_row(row))
            except RowDecodeError as e:
                logger.debug(f"Dropping malformed nimsuggest row: {e}")
        return results
    if isinstance(value, Symbol):
        return [SuggestResult(suggest=value.name)]
    return [SuggestResult(suggest=str(value))]


class SuggestClient:
    """Run nimsuggest commands for source files.

    Args:
        supervisor: Daemon supervisor, or None when nimsuggest is unavailable
            (every request then answers with an empty list).
        resolver: Maps files to projects.
        open_documents: Returns the files currently open in the editor. Outside
            project mode, a daemon is closed right after a request when its
            file is no longer open. None disables that check.
        call_timeout: Default seconds to wait for an answer before giving up.
        trace: Log every call and answer on the trace logger.
    """

    def __init__(
        self,
        supervisor: SuggestSupervisor | None,
        resolver: ProjectResolver | None = None,
        *,
        open_documents: OpenDocuments | None = None,
        call_timeout: float | None = None,
        trace: bool = False,
    ):
        self._supervisor = supervisor
        self._resolver = resolver or ProjectResolver()
        self._open_documents = open_documents
        self._call_timeout = call_timeout
        self._trace = trace

    @classmethod
    def from_config(
        cls,
        config: NimlinkConfig,
        open_documents: OpenDocuments | None = None,
    ) -> "SuggestClient":
        command = find_nimsuggest(config.suggest.executable)
        if command is None:
            logger.warning("nimsuggest not found; language features are disabled")
            supervisor = None
        else:
            supervisor = SuggestSupervisor.from_config(config.suggest, command)
        return cls(
            supervisor,
            ProjectResolver(config.projects),
            open_documents=open_documents,
            call_timeout=config.suggest.call_timeout,
            trace=config.suggest.trace,
        )

    async def __aenter__(self) -> "SuggestClient":
        if self._supervisor is not None:
            await self._supervisor.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    @property
    def available(self) -> bool:
        return self._supervisor is not None

    @property
    def supervisor(self) -> SuggestSupervisor | None:
        return self._supervisor

    async def close(self) -> None:
        if self._supervisor is not None:
            await self._supervisor.close_all()

    async def request(
        self,
        suggest_type: SuggestType,
        filename: str | os.PathLike[str],
        line: int,
        column: int,
        dirty_file: str | os.PathLike[str] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[SuggestResult]:
        """Run one nimsuggest command.

        Args:
            suggest_type: Command to run.
            filename: Source file the position refers to.
            line: 1-based line.
            column: 0-based column.
            dirty_file: File holding the unsaved buffer contents, if any.
            timeout: Seconds to wait before abandoning the answer. Defaults to
                the client's call_timeout.

        Returns:
            Result rows; empty on any failure.
        """
        if self._supervisor is None:
            return []
        if Path(filename).suffix.lower() in IGNORED_SUFFIXES:
            return []

        project = self._resolver.resolve(filename)
        command = suggest_type.value
        normalized = re.sub(r"\\+", "/", os.fspath(filename))
        dirty = os.fspath(dirty_file) if dirty_file else ""
        timeout = timeout if timeout is not None else self._call_timeout

        try:
            session = await self._supervisor.get_session(project)
            self._trace_event(session, f"{command} {normalized}:{line}:{column}")
            call = session.call(command, normalized, line, column, dirty)
            if timeout is None:
                answer = await call
            else:
                try:
                    answer = await asyncio.wait_for(call, timeout)
                except TimeoutError:
                    logger.debug(
                        f"nimsuggest {command} for {normalized} timed out after "
                        f"{timeout}s; answer abandoned"
                    )
                    return []
            self._trace_event(session, f"{command} {normalized} = {answer!r}")
        except EPCEncodeError as e:
            # Only this request is bad; the daemon never saw it.
            logger.warning(f"nimsuggest {command} not sent for {normalized!r}: {e}")
            return []
        except Exception as e:
            logger.warning(f"nimsuggest {command} failed for {normalized}: {e}")
            await self._supervisor.close_session(project)
            return []

        if answer == CONNECTION_CLOSED_SENTINEL:
            logger.error(f"nimsuggest for {project.key} lost its EPC connection")
            await self._supervisor.close_session(project)
            return []

        results = decode_answer(answer)
        await self._release_if_unused(project, filename)
        return results

    async def suggest(
        self, filename: str, line: int, column: int, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        """Completion candidates at a position."""
        return await self.request(SuggestType.SUGGEST, filename, line, column, dirty_file)

    async def context(
        self, filename: str, line: int, column: int, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        """Signatures of the call enclosing a position."""
        return await self.request(SuggestType.CONTEXT, filename, line, column, dirty_file)

    async def definition(
        self, filename: str, line: int, column: int, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        return await self.request(
            SuggestType.DEFINITION, filename, line, column, dirty_file
        )

    async def usages(
        self, filename: str, line: int, column: int, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        return await self.request(SuggestType.USAGES, filename, line, column, dirty_file)

    async def project_usages(
        self, filename: str, line: int, column: int, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        return await self.request(
            SuggestType.PROJECT_USAGES, filename, line, column, dirty_file
        )

    async def check(
        self, filename: str, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        return await self.request(SuggestType.CHECK, filename, 0, 0, dirty_file)

    async def highlight(
        self, filename: str, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        return await self.request(SuggestType.HIGHLIGHT, filename, 0, 0, dirty_file)

    async def outline(
        self, filename: str, dirty_file: str | None = None
    ) -> list[SuggestResult]:
        return await self.request(SuggestType.OUTLINE, filename, 0, 0, dirty_file)

    async def is_known(self, filename: str) -> bool:
        """Whether the file belongs to its project."""
        results = await self.request(SuggestType.KNOWN, filename, 0, 0)
        return bool(results) and results[0].suggest == "true"

    async def _release_if_unused(
        self, project: ProjectFile, filename: str | os.PathLike[str]
    ) -> None:
        if self._resolver.project_mode or self._open_documents is None:
            return
        target = normalize_path(filename)
        if any(normalize_path(doc) == target for doc in self._open_documents()):
            return
        assert self._supervisor is not None
        logger.debug(f"Closing nimsuggest for {project.key}: file no longer open")
        await self._supervisor.close_session(project)

    def _trace_event(self, session: DaemonSession, message: str) -> None:
        if self._trace:
            trace_logger.debug(f"[{session.pid}:{session.key}] {message}")
