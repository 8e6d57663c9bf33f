"""Tests for the nimsuggest request facade."""

import asyncio
import logging
from pathlib import Path
from typing import Any

import pytest

from nimlink.config.models import NimlinkConfig, SuggestConfig
from nimlink.epc import EPCConnectionClosed, EPCEncodeError, Symbol
from nimlink.logging import TRACE_LOGGER
from nimlink.suggest.client import SuggestClient, decode_answer
from nimlink.suggest.projects import ProjectFile, ProjectResolver
from nimlink.suggest.supervisor import HandshakeError
from nimlink.suggest.types import SuggestType
from tests.conftest import make_project

VALID_ROW = [
    "def",
    Symbol("skProc"),
    ["main", "greet"],
    "/src/main.nim",
    "proc (name: string)",
    3,
    5,
    "",
    100,
]
SHORT_ROW = ["def", Symbol("skVar"), ["main", "x"], "/src/main.nim", "int"]


class StubSession:
    """Session double that answers every call the same way."""

    def __init__(self, answer: Any = None, error: Exception | None = None, delay=0.0):
        self.answer = answer
        self.error = error
        self.delay = delay
        self.calls: list[tuple] = []
        self.pid = 4242
        self.key = "stub"

    async def call(self, method: str, *args: Any) -> Any:
        self.calls.append((method, *args))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.answer


class StubSupervisor:
    """Supervisor double that hands out one session."""

    def __init__(self, session: StubSession | None = None, error=None):
        self.session = session or StubSession()
        self.error = error
        self.requested: list[ProjectFile] = []
        self.closed: list[ProjectFile] = []

    async def get_session(self, project: ProjectFile) -> StubSession:
        self.requested.append(project)
        if self.error is not None:
            raise self.error
        return self.session

    async def close_session(self, project: ProjectFile) -> None:
        self.closed.append(project)

    async def start(self) -> None:
        pass

    async def close_all(self) -> None:
        pass


def make_client(answer: Any = None, **kwargs) -> tuple[SuggestClient, StubSupervisor]:
    supervisor = StubSupervisor(StubSession(answer))
    return SuggestClient(supervisor, **kwargs), supervisor


class TestDecodeAnswer:
    """Tests for decode_answer()."""

    def test_malformed_rows_are_dropped(self):
        results = decode_answer([SHORT_ROW, VALID_ROW])

        assert len(results) == 1
        assert results[0].full_name == "main.greet"
        assert results[0].line == 3
        assert results[0].column == 5

    def test_nil_is_empty(self):
        assert decode_answer(None) == []

    def test_empty_list(self):
        assert decode_answer([]) == []

    def test_symbol_scalar(self):
        results = decode_answer(Symbol("true"))
        assert len(results) == 1
        assert results[0].suggest == "true"

    def test_number_scalar(self):
        assert decode_answer(12)[0].suggest == "12"

    def test_string_scalar(self):
        assert decode_answer("done")[0].suggest == "done"


class TestRequest:
    """Tests for SuggestClient.request()."""

    @pytest.mark.asyncio
    async def test_sends_command_and_position(self):
        client, supervisor = make_client([VALID_ROW])

        results = await client.request(SuggestType.DEFINITION, "/src/main.nim", 3, 4)

        assert supervisor.session.calls == [("def", "/src/main.nim", 3, 4, "")]
        assert [r.symbol_name for r in results] == ["greet"]

    @pytest.mark.asyncio
    async def test_dirty_file_is_sent(self):
        client, supervisor = make_client([])

        await client.suggest("/src/main.nim", 1, 0, "/tmp/dirty.nim")

        assert supervisor.session.calls[0][-1] == "/tmp/dirty.nim"

    @pytest.mark.asyncio
    async def test_backslashes_are_normalized(self):
        client, supervisor = make_client([])

        await client.request(SuggestType.USAGES, "C:\\src\\\\main.nim", 1, 0)

        assert supervisor.session.calls[0][1] == "C:/src/main.nim"

    @pytest.mark.asyncio
    async def test_short_rows_dropped(self):
        client, _ = make_client([VALID_ROW, SHORT_ROW])

        results = await client.definition("/src/main.nim", 3, 4)

        assert len(results) == 1

    @pytest.mark.asyncio
    async def test_nil_answer(self):
        client, _ = make_client(None)
        assert await client.check("/src/main.nim") == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("filename", ["/src/config.nims", "/src/nim.cfg"])
    async def test_script_and_config_files_skipped(self, filename):
        client, supervisor = make_client([VALID_ROW])

        assert await client.outline(filename) == []
        assert supervisor.requested == []

    @pytest.mark.asyncio
    async def test_without_supervisor(self):
        client = SuggestClient(None)

        assert not client.available
        assert await client.suggest("/src/main.nim", 1, 0) == []
        await client.close()

    @pytest.mark.asyncio
    async def test_position_free_commands_use_origin(self):
        client, supervisor = make_client(None)

        await client.check("/src/main.nim")
        await client.highlight("/src/main.nim")
        await client.outline("/src/main.nim")

        assert [c[0] for c in supervisor.session.calls] == ["chk", "highlight", "outline"]
        assert all(c[2:4] == (0, 0) for c in supervisor.session.calls)


class TestFailures:
    """Daemon failures come back as empty results."""

    @pytest.mark.asyncio
    async def test_connection_closed_sentinel_closes_session(self):
        client, supervisor = make_client("EPC Connection closed")

        assert await client.suggest("/src/main.nim", 1, 0) == []
        assert supervisor.closed == supervisor.requested

    @pytest.mark.asyncio
    async def test_call_error_closes_session(self):
        supervisor = StubSupervisor(StubSession(error=EPCConnectionClosed("gone")))
        client = SuggestClient(supervisor)

        assert await client.definition("/src/main.nim", 1, 0) == []
        assert len(supervisor.closed) == 1

    @pytest.mark.asyncio
    async def test_unencodable_request_keeps_session(self):
        error = EPCEncodeError("Cannot encode def call")
        supervisor = StubSupervisor(StubSession(error=error))
        client = SuggestClient(supervisor)

        assert await client.definition("/src/main.nim", 1, 0) == []
        assert supervisor.closed == []

    @pytest.mark.asyncio
    async def test_startup_error_closes_session(self):
        supervisor = StubSupervisor(error=HandshakeError("no port"))
        client = SuggestClient(supervisor)

        assert await client.definition("/src/main.nim", 1, 0) == []
        assert len(supervisor.closed) == 1

    @pytest.mark.asyncio
    async def test_timeout_abandons_without_closing(self):
        supervisor = StubSupervisor(StubSession([VALID_ROW], delay=1.0))
        client = SuggestClient(supervisor, call_timeout=0.05)

        assert await client.definition("/src/main.nim", 1, 0) == []
        assert supervisor.closed == []

    @pytest.mark.asyncio
    async def test_per_request_timeout_overrides_default(self):
        supervisor = StubSupervisor(StubSession([VALID_ROW], delay=0.1))
        client = SuggestClient(supervisor, call_timeout=0.01)

        results = await client.request(
            SuggestType.DEFINITION, "/src/main.nim", 1, 0, timeout=5
        )
        assert len(results) == 1


class TestSessionRelease:
    """Tests for closing per-file daemons once their file is closed."""

    @pytest.mark.asyncio
    async def test_closed_document_releases_session(self):
        client, supervisor = make_client([], open_documents=lambda: [])

        await client.suggest("/src/main.nim", 1, 0)

        assert len(supervisor.closed) == 1

    @pytest.mark.asyncio
    async def test_open_document_keeps_session(self):
        client, supervisor = make_client(
            [], open_documents=lambda: ["/src/other.nim", "/src/main.nim"]
        )

        await client.suggest("/src/main.nim", 1, 0)

        assert supervisor.closed == []

    @pytest.mark.asyncio
    async def test_project_mode_keeps_session(self):
        client, supervisor = make_client(
            [],
            resolver=ProjectResolver(["/src/app.nim"]),
            open_documents=lambda: [],
        )

        await client.suggest("/src/lib/util.nim", 1, 0)

        assert supervisor.closed == []
        assert supervisor.requested == [ProjectFile(Path("/src"), "app.nim")]

    @pytest.mark.asyncio
    async def test_no_document_tracking_keeps_session(self):
        client, supervisor = make_client([])

        await client.suggest("/src/main.nim", 1, 0)

        assert supervisor.closed == []


class TestIsKnown:
    """Tests for SuggestClient.is_known()."""

    @pytest.mark.asyncio
    async def test_true(self):
        client, supervisor = make_client(Symbol("true"))

        assert await client.is_known("/src/main.nim") is True
        assert supervisor.session.calls[0][0] == "known"

    @pytest.mark.asyncio
    async def test_false(self):
        client, _ = make_client(Symbol("false"))
        assert await client.is_known("/src/main.nim") is False

    @pytest.mark.asyncio
    async def test_nil(self):
        client, _ = make_client(None)
        assert await client.is_known("/src/main.nim") is False


class TestTrace:
    """Tests for daemon traffic tracing."""

    @pytest.mark.asyncio
    async def test_trace_logs_call_and_answer(self, caplog):
        client, _ = make_client([VALID_ROW], trace=True)

        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            await client.definition("/src/main.nim", 3, 4)

        messages = [r.getMessage() for r in caplog.records if r.name == TRACE_LOGGER]
        assert len(messages) == 2
        assert "def /src/main.nim:3:4" in messages[0]
        assert "4242" in messages[0]

    @pytest.mark.asyncio
    async def test_no_trace_by_default(self, caplog):
        client, _ = make_client([VALID_ROW])

        with caplog.at_level(logging.DEBUG, logger=TRACE_LOGGER):
            await client.definition("/src/main.nim", 3, 4)

        assert not [r for r in caplog.records if r.name == TRACE_LOGGER]


class TestFromConfig:
    """Tests for SuggestClient.from_config()."""

    def test_configured_executable(self):
        config = NimlinkConfig(
            projects=[Path("/work/app.nim")],
            suggest=SuggestConfig(executable="/opt/nim/bin/nimsuggest", call_timeout=3),
        )

        client = SuggestClient.from_config(config)

        assert client.available
        assert client.supervisor is not None
        assert client.supervisor.command == ["/opt/nim/bin/nimsuggest"]

    def test_missing_executable(self, monkeypatch):
        monkeypatch.setattr("nimlink.suggest.executable.shutil.which", lambda _: None)

        client = SuggestClient.from_config(NimlinkConfig())

        assert not client.available


class TestWithDaemon:
    """End-to-end requests against the fake daemon."""

    @pytest.mark.asyncio
    async def test_definition(self, supervisor, project):
        client = SuggestClient(supervisor)

        results = await client.definition(str(project.path), 3, 4)

        assert len(results) == 1
        result = results[0]
        assert result.answer_type == "def"
        assert result.suggest == "skProc"
        assert result.full_name == "main.greet"
        assert result.path == str(project.path)
        assert (result.line, result.column) == (3, 4)
        assert result.documentation == "Says `hello`."

    @pytest.mark.asyncio
    async def test_is_known(self, supervisor, project):
        client = SuggestClient(supervisor)
        assert await client.is_known(str(project.path))

    @pytest.mark.asyncio
    async def test_check_nil(self, supervisor, project):
        client = SuggestClient(supervisor)
        assert await client.check(str(project.path)) == []

    @pytest.mark.asyncio
    async def test_recovers_after_crash(self, supervisor, project):
        client = SuggestClient(supervisor)
        first = await supervisor.get_session(project)
        with pytest.raises(EPCConnectionClosed):
            await first.call("crash")

        results = await client.definition(str(project.path), 1, 0)

        assert len(results) == 1
        assert supervisor.sessions()[project.key] is not first

    @pytest.mark.asyncio
    async def test_context_manager_closes_daemons(self, supervisor, project):
        async with SuggestClient(supervisor) as client:
            await client.suggest(str(project.path), 1, 0)
            session = supervisor.sessions()[project.key]
        assert session.process.returncode is not None

    @pytest.mark.asyncio
    async def test_unencodable_filename_spares_other_calls(
        self, supervisor, project
    ):
        client = SuggestClient(supervisor, ProjectResolver([project.path]))
        session = await supervisor.get_session(project)
        in_flight = asyncio.create_task(session.call("sleep", 300))

        bad_file = project.root / "bad\udcff.nim"
        assert await client.definition(str(bad_file), 1, 0) == []

        assert await in_flight == "slept"
        assert supervisor.sessions()[project.key] is session
        assert session.alive

    @pytest.mark.asyncio
    async def test_connection_closed_answer_restarts_daemon(
        self, supervisor, tmp_path
    ):
        lost = make_project(tmp_path / "lost", "lost.nim")
        client = SuggestClient(supervisor)
        first = await supervisor.get_session(lost)

        assert await client.definition(str(lost.path), 1, 0) == []
        assert lost.key not in supervisor.sessions()
        assert first.process.returncode is not None

        second = await supervisor.get_session(lost)
        assert second.pid != first.pid
        assert await second.call("pid") == second.pid
