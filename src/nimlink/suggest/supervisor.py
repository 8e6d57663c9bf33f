"""nimsuggest process supervision.

One daemon per project, started on first use. Each project slot holds the
spawn task rather than a finished session, so concurrent requests for a
project that is still starting wait on the same spawn instead of launching a
second process.

Sessions are torn down when the daemon exits, when its EPC connection drops,
when they sit idle past the configured timeout, or on explicit close.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from nimlink.config.models import SuggestConfig
from nimlink.epc.peer import EPCPeer
from nimlink.suggest.projects import ProjectFile

logger = logging.getLogger(__name__)

# Seconds to wait for a killed daemon to be reaped
KILL_WAIT_TIMEOUT = 5.0

_STREAM_CHUNK_SIZE = 4096


class SuggestError(Exception):
    """nimsuggest could not be started or queried."""


class HandshakeError(SuggestError):
    """nimsuggest did not announce a usable port on startup."""


@dataclass
class DaemonSession:
    """A running nimsuggest process and the EPC connection to it."""

    project: ProjectFile
    process: asyncio.subprocess.Process
    peer: EPCPeer
    port: int
    started_at: float = field(default_factory=time.monotonic)
    last_activity: float = field(default_factory=time.monotonic)
    closing: bool = False

    @property
    def key(self) -> str:
        return self.project.key

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def alive(self) -> bool:
        return self.process.returncode is None and not self.peer.closed

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    def idle_seconds(self, now: float | None = None) -> float:
        return (now if now is not None else time.monotonic()) - self.last_activity

    async def call(self, method: str, *args: Any) -> Any:
        """Call a nimsuggest method, refreshing the activity clock on success."""
        result = await self.peer.call_method(method, *args)
        self.touch()
        return result


def _kill(process: asyncio.subprocess.Process) -> None:
    if process.returncode is None:
        with contextlib.suppress(ProcessLookupError):
            process.kill()


def _usable(task: asyncio.Task[DaemonSession]) -> bool:
    return (
        not task.cancelled() and task.exception() is None and task.result().alive
    )


class SuggestSupervisor:
    """Own the nimsuggest processes, one per project.

    Example:
        async with SuggestSupervisor(["nimsuggest"]) as supervisor:
            session = await supervisor.get_session(project)
            rows = await session.call("def", "/src/a.nim", 3, 4, "")
    """

    def __init__(
        self,
        command: list[str],
        *,
        log: bool = False,
        refresh_on_check: bool = False,
        idle_timeout: float = 300.0,
        sweep_interval: float = 5.0,
        handshake_timeout: float = 10.0,
    ):
        if not command:
            raise ValueError("nimsuggest command is required")
        self._command = list(command)
        self._log = log
        self._refresh_on_check = refresh_on_check
        self._idle_timeout = idle_timeout
        self._sweep_interval = sweep_interval
        self._handshake_timeout = handshake_timeout
        self._slots: dict[str, asyncio.Task[DaemonSession]] = {}
        self._sweep_task: asyncio.Task | None = None
        self._background: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls, config: SuggestConfig, command: list[str]
    ) -> "SuggestSupervisor":
        return cls(
            command,
            log=config.log,
            refresh_on_check=config.refresh_on_check,
            idle_timeout=config.idle_timeout,
            sweep_interval=config.sweep_interval,
            handshake_timeout=config.handshake_timeout,
        )

    async def __aenter__(self) -> "SuggestSupervisor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close_all()

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def build_args(self, project: ProjectFile) -> list[str]:
        """Full command line used to launch the daemon for a project."""
        args = [*self._command, "--epc", "--v2"]
        if self._log:
            args.append("--log")
        if self._refresh_on_check:
            args.append("--refresh:on")
        args.append(project.file)
        return args

    async def start(self) -> None:
        """Start the idle sweeper. A zero idle timeout disables it."""
        if self._sweep_task is None and self._idle_timeout > 0:
            self._sweep_task = asyncio.create_task(self._sweep_loop())

    async def stop(self) -> None:
        """Stop the idle sweeper without touching running sessions."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweep_task
            self._sweep_task = None

    def sessions(self) -> dict[str, DaemonSession]:
        """Snapshot of the sessions that finished starting."""
        live = {}
        for key, task in self._slots.items():
            if task.done() and not task.cancelled() and task.exception() is None:
                live[key] = task.result()
        return live

    async def get_session(self, project: ProjectFile) -> DaemonSession:
        """Return the project's session, starting the daemon if needed.

        Raises:
            SuggestError: If the daemon cannot be started.
            HandshakeError: If the daemon does not report a port.
            OSError: If the EPC connection cannot be opened.
        """
        key = project.key
        task = self._slots.get(key)

        if task is not None and task.done() and not _usable(task):
            del self._slots[key]
            task = None

        if task is None:
            task = asyncio.create_task(
                self._spawn(project), name=f"nimsuggest-spawn:{key}"
            )
            self._slots[key] = task
            task.add_done_callback(lambda t: self._on_spawn_done(key, t))

        # Shielded: a waiter giving up must not cancel the spawn for the others.
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and (current is None or not current.cancelling()):
                raise SuggestError(f"nimsuggest startup for {key} was cancelled") from None
            raise

    async def close_session(self, project: ProjectFile | str) -> None:
        """Stop the project's daemon, if any. Safe to call repeatedly."""
        key = project if isinstance(project, str) else project.key
        task = self._slots.pop(key, None)
        if task is None:
            return

        if not task.done():
            logger.info(f"Cancelling nimsuggest startup for {key}")
            task.cancel()
            await asyncio.wait([task])
            return
        if task.cancelled() or task.exception() is not None:
            return

        session = task.result()
        logger.info(f"Closing nimsuggest for {key} (pid {session.pid})")
        await self._terminate(session)

    async def close_all(self) -> None:
        """Stop the sweeper and every daemon."""
        logger.info("Closing all nimsuggest processes")
        await self.stop()
        keys = list(self._slots)
        if keys:
            await asyncio.gather(*(self.close_session(key) for key in keys))

        pending = [task for task in self._background if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=KILL_WAIT_TIMEOUT)
            for task in still_running:
                task.cancel()

    async def sweep_idle(self, now: float | None = None) -> list[str]:
        """Close sessions idle past the timeout.

        Sessions with calls in flight are never considered idle.

        Returns:
            Keys of the sessions that were closed.
        """
        now = now if now is not None else time.monotonic()
        closed = []
        for key, session in self.sessions().items():
            if session.peer.pending_count:
                continue
            idle = session.idle_seconds(now)
            if idle > self._idle_timeout:
                logger.info(f"Closing nimsuggest for {key}: idle for {idle:.0f}s")
                await self.close_session(key)
                closed.append(key)
        return closed

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep_idle()
            except Exception:
                logger.exception("Idle sweep failed")

    async def _spawn(self, project: ProjectFile) -> DaemonSession:
        key = project.key
        args = self.build_args(project)
        logger.info(f"Starting nimsuggest for {key}")
        logger.debug(f"nimsuggest command: {args} (cwd {project.root})")

        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(project.root),
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SuggestError(f"Failed to start {args[0]}: {e}") from e

        assert process.stdout is not None and process.stderr is not None
        self._track(self._drain(process.stderr, key, "stderr"))

        started = False
        try:
            port = await self._read_port(process)
            peer = await EPCPeer.connect(port)
            started = True
        finally:
            if not started:
                _kill(process)
                self._track(process.wait())

        session = DaemonSession(project=project, process=process, peer=peer, port=port)
        peer.add_close_callback(lambda _peer: self._on_peer_closed(key, session))
        self._track(self._watch_process(key, session))
        self._track(self._drain(process.stdout, key, "stdout"))
        logger.info(f"nimsuggest for {key} running (pid {process.pid}, port {port})")
        return session

    async def _read_port(self, process: asyncio.subprocess.Process) -> int:
        assert process.stdout is not None
        try:
            line = await asyncio.wait_for(
                process.stdout.readline(), timeout=self._handshake_timeout
            )
        except TimeoutError:
            raise HandshakeError(
                f"nimsuggest did not report a port within {self._handshake_timeout}s"
            ) from None

        text = line.decode("utf-8", errors="replace").strip()
        if not text:
            try:
                returncode = await asyncio.wait_for(
                    process.wait(), timeout=self._handshake_timeout
                )
            except TimeoutError:
                raise HandshakeError(
                    "nimsuggest closed its output without reporting a port"
                ) from None
            raise HandshakeError(
                f"nimsuggest exited before reporting a port (exit code {returncode})"
            )
        try:
            return int(text)
        except ValueError:
            raise HandshakeError(
                f"nimsuggest returned unknown port number: {text!r}"
            ) from None

    async def _watch_process(self, key: str, session: DaemonSession) -> None:
        returncode = await session.process.wait()
        if session.closing:
            logger.debug(f"nimsuggest for {key} stopped (exit code {returncode})")
        elif returncode < 0:
            logger.warning(f"nimsuggest for {key} killed by signal {-returncode}")
        elif returncode != 0:
            logger.warning(f"nimsuggest for {key} exited with code {returncode}")
        else:
            logger.info(f"nimsuggest for {key} exited")
        self._evict(key, session)
        session.peer.stop()

    async def _drain(
        self, stream: asyncio.StreamReader, key: str, name: str
    ) -> None:
        # Pipes must be drained or the daemon stalls once they fill.
        while chunk := await stream.read(_STREAM_CHUNK_SIZE):
            text = chunk.decode("utf-8", errors="replace").rstrip()
            if text:
                logger.debug(f"[{key}] {name}: {text}")

    async def _terminate(self, session: DaemonSession) -> None:
        session.closing = True
        session.peer.stop()
        _kill(session.process)
        try:
            await asyncio.wait_for(session.process.wait(), timeout=KILL_WAIT_TIMEOUT)
        except TimeoutError:
            logger.warning(f"nimsuggest pid {session.pid} did not exit after kill")

    def _on_peer_closed(self, key: str, session: DaemonSession) -> None:
        self._evict(key, session)
        if not session.closing and session.process.returncode is None:
            logger.info(f"EPC connection to nimsuggest for {key} lost")
            _kill(session.process)

    def _on_spawn_done(self, key: str, task: asyncio.Task[DaemonSession]) -> None:
        if task.cancelled():
            failed = True
        else:
            error = task.exception()
            failed = error is not None
            if error is not None:
                logger.warning(f"nimsuggest for {key} failed to start: {error}")
        if failed and self._slots.get(key) is task:
            del self._slots[key]

    def _evict(self, key: str, session: DaemonSession) -> None:
        task = self._slots.get(key)
        if (
            task is not None
            and task.done()
            and not task.cancelled()
            and task.exception() is None
            and task.result() is session
        ):
            del self._slots[key]

    def _track(self, coro: Any) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
