"""EPC peer over a TCP stream.

One peer owns one connection. Calls are pipelined: any number may be in
flight, and replies are matched to callers by call id rather than by arrival
order.
"""

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from nimlink.epc.errors import (
    EPCConnectionClosed,
    EPCEncodeError,
    EPCError,
    EPCProtocolError,
    EPCRemoteError,
)
from nimlink.epc.framing import FrameDecoder, FrameError, encode_frame
from nimlink.epc.sexp import ParseError, Symbol, dumps, parse

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

_CALL = Symbol("call")
_EPC_ERROR = Symbol("epc-error")

CloseCallback = Callable[["EPCPeer"], None]


@dataclass
class PendingCall:
    """Bookkeeping for one call awaiting its reply."""

    uid: int
    method: str
    future: asyncio.Future[Any]
    issued_at: float = field(default_factory=time.monotonic)


class EPCPeer:
    """Client side of an EPC connection.

    Example:
        peer = await EPCPeer.connect(port)
        result = await peer.call_method("sug", "/src/a.nim", 3, 4, "")
        peer.stop()
    """

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self._reader = reader
        self._writer = writer
        self._decoder = FrameDecoder()
        self._pending: dict[int, PendingCall] = {}
        self._ids = itertools.count(1)
        self._closed = False
        self._close_callbacks: list[CloseCallback] = []
        self._read_task: asyncio.Task | None = None

    @classmethod
    async def connect(cls, port: int, host: str = "localhost") -> "EPCPeer":
        """Open a connection and start reading replies."""
        reader, writer = await asyncio.open_connection(host, port)
        peer = cls(reader, writer)
        peer.start()
        logger.debug(f"EPC connected to {host}:{port}")
        return peer

    def start(self) -> None:
        if self._read_task is None:
            self._read_task = asyncio.create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def add_close_callback(self, callback: CloseCallback) -> None:
        """Register a callback run once when the connection goes away.

        Runs immediately if the connection is already closed.
        """
        if self._closed:
            callback(self)
            return
        self._close_callbacks.append(callback)

    async def call_method(self, method: str, *args: Any) -> Any:
        """Call a remote method and wait for its reply.

        Args:
            method: Remote method name, sent as a symbol.
            *args: Arguments, sent as one S-expression list.

        Returns:
            The value carried by the ``return`` reply.

        Raises:
            EPCConnectionClosed: If the connection is or becomes closed.
            EPCEncodeError: If the arguments cannot be encoded. Nothing is
                sent and the connection stays usable.
            EPCRemoteError: If the remote side replies with an error.
            EPCProtocolError: If the reply stream cannot be decoded.
        """
        if self._closed:
            raise EPCConnectionClosed("Connection closed")

        uid = next(self._ids)
        try:
            frame = encode_frame(dumps([_CALL, uid, Symbol(method), list(args)]))
        except (UnicodeError, FrameError, TypeError, ValueError) as e:
            raise EPCEncodeError(f"Cannot encode {method} call: {e}") from e
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[uid] = PendingCall(uid=uid, method=method, future=future)

        try:
            self._writer.write(frame)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            self._pending.pop(uid, None)
            self._teardown(e)
            raise EPCConnectionClosed(f"Connection closed: {e}") from e

        try:
            return await future
        finally:
            # Drops the entry for abandoned calls, so late replies are ignored.
            self._pending.pop(uid, None)

    def stop(self) -> None:
        """Close the connection. Safe to call more than once."""
        if self._closed:
            return
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
        self._teardown(None)

    async def wait_closed(self) -> None:
        try:
            await self._writer.wait_closed()
        except (ConnectionError, OSError):
            pass

    async def _read_loop(self) -> None:
        error: BaseException | None = None
        try:
            while True:
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    if leftover := self._decoder.pending_bytes:
                        logger.warning(
                            f"EPC connection closed mid-frame, "
                            f"discarding {leftover} bytes"
                        )
                    break
                try:
                    payloads = self._decoder.feed(data)
                except FrameError as e:
                    logger.error(f"EPC stream desynchronized: {e}")
                    self._reject_all(EPCProtocolError, str(e))
                    error = e
                    break
                for payload in payloads:
                    self._dispatch(payload)
        except (ConnectionError, OSError) as e:
            error = e
        finally:
            self._teardown(error)

    def _dispatch(self, payload: str) -> None:
        message = parse(payload)
        if (
            isinstance(message, ParseError)
            or not isinstance(message, list)
            or len(message) < 3
            or not isinstance(message[0], Symbol)
        ):
            logger.warning(f"Received invalid SExp data: {payload[:200]!r}")
            self._reject_all(EPCProtocolError, "Received invalid SExp data")
            return

        kind = message[0].name
        uid = message[1]

        if kind in ("call", "methods"):
            self._send_error(uid, f"Method calls are not supported: {message[2]}")
            return

        pending = self._pending.pop(uid, None) if isinstance(uid, int) else None
        if pending is None:
            logger.debug(f"Dropping EPC reply for unknown call id {uid!r}")
            return
        if pending.future.done():
            return

        elapsed_ms = (time.monotonic() - pending.issued_at) * 1000
        logger.debug(f"EPC {kind} for {pending.method} #{uid} in {elapsed_ms:.1f}ms")

        if kind == "return":
            pending.future.set_result(message[2])
        elif kind in ("return-error", "epc-error"):
            pending.future.set_exception(EPCRemoteError(message[2], kind=kind))
        else:
            pending.future.set_exception(
                EPCProtocolError(f"Unknown reply kind: {kind}")
            )

    def _send_error(self, uid: Any, message: str) -> None:
        if self._closed:
            return
        try:
            self._writer.write(encode_frame(dumps([_EPC_ERROR, uid, message])))
        except (ConnectionError, OSError) as e:
            logger.debug(f"Failed to answer EPC request: {e}")

    def _reject_all(self, error_type: type[EPCError], message: str) -> None:
        pending = list(self._pending.values())
        self._pending.clear()
        for call in pending:
            if not call.future.done():
                call.future.set_exception(error_type(message))

    def _teardown(self, error: BaseException | None) -> None:
        if self._closed:
            return
        self._closed = True

        if error is not None:
            logger.info(f"EPC connection closed due to an error: {error}")
        else:
            logger.debug("EPC connection closed")

        self._reject_all(EPCConnectionClosed, "Connection closed")
        self._writer.close()

        callbacks = list(self._close_callbacks)
        self._close_callbacks.clear()
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                logger.exception("EPC close callback failed")
