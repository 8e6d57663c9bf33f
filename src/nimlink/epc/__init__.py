"""EPC (Emacs RPC) client: S-expression codec, framing and peer."""

from nimlink.epc.errors import (
    EPCConnectionClosed,
    EPCEncodeError,
    EPCError,
    EPCProtocolError,
    EPCRemoteError,
)
from nimlink.epc.framing import FrameDecoder, FrameError, decode_frame, encode_frame
from nimlink.epc.peer import EPCPeer
from nimlink.epc.sexp import Cons, ParseError, Symbol, dumps, loads, parse

__all__ = [
    "Cons",
    "EPCConnectionClosed",
    "EPCEncodeError",
    "EPCError",
    "EPCPeer",
    "EPCProtocolError",
    "EPCRemoteError",
    "FrameDecoder",
    "FrameError",
    "ParseError",
    "Symbol",
    "decode_frame",
    "dumps",
    "encode_frame",
    "loads",
    "parse",
]
