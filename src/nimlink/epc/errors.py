"""EPC transport errors."""

from typing import Any


class EPCError(Exception):
    """Base class for EPC failures."""


class EPCConnectionClosed(EPCError):
    """The connection closed before a reply arrived, or was already closed."""


class EPCProtocolError(EPCError):
    """The peer sent data that cannot be decoded or correlated."""


class EPCRemoteError(EPCError):
    """The remote side answered a call with return-error or epc-error."""

    def __init__(self, payload: Any, kind: str = "return-error"):
        super().__init__(str(payload))
        self.payload = payload
        self.kind = kind


class EPCEncodeError(EPCError):
    """A call's arguments could not be encoded; nothing was sent."""
