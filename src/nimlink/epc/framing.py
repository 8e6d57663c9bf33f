"""EPC message framing.

Each message is a 6 digit lowercase hex byte count followed by that many bytes
of UTF-8 payload. There is no delimiter and no trailing newline.
"""

import re

HEADER_SIZE = 6
MAX_PAYLOAD_SIZE = 16**HEADER_SIZE - 1

_HEADER_RE = re.compile(rb"[0-9a-fA-F]{6}")


class FrameError(Exception):
    """Frame cannot be encoded, or the stream header is corrupt."""


def encode_frame(payload: str) -> bytes:
    """Encode a payload as a length-prefixed frame.

    Raises:
        FrameError: If the payload does not fit the 6 digit length header.
    """
    data = payload.encode("utf-8")
    if len(data) > MAX_PAYLOAD_SIZE:
        raise FrameError(f"Payload too large: {len(data)} bytes")
    return f"{len(data):06x}".encode("ascii") + data


def decode_frame(buffer: bytearray) -> str | None:
    """Consume one complete frame from the front of the buffer.

    Returns None, leaving the buffer untouched, until the whole frame has
    arrived.

    Raises:
        FrameError: If the length header is not hex.
    """
    if len(buffer) < HEADER_SIZE:
        return None

    header = bytes(buffer[:HEADER_SIZE])
    if not _HEADER_RE.fullmatch(header):
        raise FrameError(f"Invalid frame header: {header!r}")
    length = int(header, 16)

    end = HEADER_SIZE + length
    if len(buffer) < end:
        return None

    payload = bytes(buffer[HEADER_SIZE:end])
    del buffer[:end]
    return payload.decode("utf-8", errors="replace")


class FrameDecoder:
    """Reassemble frames from arbitrarily chunked stream data."""

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[str]:
        """Append data and return every payload that is now complete."""
        self._buffer.extend(data)
        payloads = []
        while (payload := decode_frame(self._buffer)) is not None:
            payloads.append(payload)
        return payloads

    @property
    def pending_bytes(self) -> int:
        return len(self._buffer)
