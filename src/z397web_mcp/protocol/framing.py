"""Stream reassembly of Z397 frames from arbitrarily fragmented TCP reads.

A frame starts with one of the start bytes (which also encodes the frame
type) and ends with the 0x0D terminator::

    +-------+----------------------------+------+
    | Type  | Escape packed payload      | 0x0D |
    | 1 B   | variable (5 bytes per 4)   | 1 B  |
    +-------+----------------------------+------+

Type 0x02 frames are error reports from the converter; their body is a short
run of raw error-code bytes instead of a packed payload.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ERROR_FRAME = 0x02
START_BYTES = frozenset({0x1E, 0x20, 0x1F, ERROR_FRAME})
END_BYTE = 0x0D

PROTOCOL_ERRORS: dict[str, str] = {
    "0x48, 0x48": "ERROR CRC",
    "0x48, 0x4c, 0x43": "ERROR license command",
    "0x48, 0x43": "ERROR unknown controller",
    "0x48, 0x4c, 0x31": "ERROR license not active",
    "0x48, 0x4c, 0x32": "ERROR license is old",
    "0x48, 0x4c, 0x33": "ERROR too many controllers",
    "0x48, 0x4c, 0x34": "ERROR read too many cards",
    "0x48, 0x4c, 0x35": "ERROR write too many cards",
    "0x48, 0x4c, 0x36": "ERROR write license is old",
    "0x48, 0x4a": "ERROR packet first byte",
}


@dataclass
class RawFrame:
    """A delimited frame with type and terminator stripped."""

    type: int
    payload: bytes

    def __repr__(self) -> str:
        return (
            f"RawFrame(type=0x{self.type:02X}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'})"
        )


@dataclass
class ProtocolErrorFrame:
    """An error report (type 0x02) from the converter."""

    codes: bytes
    code: str
    message: str


def format_error_code(codes: bytes) -> str:
    """Render error-code bytes as ``0xhh, 0xhh, ...``."""
    return ", ".join(f"0x{b:02x}" for b in codes)


def describe_error(codes: bytes) -> ProtocolErrorFrame:
    """Look up the human-readable meaning of an error frame body."""
    code = format_error_code(codes)
    message = PROTOCOL_ERRORS.get(code, f"ERROR unknown code {code or '(empty)'}")
    return ProtocolErrorFrame(codes=bytes(codes), code=code, message=message)


class FrameReceiver:
    """Reassembles frames from the converter's byte stream.

    Holds at most one frame in progress. A start byte is only honoured while
    no frame is in progress; bytes seen outside a frame before a start byte
    are discarded.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._in_frame = False

    @property
    def in_frame(self) -> bool:
        return self._in_frame

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        """Drop any partially received frame."""
        self._buffer.clear()
        self._in_frame = False

    def feed(self, chunk: bytes) -> RawFrame | ProtocolErrorFrame | None:
        """Consume one chunk and return the next complete frame, if any.

        Returns:
            A ``RawFrame`` for data frames, a ``ProtocolErrorFrame`` for
            type 0x02 frames, or ``None`` when more data is needed.
        """
        if not self._in_frame:
            pending = self._buffer + chunk
            start = next(
                (i for i, b in enumerate(pending) if b in START_BYTES), None
            )
            if start is None:
                if pending:
                    logger.debug("Dropping %d bytes without start byte", len(pending))
                self._buffer.clear()
                return None
            self._buffer = pending[start:]
            self._in_frame = True
        else:
            self._buffer += chunk

        end = self._buffer.find(END_BYTE)
        if end == -1:
            return None

        frame = bytes(self._buffer[: end + 1])
        del self._buffer[: end + 1]
        self._in_frame = False

        frame_type = frame[0]
        body = frame[1:-1]
        if frame_type == ERROR_FRAME:
            return describe_error(body)
        return RawFrame(type=frame_type, payload=body)

    def frames(
        self, chunk: bytes
    ) -> Iterator[RawFrame | ProtocolErrorFrame]:
        """Yield every complete frame carried by ``chunk``.

        A single read may hold several frames; after the first one the
        remaining buffered bytes are drained until no complete frame is left.
        """
        result = self.feed(chunk)
        while result is not None:
            yield result
            if not self._buffer:
                return
            result = self.feed(b"")
