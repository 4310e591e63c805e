"""Response parsing for converter packets.

Responses are recognised by frame type plus a few discriminator bytes of the
unpacked packet (offsets as in :mod:`.codec`: 4 = command byte, 5 = address).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..errors import (
    ControllerNotFoundError,
    InvalidDateError,
    ResponseParseError,
    UnknownResponseStructureError,
    Z397Error,
)
from .codec import DecodedPacket
from .commands import Command, FrameType

logger = logging.getLogger(__name__)

OFF_LENGTH = 0x01
OFF_COMMAND = 0x04
OFF_ADDRESS = 0x05
OFF_SCAN_MASK = 0x08

# Clock bytes in a memory read reply
OFF_SECOND = 0x08
OFF_MINUTE = 0x09
OFF_HOUR = 0x0A
OFF_DAY = 0x0C
OFF_MONTH = 0x0D
OFF_YEAR = 0x0E


@dataclass
class ParsedResponse:
    """Result of a parsed response packet."""

    command: Command
    addr: int | None
    data: Any


def _at(payload: bytes, offset: int) -> int:
    """Byte at ``offset``, or -1 when the packet is too short."""
    return payload[offset] if offset < len(payload) else -1


def from_bcd(value: int) -> int:
    """Decode a BCD byte (0x45 -> 45)."""
    high, low = value >> 4, value & 0x0F
    if high > 9 or low > 9:
        raise ValueError(f"Invalid BCD byte 0x{value:02X}")
    return high * 10 + low


def parse_scan(payload: bytes) -> ParsedResponse:
    """Parse a bus scan reply into the list of responding addresses.

    Bit ``k`` of mask byte ``i`` marks the controller at ``i * 8 + k + 2``.
    """
    mask = payload[OFF_SCAN_MASK : payload[OFF_LENGTH]]
    addresses = [
        i * 8 + k + 2
        for i, byte in enumerate(mask)
        for k in range(8)
        if byte & (1 << k)
    ]
    logger.debug("Scan found %d controllers: %s", len(addresses), addresses)
    return ParsedResponse(command=Command.SCAN, addr=None, data=addresses)


def parse_get_sn(payload: bytes) -> ParsedResponse:
    """Parse a serial number reply (little-endian at offsets 6-7)."""
    addr = payload[OFF_ADDRESS]
    lo, hi = payload[6], payload[7]
    if addr >> 7 or (lo == 0 and hi == 0):
        raise ControllerNotFoundError(addr)
    serial = hi << 8 | lo
    logger.debug("Controller %d serial %d", addr, serial)
    return ParsedResponse(command=Command.GET_SN, addr=addr, data=serial)


def parse_get_time(payload: bytes) -> ParsedResponse:
    """Parse a clock read reply into a naive local ``datetime``."""
    addr = payload[OFF_ADDRESS]
    try:
        when = datetime(
            2000 + from_bcd(payload[OFF_YEAR]),
            from_bcd(payload[OFF_MONTH]),
            from_bcd(payload[OFF_DAY]),
            from_bcd(payload[OFF_HOUR]),
            from_bcd(payload[OFF_MINUTE]),
            from_bcd(payload[OFF_SECOND]),
        )
    except (ValueError, IndexError) as e:
        raise InvalidDateError(f"Invalid date components: {e}") from e
    return ParsedResponse(command=Command.GET_TIME, addr=addr, data=when)


def parse_set_time(payload: bytes) -> ParsedResponse:
    return ParsedResponse(
        command=Command.SET_TIME, addr=payload[OFF_ADDRESS], data="ok"
    )


def parse_open(payload: bytes) -> ParsedResponse:
    return ParsedResponse(command=Command.OPEN, addr=payload[OFF_ADDRESS], data="ok")


# (frame type, discriminator, parser), checked in order
RESPONSE_TABLE: tuple[
    tuple[FrameType, Callable[[bytes], bool], Callable[[bytes], ParsedResponse]],
    ...,
] = (
    (
        FrameType.SCAN,
        lambda p: _at(p, 4) == 0x00 and _at(p, 5) == 0x00,
        parse_scan,
    ),
    (
        FrameType.SCAN,
        lambda p: _at(p, 4) == 0x00 and _at(p, 5) >= 0x02,
        parse_get_sn,
    ),
    (
        FrameType.ADVANCED,
        lambda p: _at(p, 4) == 0x02 and _at(p, 7) >= 0xD0,
        parse_get_time,
    ),
    (
        FrameType.ADVANCED,
        lambda p: _at(p, 4) == 0x03 and _at(p, 8) >= 0x55,
        parse_set_time,
    ),
    (
        FrameType.ADVANCED,
        lambda p: _at(p, 4) == 0x07 and _at(p, 8) >= 0x55,
        parse_open,
    ),
)


def find_parser(
    frame_type: int, payload: bytes
) -> Callable[[bytes], ParsedResponse] | None:
    """Return the parser whose discriminator matches, or None."""
    for table_type, matches, parser in RESPONSE_TABLE:
        if frame_type == table_type and matches(payload):
            return parser
    return None


def dispatch(packet: DecodedPacket) -> ParsedResponse:
    """Auto-dispatch an unpacked packet to the matching response parser.

    Raises:
        UnknownResponseStructureError: If no table entry matches.
        ControllerNotFoundError: For serial replies from absent controllers.
        InvalidDateError: For clock replies that are not a valid date.
        ResponseParseError: If a parser fails on a malformed packet.
    """
    parser = find_parser(packet.type, packet.payload)
    if parser is None:
        command_byte = _at(packet.payload, OFF_COMMAND)
        raise UnknownResponseStructureError(
            packet.type, None if command_byte < 0 else command_byte
        )
    try:
        return parser(packet.payload)
    except Z397Error:
        raise
    except Exception as e:
        raise ResponseParseError(f"Failed to parse response: {e}") from e
