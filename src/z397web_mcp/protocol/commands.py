"""Command identifiers and wire-frame builders.

Every outgoing packet starts with the license byte (0x08) followed by the
request id and the controller command byte. The frame type selects the bus
mode: 0x20 for bus scan / serial queries, 0x1F for advanced-mode controller
commands.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum, IntEnum

from ..errors import (
    AddressInvalidError,
    AddressRequiredError,
    IdOutOfRangeError,
    UnknownCommandError,
)
from .codec import assemble

LICENSE = 0x08
MIN_ADDRESS = 0x02
MAX_ADDRESS = 0x69
MAX_REQUEST_ID = 0xFF

# Sent verbatim right after the TCP connect to enable advanced mode.
MODE_ENABLE_FRAME = bytes(
    [0xFF, 0xFA, 0x2C, 0x01, 0x00, 0x03, 0x84, 0x00, 0xFF, 0xF0]
)

# Clock memory bank: bank 0, type 0xD0, 7 bytes
_CLOCK_BANK = (0x00, 0xD0, 0x07, 0x00, 0x00)


class FrameType(IntEnum):
    """Frame start bytes."""

    ERROR = 0x02
    SERIAL_BUS = 0x1E
    ADVANCED = 0x1F
    SCAN = 0x20


class ControllerCommand(IntEnum):
    """Controller command byte (packet offset 4)."""

    SCAN = 0x00
    READ_MEMORY = 0x02
    WRITE_MEMORY = 0x03
    OPEN = 0x07


class Command(str, Enum):
    """Caller-facing command names."""

    CONNECT = "connect"
    DISCONNECT = "disconnect"
    RESET = "reset"
    SCAN = "scan"
    GET_SN = "get_sn"
    GET_TIME = "get_time"
    SET_TIME = "set_time"
    OPEN = "open"

    def __str__(self) -> str:
        return self.value

    @property
    def is_lifecycle(self) -> bool:
        return self in LIFECYCLE_COMMANDS

    @property
    def needs_address(self) -> bool:
        return self in ADDRESSED_COMMANDS


LIFECYCLE_COMMANDS = frozenset({Command.CONNECT, Command.DISCONNECT, Command.RESET})
ADDRESSED_COMMANDS = frozenset(
    {Command.GET_SN, Command.GET_TIME, Command.SET_TIME, Command.OPEN}
)


def parse_command(name: str | Command) -> Command:
    """Resolve a command name, raising ``UnknownCommandError`` if unknown."""
    try:
        return Command(name)
    except ValueError:
        raise UnknownCommandError(str(name)) from None


def normalize_address(addr: int | None) -> int | None:
    """Return ``addr`` if it is a valid bus address (0x02-0x69), else None."""
    if addr is None or isinstance(addr, bool):
        return None
    return addr if MIN_ADDRESS <= addr <= MAX_ADDRESS else None


def validate_request_id(request_id: int) -> int:
    """Return ``request_id`` if it is an int in 0-255, else raise ``IdOutOfRangeError``."""
    if (
        not isinstance(request_id, int)
        or isinstance(request_id, bool)
        or not 0 <= request_id <= MAX_REQUEST_ID
    ):
        raise IdOutOfRangeError(request_id)
    return request_id


def require_address(command: Command, addr: int | None) -> int:
    """Validate the address of a command that targets a single controller."""
    valid = normalize_address(addr)
    if valid is None:
        if addr is None:
            raise AddressRequiredError(command.value)
        raise AddressInvalidError(command.value, addr)
    return valid


def to_bcd(value: int) -> int:
    """Encode 0-99 as a byte whose hex digits are the decimal digits."""
    if not 0 <= value <= 99:
        raise ValueError(f"BCD value must be 0-99, got {value}")
    return (value // 10) << 4 | value % 10


def build_scan(request_id: int) -> bytes:
    """Build a bus scan request."""
    validate_request_id(request_id)
    payload = bytes([LICENSE, request_id, ControllerCommand.SCAN, 0x00, 0x00, 0x00])
    return assemble(FrameType.SCAN, payload)


def build_get_sn(request_id: int, addr: int) -> bytes:
    """Build a serial-number request for the controller at ``addr``."""
    validate_request_id(request_id)
    addr = require_address(Command.GET_SN, addr)
    payload = bytes([LICENSE, request_id, ControllerCommand.SCAN, addr, 0x00, 0x00])
    return assemble(FrameType.SCAN, payload)


def build_open(request_id: int, addr: int) -> bytes:
    """Build an open-door request."""
    validate_request_id(request_id)
    addr = require_address(Command.OPEN, addr)
    payload = bytes([LICENSE, request_id, ControllerCommand.OPEN, addr, 0x00, 0x00])
    return assemble(FrameType.ADVANCED, payload)


def build_get_time(request_id: int, addr: int) -> bytes:
    """Build a clock read request (7 bytes of bank 0xD0)."""
    validate_request_id(request_id)
    addr = require_address(Command.GET_TIME, addr)
    payload = bytes(
        [LICENSE, request_id, ControllerCommand.READ_MEMORY, addr, *_CLOCK_BANK, 0x00]
    )
    return assemble(FrameType.ADVANCED, payload)


def build_set_time(
    request_id: int, addr: int, now: datetime | None = None
) -> bytes:
    """Build a clock write request.

    Args:
        request_id: Request id 0-255.
        addr: Controller bus address.
        now: Time to write; defaults to the current local time.

    Clock fields are BCD: seconds, minutes, hours, weekday (1=Monday ..
    7=Sunday), day, month, two-digit year.
    """
    validate_request_id(request_id)
    addr = require_address(Command.SET_TIME, addr)
    if now is None:
        now = datetime.now()
    clock = [
        to_bcd(now.second),
        to_bcd(now.minute),
        to_bcd(now.hour),
        to_bcd(now.isoweekday()),
        to_bcd(now.day),
        to_bcd(now.month),
        to_bcd(now.year % 100),
    ]
    payload = bytes(
        [LICENSE, request_id, ControllerCommand.WRITE_MEMORY, addr, *_CLOCK_BANK, *clock]
    )
    return assemble(FrameType.ADVANCED, payload)


def build_command(
    command: str | Command,
    request_id: int,
    addr: int | None = None,
) -> bytes:
    """Build the wire frame for any bus command.

    Raises:
        UnknownCommandError: For unknown names and lifecycle commands,
            which have no wire frame.
        AddressRequiredError: If the command needs an address and
            ``addr`` is missing or outside 0x02-0x69.
        IdOutOfRangeError: If ``request_id`` is outside 0-255.
    """
    cmd = parse_command(command)
    if cmd.is_lifecycle:
        raise UnknownCommandError(cmd.value)
    validate_request_id(request_id)
    if cmd.needs_address:
        addr = require_address(cmd, addr)
    if cmd is Command.SCAN:
        return build_scan(request_id)
    if cmd is Command.GET_SN:
        return build_get_sn(request_id, addr)
    if cmd is Command.GET_TIME:
        return build_get_time(request_id, addr)
    if cmd is Command.SET_TIME:
        return build_set_time(request_id, addr)
    if cmd is Command.OPEN:
        return build_open(request_id, addr)
    raise UnknownCommandError(cmd.value)
