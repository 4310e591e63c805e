"""Exception hierarchy for the Z397 converter client."""

from __future__ import annotations


class Z397Error(Exception):
    """Base class for every error raised by this package."""


# ─── CONNECTION STATE ────────────────────────────────────────────────

class ConnectionStateError(Z397Error):
    """Operation not allowed in the current connection state."""


class AlreadyConnectedError(ConnectionStateError):
    def __init__(self) -> None:
        super().__init__("Already connected")


class AlreadyDisconnectedError(ConnectionStateError):
    def __init__(self) -> None:
        super().__init__("Already disconnected")


class NotConnectedError(ConnectionStateError):
    def __init__(self) -> None:
        super().__init__("Not connected")


# ─── REQUEST VALIDATION ──────────────────────────────────────────────

class IdOutOfRangeError(Z397Error, ValueError):
    def __init__(self, request_id: int) -> None:
        super().__init__(f"ID is out of range: {request_id} (must be 0-255)")
        self.request_id = request_id


class IdCollisionError(Z397Error):
    def __init__(self, request_id: int) -> None:
        super().__init__(
            f"Packet ID collision for {request_id}. Try again later."
        )
        self.request_id = request_id


class AddressRequiredError(Z397Error, ValueError):
    def __init__(self, command: str, message: str | None = None) -> None:
        super().__init__(message or f"Address required for {command}")
        self.command = command


class AddressInvalidError(AddressRequiredError):
    def __init__(self, command: str, addr: int) -> None:
        super().__init__(
            command,
            f"Address {addr} is invalid for {command} (must be 0x02-0x69)",
        )
        self.addr = addr


class UnknownCommandError(Z397Error, ValueError):
    def __init__(self, command: str) -> None:
        super().__init__(f"Unknown command: {command}")
        self.command = command


# ─── WIRE / RESPONSE ─────────────────────────────────────────────────

class ChecksumError(Z397Error):
    """Incoming packet failed checksum validation."""

    def __init__(self, frame_type: int, request_id: int | None) -> None:
        super().__init__(
            f"Checksum error for incoming packet "
            f"(type: 0x{frame_type:02X}, id: {request_id})"
        )
        self.frame_type = frame_type
        self.request_id = request_id


class ProtocolError(Z397Error):
    """Error frame (type 0x02) reported by the converter."""

    def __init__(self, message: str, code: str = "") -> None:
        super().__init__(f"Protocol error: {message}")
        self.code = code
        self.reason = message


class UnknownResponseStructureError(Z397Error):
    def __init__(self, frame_type: int, command_byte: int | None) -> None:
        cmd = "none" if command_byte is None else f"0x{command_byte:02X}"
        super().__init__(
            f"Unknown response structure received "
            f"(type: 0x{frame_type:02X}, cmdByte: {cmd})"
        )
        self.frame_type = frame_type
        self.command_byte = command_byte


class ResponseParseError(Z397Error):
    """A response parser failed on a malformed packet."""


class ControllerNotFoundError(Z397Error):
    def __init__(self, addr: int) -> None:
        super().__init__(
            f"Controller not found or invalid response (addr: {addr})"
        )
        self.addr = addr


class InvalidDateError(Z397Error, ValueError):
    """Controller clock bytes do not form a valid date."""


class RequestTimeoutError(Z397Error, TimeoutError):
    def __init__(self, request_id: int, command: str) -> None:
        super().__init__(
            f"Request timed out (id: {request_id}, cmd: {command})"
        )
        self.request_id = request_id
        self.command = command


# ─── TRANSPORT ───────────────────────────────────────────────────────

class SocketError(Z397Error, ConnectionError):
    """The converter socket failed."""


class ConnectionClosedError(SocketError):
    """The converter socket was closed while requests were pending."""


class TelnetResetFailedError(Z397Error):
    """The Telnet reset side channel failed before ``rst`` was sent."""


class TelnetResetTimedOutError(TelnetResetFailedError, TimeoutError):
    def __init__(self) -> None:
        super().__init__("Telnet reset timed out")
