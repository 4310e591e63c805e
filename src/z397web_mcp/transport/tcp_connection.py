"""TCP connection to a Z397-Web converter.

One asyncio reader task per connection owns the frame receiver and is the
only place responses are parsed and matched to pending requests, so no
locking is needed as long as everything runs on one event loop.

Usage::

    async with Z397Connection("192.168.1.10", 1000, key="2B07D1B1") as conn:
        for addr in await conn.scan():
            print(addr, await conn.get_sn(addr))
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import (
    AlreadyConnectedError,
    AlreadyDisconnectedError,
    ChecksumError,
    ConnectionClosedError,
    ConnectionStateError,
    IdCollisionError,
    NotConnectedError,
    ProtocolError,
    SocketError,
    Z397Error,
)
from ..models.envelope import Request, Response
from ..protocol.codec import checksum_ok, unpack_frame
from ..protocol.commands import (
    MAX_REQUEST_ID,
    MODE_ENABLE_FRAME,
    Command,
    build_command,
    parse_command,
    validate_request_id,
)
from ..protocol.framing import FrameReceiver, ProtocolErrorFrame, RawFrame
from ..protocol.parser import dispatch
from .registry import RequestRegistry
from .telnet_reset import GRACE_DELAY, TELNET_PORT, send_reboot

DEFAULT_PORT = 1000
DEFAULT_TIMEOUT = 2.0  # seconds to wait for a response
READ_SIZE = 4096

ErrorListener = Callable[[Exception], Any]


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class Z397Connection:
    """Client for one converter: lifecycle, command surface and dispatch.

    Requests are pipelined: any number of requests with distinct ids (0-255)
    may be outstanding and responses are matched by the id embedded in the
    packet, not by arrival order.

    Connection-level problems that cannot be tied to one request (converter
    error frames, checksum failures, socket loss) are passed to listeners
    registered with :meth:`add_error_listener`.
    """

    def __init__(
        self,
        host: str,
        port: int = DEFAULT_PORT,
        key: str = "",
        *,
        timeout: float = DEFAULT_TIMEOUT,
        telnet_port: int = TELNET_PORT,
        reset_grace: float = GRACE_DELAY,
        logger: logging.Logger | None = None,
    ) -> None:
        self._host = host
        self._port = port
        self._key = key
        self._timeout = timeout
        self._telnet_port = telnet_port
        self._reset_grace = reset_grace
        self._log = logger or logging.getLogger(__name__)

        self._state = ConnectionState.DISCONNECTED
        self._resetting = False
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._read_task: asyncio.Task | None = None

        self._receiver = FrameReceiver()
        self._registry = RequestRegistry()
        self._listeners: list[ErrorListener] = []
        self._next_id = 0

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def registry(self) -> RequestRegistry:
        return self._registry

    async def __aenter__(self) -> Z397Connection:
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self.connected:
            await self.disconnect()

    # ─── LISTENERS ───────────────────────────────────────────────────

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def remove_error_listener(self, listener: ErrorListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _emit_error(self, error: Exception) -> None:
        for listener in list(self._listeners):
            try:
                listener(error)
            except Exception:
                self._log.exception("Error listener failed")

    # ─── LIFECYCLE ───────────────────────────────────────────────────

    async def connect(self) -> str:
        """Open the TCP connection and enable advanced mode.

        Returns:
            ``"connected"``.

        Raises:
            AlreadyConnectedError: If not currently disconnected.
            ConnectionStateError: While a reset is in progress.
            SocketError: If the converter cannot be reached.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise AlreadyConnectedError()
        if self._resetting:
            raise ConnectionStateError("Reset in progress")

        self._state = ConnectionState.CONNECTING
        self._receiver.reset()
        self._registry.cancel_all(SocketError("Connection reset during request"))
        self._log.info("Connecting to %s:%d", self._host, self._port)

        writer: asyncio.StreamWriter | None = None
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._timeout,
            )
            writer.write(MODE_ENABLE_FRAME)
            await writer.drain()
        except (OSError, asyncio.TimeoutError) as e:
            self._abort_connect(writer)
            self._log.error("Connect to %s:%d failed: %s", self._host, self._port, e)
            raise SocketError(f"Connect failed: {str(e) or type(e).__name__}") from e
        except BaseException:
            # Cancelled by the caller
            self._abort_connect(writer)
            raise

        self._reader, self._writer = reader, writer
        self._state = ConnectionState.CONNECTED
        self._read_task = asyncio.create_task(self._read_loop(reader))
        self._log.info("Connected to %s:%d", self._host, self._port)
        return self._state.value

    def _abort_connect(self, writer: asyncio.StreamWriter | None) -> None:
        self._state = ConnectionState.DISCONNECTED
        if writer is not None:
            writer.close()

    async def disconnect(self) -> str:
        """Close the connection; pending requests are rejected.

        Raises:
            AlreadyDisconnectedError: If not currently connected.
        """
        if self._state is not ConnectionState.CONNECTED:
            raise AlreadyDisconnectedError()
        await self._close(ConnectionClosedError("Connection closed by client"))
        return self._state.value

    async def reset(self) -> str:
        """Reboot the converter through the Telnet console.

        Closes the data connection first if it is open. Completes once the
        reboot command has been sent, not once the converter is back.

        Raises:
            ConnectionStateError: While connecting or already resetting.
            TelnetResetFailedError: If the console exchange fails.
        """
        if self._resetting or self._state is ConnectionState.CONNECTING:
            raise ConnectionStateError("Connection operation in progress")
        self._resetting = True
        try:
            if self._state is ConnectionState.CONNECTED:
                await self._close(ConnectionClosedError("Connection closed for reset"))
            return await send_reboot(
                self._host,
                self._key,
                port=self._telnet_port,
                timeout=self._timeout,
                grace_delay=self._reset_grace,
            )
        finally:
            self._resetting = False

    async def _close(self, error: Exception) -> None:
        self._state = ConnectionState.DISCONNECTED
        task, self._read_task = self._read_task, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
        writer, self._writer = self._writer, None
        self._reader = None
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                self._log.debug("Error closing socket: %s", e)
        self._registry.cancel_all(error)
        self._receiver.reset()
        self._log.info("Disconnected from %s:%d", self._host, self._port)

    def _connection_lost(self, error: Exception) -> None:
        if self._state is ConnectionState.DISCONNECTED:
            return
        self._log.warning("Connection to %s lost: %s", self._host, error)
        self._state = ConnectionState.DISCONNECTED
        self._read_task = None
        if self._writer is not None:
            self._writer.close()
            self._writer = None
        self._reader = None
        self._registry.cancel_all(error)
        self._receiver.reset()
        self._emit_error(error)

    # ─── REQUESTS ────────────────────────────────────────────────────

    def next_request_id(self) -> int:
        """Return the next request id that is not currently pending."""
        for _ in range(MAX_REQUEST_ID + 1):
            request_id = self._next_id
            self._next_id = (self._next_id + 1) % (MAX_REQUEST_ID + 1)
            if request_id not in self._registry:
                return request_id
        raise IdCollisionError(self._next_id)

    async def execute(
        self, request: Request, timeout: float | None = None
    ) -> Response:
        """Run any command, lifecycle commands included.

        Raises:
            Z397Error: Subclasses describing why the request failed.
        """
        command = parse_command(request.command)
        if not command.is_lifecycle:
            return await self._send_request(command, request.id, request.addr, timeout)
        if command is Command.CONNECT:
            data = await self.connect()
        elif command is Command.DISCONNECT:
            data = await self.disconnect()
        else:
            data = await self.reset()
        return Response(id=request.id, command=command, data=data)

    async def _send_request(
        self,
        command: Command,
        request_id: int,
        addr: int | None,
        timeout: float | None,
    ) -> Response:
        if self._state is not ConnectionState.CONNECTED or self._writer is None:
            raise NotConnectedError()
        validate_request_id(request_id)
        if request_id in self._registry:
            raise IdCollisionError(request_id)
        frame = build_command(command, request_id, addr)

        future = self._registry.submit(
            request_id, command, self._timeout if timeout is None else timeout
        )
        self._log.debug(
            "Sending %s (id: %d, addr: %s): %s", command, request_id, addr, frame.hex(" ")
        )
        try:
            self._writer.write(frame)
            await self._writer.drain()
        except OSError as e:
            self._registry.fail(request_id, SocketError(f"Socket error: {e}"))
        return await future

    async def _request_data(
        self,
        command: Command,
        addr: int | None,
        request_id: int | None,
        timeout: float | None,
    ) -> Any:
        if request_id is None:
            request_id = self.next_request_id()
        response = await self._send_request(command, request_id, addr, timeout)
        return response.data

    async def scan(
        self, request_id: int | None = None, *, timeout: float | None = None
    ) -> list[int]:
        """Scan the bus; returns the addresses of responding controllers."""
        return await self._request_data(Command.SCAN, None, request_id, timeout)

    async def get_sn(
        self,
        addr: int,
        request_id: int | None = None,
        *,
        timeout: float | None = None,
    ) -> int:
        """Read the serial number of the controller at ``addr``."""
        return await self._request_data(Command.GET_SN, addr, request_id, timeout)

    async def get_time(
        self,
        addr: int,
        request_id: int | None = None,
        *,
        timeout: float | None = None,
    ) -> datetime:
        """Read the controller clock."""
        return await self._request_data(Command.GET_TIME, addr, request_id, timeout)

    async def set_time(
        self,
        addr: int,
        request_id: int | None = None,
        *,
        timeout: float | None = None,
    ) -> str:
        """Set the controller clock to the current local time."""
        return await self._request_data(Command.SET_TIME, addr, request_id, timeout)

    async def open_door(
        self,
        addr: int,
        request_id: int | None = None,
        *,
        timeout: float | None = None,
    ) -> str:
        """Open the lock driven by the controller at ``addr``."""
        return await self._request_data(Command.OPEN, addr, request_id, timeout)

    # ─── RECEIVE PATH ────────────────────────────────────────────────

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        try:
            while True:
                chunk = await reader.read(READ_SIZE)
                if not chunk:
                    break
                self._log.debug("RAW DATA IN: %s", chunk.hex(" "))
                for frame in self._receiver.frames(chunk):
                    self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except OSError as e:
            self._connection_lost(SocketError(f"Socket error: {e}"))
            return
        except Exception as e:
            self._log.exception("Reader for %s failed", self._host)
            self._connection_lost(SocketError(f"Reader failed: {e}"))
            return
        self._connection_lost(ConnectionClosedError("Connection closed unexpectedly"))

    def _handle_frame(self, frame: RawFrame | ProtocolErrorFrame) -> None:
        if isinstance(frame, ProtocolErrorFrame):
            self._log.warning("PROTOCOL ERROR: %s (%s)", frame.message, frame.code)
            self._emit_error(ProtocolError(frame.message, frame.code))
            return
        if not frame.payload:
            return

        packet = unpack_frame(frame)
        if not checksum_ok(packet.payload):
            error = ChecksumError(packet.type, packet.id)
            self._log.warning("%s: %s", error, packet.payload.hex(" "))
            if packet.id is not None:
                self._registry.fail(packet.id, error)
            self._emit_error(error)
            return

        entry = self._registry.get(packet.id)
        if entry is None:
            self._log.debug(
                "Received data for unknown or timed out request (id: %s)", packet.id
            )
            return

        try:
            parsed = dispatch(packet)
        except Z397Error as e:
            self._log.warning("Response for id %d rejected: %s", packet.id, e)
            self._registry.fail(packet.id, e)
            return

        self._registry.complete(
            packet.id,
            Response(
                id=packet.id,
                command=parse_command(entry.command),
                addr=parsed.addr,
                data=parsed.data,
            ),
        )
