"""MCP server entry point for IronLogic Z397-Web converters.

Exposes the converter's bus commands (scan, serial numbers, clock, door
open, reboot) as tools via the Model Context Protocol using the official
Python MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Awaitable
from typing import Any

from mcp.server.fastmcp import FastMCP

from .config import ConverterConfig, log_level
from .errors import Z397Error
from .models.envelope import Request, Response
from .transport.tcp_connection import Z397Connection

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "z397web",
    instructions="MCP server for IronLogic Z397-Web converters and door controllers",
)

# Global connection state
_connection: Z397Connection | None = None
_controller_cache: dict[int, dict[str, Any]] = {}


def _get_connection() -> Z397Connection:
    """Get the active converter connection, raising if not connected."""
    if _connection is None or not _connection.connected:
        raise RuntimeError(
            "Not connected to converter. Use the 'connect' tool first."
        )
    return _connection


async def _call(label: str, operation: Awaitable[Any]) -> dict[str, Any]:
    """Await a connection call and turn protocol errors into a result dict."""
    try:
        return {label: await operation}
    except Z397Error as e:
        logger.warning("%s failed: %s", label, e)
        return {"error": str(e)}


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
async def connect(
    host: str | None = None,
    port: int | None = None,
    key: str | None = None,
    timeout: float | None = None,
) -> dict[str, Any]:
    """Connect to a Z397-Web converter over TCP.

    Missing arguments fall back to the Z397_HOST, Z397_PORT, Z397_KEY and
    Z397_TIMEOUT environment variables.

    Args:
        host: Converter IP address or host name.
        port: Converter TCP port (default 1000).
        key: Device key, used for the Telnet reset channel.
        timeout: Response timeout in seconds (default 2).
    """
    global _connection
    if _connection is not None and _connection.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "host": _connection.host,
        }

    config = ConverterConfig.from_env().merged(host, port, key, timeout)
    if not config.host:
        return {"error": "No converter host given (argument or Z397_HOST)"}

    _connection = Z397Connection(
        config.host, config.port, config.key, timeout=config.timeout
    )
    try:
        status = await _connection.connect()
    except Z397Error as e:
        return {"connected": False, "error": str(e)}
    return {
        "connected": True,
        "status": status,
        "host": config.host,
        "port": config.port,
    }


@mcp.tool()
async def disconnect() -> dict[str, Any]:
    """Close the converter connection."""
    global _connection
    if _connection is None:
        return {"disconnected": True}
    if _connection.connected:
        await _connection.disconnect()
    _connection = None
    _controller_cache.clear()
    return {"disconnected": True}


@mcp.tool()
async def reset() -> dict[str, Any]:
    """Reboot the converter through its Telnet console.

    The data connection is closed first. The result only confirms that the
    reboot command was sent; reconnect with 'connect' afterwards.
    """
    global _connection
    conn = _connection
    if conn is None:
        config = ConverterConfig.from_env()
        if not config.host:
            return {"error": "No converter host given (Z397_HOST)"}
        conn = Z397Connection(
            config.host, config.port, config.key, timeout=config.timeout
        )
    result = await _call("status", conn.reset())
    _connection = None
    _controller_cache.clear()
    return result


# ─── CONTROLLER TOOLS ────────────────────────────────────────────────

@mcp.tool()
async def scan() -> dict[str, Any]:
    """Scan the bus and list the addresses of responding controllers."""
    conn = _get_connection()
    result = await _call("addresses", conn.scan())
    for addr in result.get("addresses", []):
        _controller_cache.setdefault(addr, {"addr": addr})
    return result


@mcp.tool()
async def get_serial(addr: int) -> dict[str, Any]:
    """Read a controller's serial number.

    Args:
        addr: Controller bus address (2-105).
    """
    conn = _get_connection()
    result = await _call("serial", conn.get_sn(addr))
    if "serial" in result:
        _controller_cache[addr] = {"addr": addr, "serial": result["serial"]}
    return {"addr": addr, **result}


@mcp.tool()
async def scan_serials() -> dict[str, Any]:
    """Scan the bus, then read the serial number of every controller found."""
    conn = _get_connection()
    found = await _call("addresses", conn.scan())
    if "error" in found:
        return found

    controllers = []
    for addr in found["addresses"]:
        result = await _call("serial", conn.get_sn(addr))
        entry = {"addr": addr, **result}
        if "serial" in result:
            _controller_cache[addr] = {"addr": addr, "serial": result["serial"]}
        controllers.append(entry)
    return {"controllers": controllers}


@mcp.tool()
async def get_time(addr: int) -> dict[str, Any]:
    """Read a controller's clock.

    Args:
        addr: Controller bus address (2-105).
    """
    conn = _get_connection()
    result = await _call("time", conn.get_time(addr))
    if "time" in result:
        result["time"] = result["time"].isoformat()
    return {"addr": addr, **result}


@mcp.tool()
async def set_time(addr: int) -> dict[str, Any]:
    """Set a controller's clock to this machine's local time.

    Args:
        addr: Controller bus address (2-105).
    """
    conn = _get_connection()
    return {"addr": addr, **await _call("result", conn.set_time(addr))}


@mcp.tool()
async def open_door(addr: int) -> dict[str, Any]:
    """Open the door lock driven by a controller.

    Args:
        addr: Controller bus address (2-105).
    """
    conn = _get_connection()
    return {"addr": addr, **await _call("result", conn.open_door(addr))}


@mcp.tool()
async def execute(request: dict[str, Any]) -> dict[str, Any]:
    """Run a raw request envelope.

    Args:
        request: ``{"id": 0-255, "request": {"addr": 2-105 | null, "cmd": name}}``
                 with cmd one of connect, disconnect, reset, scan, get_sn,
                 get_time, set_time, open.
    """
    global _connection
    try:
        req = Request.from_dict(request)
    except (ValueError, Z397Error) as e:
        return {"id": request.get("id"), "error": str(e), "response": None}

    if _connection is None:
        config = ConverterConfig.from_env()
        if not config.host:
            return {
                "id": req.id,
                "error": "No converter host configured (Z397_HOST)",
                "response": None,
            }
        _connection = Z397Connection(
            config.host, config.port, config.key, timeout=config.timeout
        )

    try:
        response = await _connection.execute(req)
    except Z397Error as e:
        response = Response.failed(req, e)
    return response.to_dict()


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("z397://converter/status")
def resource_converter_status() -> str:
    """Connection state and pending request ids."""
    if _connection is None:
        return json.dumps({"connected": False, "state": "disconnected"})
    return json.dumps({
        "connected": _connection.connected,
        "state": _connection.state.value,
        "host": _connection.host,
        "port": _connection.port,
        "pending": _connection.registry.pending_ids(),
    })


@mcp.resource("z397://controllers")
def resource_controllers() -> str:
    """Controllers seen by scans and serial reads (cached)."""
    controllers = [_controller_cache[addr] for addr in sorted(_controller_cache)]
    return json.dumps({"controllers": controllers, "count": len(controllers)})


# ─── MCP PROMPTS ─────────────────────────────────────────────────────

@mcp.prompt()
def audit_controllers() -> str:
    """Inventory every controller on the bus and check its clock."""
    return """Use scan_serials to list every controller on the bus with its serial number.
Then call get_time for each address and compare it with the current time.

Report:
- Controllers that did not answer the serial request
- Clocks that are off by more than one minute

Offer to fix drifting clocks with set_time, one controller at a time."""


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=log_level())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
