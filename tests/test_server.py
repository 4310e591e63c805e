"""Tests for the MCP tool layer with the converter connection mocked out."""

import asyncio
import json
import sys
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from z397web_mcp.errors import ControllerNotFoundError, RequestTimeoutError
from z397web_mcp.models.envelope import Response
from z397web_mcp.protocol.commands import Command


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_instance.prompt.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch.dict(sys.modules, {}):
        with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
            # Remove cached server module so it re-imports with our mock
            sys.modules.pop("z397web_mcp.server", None)
            import z397web_mcp.server as server_mod

    return server_mod


def _mock_connection(**methods):
    conn = MagicMock()
    conn.connected = True
    for name, value in methods.items():
        setattr(conn, name, AsyncMock(**value))
    return conn


@pytest.fixture
def server():
    return _get_server_module()


def test_tools_require_connection(server):
    with pytest.raises(RuntimeError, match="connect"):
        asyncio.run(server.scan())


def test_scan_caches_addresses(server):
    conn = _mock_connection(scan={"return_value": [2, 9]})
    with patch.object(server, "_get_connection", return_value=conn):
        result = asyncio.run(server.scan())

    assert result == {"addresses": [2, 9]}
    listing = json.loads(server.resource_controllers())
    assert listing["count"] == 2
    assert [c["addr"] for c in listing["controllers"]] == [2, 9]


def test_get_serial_error_is_reported(server):
    conn = _mock_connection(get_sn={"side_effect": ControllerNotFoundError(7)})
    with patch.object(server, "_get_connection", return_value=conn):
        result = asyncio.run(server.get_serial(7))

    assert result["addr"] == 7
    assert "error" in result
    assert "serial" not in result


def test_scan_serials_keeps_going_after_failure(server):
    conn = _mock_connection(
        scan={"return_value": [2, 3]},
        get_sn={"side_effect": [4660, RequestTimeoutError(1, "get_sn")]},
    )
    with patch.object(server, "_get_connection", return_value=conn):
        result = asyncio.run(server.scan_serials())

    first, second = result["controllers"]
    assert first == {"addr": 2, "serial": 4660}
    assert second["addr"] == 3
    assert "timed out" in second["error"]


def test_get_time_is_iso_formatted(server):
    conn = _mock_connection(
        get_time={"return_value": datetime(2024, 3, 17, 13, 45, 9)}
    )
    with patch.object(server, "_get_connection", return_value=conn):
        result = asyncio.run(server.get_time(3))

    assert result == {"addr": 3, "time": "2024-03-17T13:45:09"}


def test_open_door(server):
    conn = _mock_connection(open_door={"return_value": "ok"})
    with patch.object(server, "_get_connection", return_value=conn):
        result = asyncio.run(server.open_door(5))

    assert result == {"addr": 5, "result": "ok"}
    conn.open_door.assert_awaited_once_with(5)


def test_connect_without_host(server, monkeypatch):
    monkeypatch.delenv("Z397_HOST", raising=False)
    result = asyncio.run(server.connect())
    assert "error" in result


def test_connect_uses_arguments(server, monkeypatch):
    monkeypatch.delenv("Z397_HOST", raising=False)
    conn_cls = MagicMock()
    conn_cls.return_value.connect = AsyncMock(return_value="connected")
    with patch.object(server, "Z397Connection", conn_cls):
        result = asyncio.run(server.connect("10.0.0.5", 1000, "KEY", 1.5))

    assert result["connected"] is True
    assert result["host"] == "10.0.0.5"
    conn_cls.assert_called_once_with("10.0.0.5", 1000, "KEY", timeout=1.5)


def test_execute_rejects_malformed_request(server):
    result = asyncio.run(server.execute({"id": 3, "request": {}}))
    assert result["id"] == 3
    assert result["error"]
    assert result["response"] is None


def test_execute_rejects_non_integer_id(server):
    result = asyncio.run(server.execute({"id": "5", "request": {"cmd": "scan"}}))
    assert result["id"] == "5"
    assert "out of range" in result["error"]
    assert result["response"] is None


def test_execute_returns_envelope(server):
    conn = MagicMock()
    conn.execute = AsyncMock(
        return_value=Response(id=4, command=Command.GET_SN, addr=5, data=4660)
    )
    server._connection = conn

    result = asyncio.run(
        server.execute({"id": 4, "request": {"addr": 5, "cmd": "get_sn"}})
    )

    assert result == {
        "id": 4,
        "error": None,
        "response": {"addr": 5, "cmd": "get_sn", "data": 4660},
    }
    request = conn.execute.await_args.args[0]
    assert request.command is Command.GET_SN


def test_execute_reports_request_errors(server):
    conn = MagicMock()
    conn.execute = AsyncMock(side_effect=RequestTimeoutError(4, "get_sn"))
    server._connection = conn

    result = asyncio.run(
        server.execute({"id": 4, "request": {"addr": 5, "cmd": "get_sn"}})
    )

    assert result["error"] == "Request timed out (id: 4, cmd: get_sn)"
    assert result["response"]["cmd"] == "get_sn"


def test_status_resource_when_disconnected(server):
    assert json.loads(server.resource_converter_status()) == {
        "connected": False,
        "state": "disconnected",
    }
