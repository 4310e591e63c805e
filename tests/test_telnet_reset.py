"""Tests for the Telnet reboot channel."""

import asyncio

import pytest

from z397web_mcp.errors import TelnetResetFailedError, TelnetResetTimedOutError
from z397web_mcp.transport import telnet_reset
from z397web_mcp.transport.telnet_reset import send_reboot

from fake_converter import FakeTelnetConsole


def test_sends_key_then_reset_command():
    async def scenario():
        console = await FakeTelnetConsole().start()
        try:
            result = await send_reboot(
                "127.0.0.1", "2B07D1B1", port=console.port, grace_delay=0
            )
            assert result == "reset initiated"
            assert await console.wait_lines(2) == ["2B07D1B1\r\n", "rst\r\n"]
        finally:
            await console.close()

    asyncio.run(scenario())


def test_console_closing_early_fails():
    async def scenario():
        console = await FakeTelnetConsole(close_early=True).start()
        try:
            with pytest.raises(TelnetResetFailedError):
                await send_reboot("127.0.0.1", "KEY", port=console.port, grace_delay=0)
            assert console.lines == []
        finally:
            await console.close()

    asyncio.run(scenario())


def test_silent_console_times_out(monkeypatch):
    monkeypatch.setattr(telnet_reset, "EXTRA_TIMEOUT", 0)

    async def scenario():
        console = await FakeTelnetConsole(hang=True).start()
        try:
            with pytest.raises(TelnetResetTimedOutError) as exc_info:
                await send_reboot(
                    "127.0.0.1", "KEY", port=console.port, timeout=0.1, grace_delay=0
                )
            assert str(exc_info.value) == "Telnet reset timed out"
            assert isinstance(exc_info.value, TimeoutError)
        finally:
            await console.close()

    asyncio.run(scenario())


def test_unreachable_console_fails():
    async def scenario():
        console = await FakeTelnetConsole().start()
        port = console.port
        await console.close()
        with pytest.raises(TelnetResetFailedError):
            await send_reboot("127.0.0.1", "KEY", port=port, grace_delay=0)

    asyncio.run(scenario())
