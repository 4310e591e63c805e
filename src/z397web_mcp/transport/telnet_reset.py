"""Reboot the converter through its Telnet console (TCP port 23).

The console prints a prompt, asks for the device key, prompts again and
then accepts commands. The exchange is driven by counting received text
fragments: on the 2nd fragment equal to ``"> "`` the key is sent, on the
4th the ``rst`` command. The converter drops the link while rebooting, so
no reply to ``rst`` is awaited.
"""

from __future__ import annotations

import asyncio
import logging

from ..errors import TelnetResetFailedError, TelnetResetTimedOutError

logger = logging.getLogger(__name__)

TELNET_PORT = 23
PROMPT = "> "
KEY_FRAGMENT = 2
COMMAND_FRAGMENT = 4
RESET_COMMAND = "rst"
GRACE_DELAY = 3.0  # seconds allowed for the reboot to start
EXTRA_TIMEOUT = 2.0


async def _exchange(
    reader: asyncio.StreamReader, writer: asyncio.StreamWriter, key: str
) -> None:
    fragments: list[str] = []
    while True:
        data = await reader.read(1024)
        if not data:
            raise TelnetResetFailedError(
                "Telnet reset failed: connection closed before reset command"
            )
        fragment = data.decode("latin-1")
        fragments.append(fragment)
        logger.debug("Telnet fragment %d: %r", len(fragments), fragment)

        if fragment != PROMPT:
            continue
        if len(fragments) == KEY_FRAGMENT:
            writer.write(f"{key}\r\n".encode("ascii"))
            await writer.drain()
        elif len(fragments) == COMMAND_FRAGMENT:
            writer.write(f"{RESET_COMMAND}\r\n".encode("ascii"))
            await writer.drain()
            return


async def send_reboot(
    host: str,
    key: str,
    *,
    port: int = TELNET_PORT,
    timeout: float = 2.0,
    grace_delay: float = GRACE_DELAY,
) -> str:
    """Log into the Telnet console and issue ``rst``.

    Args:
        host: Converter IP address or host name.
        key: Device key used as the console password.
        port: Telnet port.
        timeout: Base timeout in seconds; the whole exchange may take
            ``timeout + 2`` seconds.
        grace_delay: Seconds to wait after ``rst`` before returning.

    Returns:
        ``"reset initiated"``. The reboot itself is not confirmed.

    Raises:
        TelnetResetTimedOutError: If the exchange does not finish in time.
        TelnetResetFailedError: On socket errors or an early close.
    """
    writer: asyncio.StreamWriter | None = None

    async def run() -> None:
        nonlocal writer
        reader, writer = await asyncio.open_connection(host, port)
        logger.info("Telnet connected to %s:%d", host, port)
        await _exchange(reader, writer, key)

    try:
        await asyncio.wait_for(run(), timeout + EXTRA_TIMEOUT)
    except asyncio.TimeoutError:
        raise TelnetResetTimedOutError() from None
    except OSError as e:
        raise TelnetResetFailedError(f"Telnet reset failed: {e}") from e
    finally:
        if writer is not None:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.debug("Error closing Telnet channel: %s", e)

    logger.info("Reset command sent to %s, waiting %.1fs", host, grace_delay)
    await asyncio.sleep(grace_delay)
    return "reset initiated"
