"""Tests for pending-request tracking."""

import asyncio

import pytest

from z397web_mcp.errors import (
    IdCollisionError,
    IdOutOfRangeError,
    RequestTimeoutError,
    SocketError,
)
from z397web_mcp.transport.registry import RequestRegistry


def test_submit_and_complete():
    async def scenario():
        registry = RequestRegistry()
        future = registry.submit(7, "scan", timeout=1.0)
        assert 7 in registry
        assert registry.complete(7, [2, 3])
        assert await future == [2, 3]
        assert len(registry) == 0

    asyncio.run(scenario())


def test_id_out_of_range():
    async def scenario():
        registry = RequestRegistry()
        with pytest.raises(IdOutOfRangeError):
            registry.submit(256, "scan", timeout=1.0)
        with pytest.raises(IdOutOfRangeError):
            registry.submit(-1, "scan", timeout=1.0)
        assert len(registry) == 0

    asyncio.run(scenario())


def test_id_must_be_an_int():
    async def scenario():
        registry = RequestRegistry()
        with pytest.raises(IdOutOfRangeError):
            registry.submit(5.0, "scan", timeout=1.0)
        with pytest.raises(IdOutOfRangeError):
            registry.submit("5", "scan", timeout=1.0)
        assert len(registry) == 0

    asyncio.run(scenario())


def test_id_collision():
    async def scenario():
        registry = RequestRegistry()
        first = registry.submit(5, "get_sn", timeout=1.0)
        with pytest.raises(IdCollisionError):
            registry.submit(5, "open", timeout=1.0)
        assert registry.get(5).command == "get_sn"
        registry.complete(5, 1)
        await first

    asyncio.run(scenario())


def test_fail_rejects_only_that_request():
    async def scenario():
        registry = RequestRegistry()
        a = registry.submit(1, "get_sn", timeout=1.0)
        b = registry.submit(2, "get_sn", timeout=1.0)
        assert registry.fail(1, ValueError("bad"))
        with pytest.raises(ValueError):
            await a
        assert registry.pending_ids() == [2]
        registry.complete(2, 42)
        assert await b == 42

    asyncio.run(scenario())


def test_out_of_order_completion():
    """Responses resolve their own callers regardless of arrival order."""
    async def scenario():
        registry = RequestRegistry()
        futures = {
            1: registry.submit(1, "get_sn", timeout=1.0),
            2: registry.submit(2, "get_time", timeout=1.0),
            3: registry.submit(3, "open", timeout=1.0),
        }
        for request_id in (3, 1, 2):
            registry.complete(request_id, f"result-{request_id}")
        results = {rid: await f for rid, f in futures.items()}
        assert results == {1: "result-1", 2: "result-2", 3: "result-3"}

    asyncio.run(scenario())


def test_timeout_removes_entry():
    async def scenario():
        registry = RequestRegistry()
        future = registry.submit(9, "get_time", timeout=0.05)
        with pytest.raises(RequestTimeoutError) as exc_info:
            await future
        assert exc_info.value.request_id == 9
        assert exc_info.value.command == "get_time"
        assert "id: 9" in str(exc_info.value)
        assert 9 not in registry
        # late arrival is dropped
        assert not registry.complete(9, "late")

    asyncio.run(scenario())


def test_timeouts_are_independent():
    async def scenario():
        registry = RequestRegistry()
        short = registry.submit(1, "scan", timeout=0.05)
        long = registry.submit(2, "scan", timeout=1.0)
        with pytest.raises(RequestTimeoutError):
            await short
        assert registry.pending_ids() == [2]
        registry.complete(2, [])
        assert await long == []

    asyncio.run(scenario())


def test_cancel_all():
    async def scenario():
        registry = RequestRegistry()
        futures = [registry.submit(i, "scan", timeout=1.0) for i in range(3)]
        error = SocketError("Socket error: ECONNRESET")
        assert registry.cancel_all(error) == 3
        assert len(registry) == 0
        for future in futures:
            with pytest.raises(SocketError):
                await future
        assert registry.cancel_all(error) == 0

    asyncio.run(scenario())


def test_cancelled_caller_frees_id():
    async def scenario():
        registry = RequestRegistry()
        future = registry.submit(4, "scan", timeout=1.0)
        task = asyncio.ensure_future(future)
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        await asyncio.sleep(0)
        assert 4 not in registry
        registry.submit(4, "scan", timeout=1.0)

    asyncio.run(scenario())
