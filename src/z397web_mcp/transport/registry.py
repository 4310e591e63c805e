"""Outstanding request tracking keyed by the 8-bit request id.

All methods must be called from the event loop that owns the connection;
the registry is only touched from the reader task and the coroutines that
send requests, so it needs no locking.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any

from ..errors import IdCollisionError, RequestTimeoutError
from ..protocol.commands import validate_request_id

logger = logging.getLogger(__name__)


@dataclass
class PendingRequest:
    """A request waiting for its response."""

    id: int
    command: str
    future: asyncio.Future
    timer: asyncio.TimerHandle | None = None


class RequestRegistry:
    """Maps request ids to futures with per-request deadlines.

    Usage::

        future = registry.submit(7, "scan", timeout=2.0)
        ...                       # reader task: registry.complete(7, result)
        result = await future
    """

    def __init__(self) -> None:
        self._pending: dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def pending_ids(self) -> list[int]:
        return sorted(self._pending)

    def get(self, request_id: int) -> PendingRequest | None:
        return self._pending.get(request_id)

    def submit(
        self, request_id: int, command: str, timeout: float | None
    ) -> asyncio.Future:
        """Register a request and arm its deadline.

        Args:
            request_id: Request id 0-255.
            command: Command name, used in the timeout error.
            timeout: Seconds to wait for the response; None disables it.

        Returns:
            A future resolved by :meth:`complete` or rejected by
            :meth:`fail`, :meth:`cancel_all` or the deadline.

        Raises:
            IdOutOfRangeError: If ``request_id`` is outside 0-255.
            IdCollisionError: If ``request_id`` is already pending.
        """
        validate_request_id(request_id)
        if request_id in self._pending:
            raise IdCollisionError(request_id)

        loop = asyncio.get_running_loop()
        entry = PendingRequest(
            id=request_id, command=str(command), future=loop.create_future()
        )
        if timeout is not None:
            entry.timer = loop.call_later(timeout, self._expire, entry)
        entry.future.add_done_callback(lambda _: self._discard(entry))
        self._pending[request_id] = entry
        return entry.future

    def complete(self, request_id: int, result: Any) -> bool:
        """Resolve the request; returns False if it is no longer pending."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_result(result)
        return True

    def fail(self, request_id: int, error: BaseException) -> bool:
        """Reject the request; returns False if it is no longer pending."""
        entry = self._pop(request_id)
        if entry is None:
            return False
        if not entry.future.done():
            entry.future.set_exception(error)
        return True

    def cancel_all(self, error: BaseException) -> int:
        """Reject every pending request with ``error``; returns the count."""
        entries = list(self._pending.values())
        self._pending.clear()
        if entries:
            logger.debug(
                "Clearing %d pending requests due to: %s", len(entries), error
            )
        for entry in entries:
            if entry.timer is not None:
                entry.timer.cancel()
            if not entry.future.done():
                entry.future.set_exception(error)
        return len(entries)

    def _pop(self, request_id: int) -> PendingRequest | None:
        entry = self._pending.pop(request_id, None)
        if entry is not None and entry.timer is not None:
            entry.timer.cancel()
        return entry

    def _expire(self, entry: PendingRequest) -> None:
        if self._pending.get(entry.id) is not entry:
            return
        del self._pending[entry.id]
        logger.warning("Request timed out (id: %d, cmd: %s)", entry.id, entry.command)
        if not entry.future.done():
            entry.future.set_exception(RequestTimeoutError(entry.id, entry.command))

    def _discard(self, entry: PendingRequest) -> None:
        # Caller cancelled the awaiting task
        if self._pending.get(entry.id) is entry:
            self._pop(entry.id)
