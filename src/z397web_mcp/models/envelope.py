"""Request / response envelopes exchanged with callers of the engine.

Mapping form::

    request  = {"id": 0..255, "request": {"addr": 2..105 | None, "cmd": "scan"}}
    response = {"id": n, "error": None | str,
                "response": {"addr": a, "cmd": "scan", "data": [...]}}
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..protocol.commands import Command, parse_command, validate_request_id


@dataclass
class Request:
    """A single command addressed to the converter or a controller."""

    id: int
    command: Command
    addr: int | None = None

    def __post_init__(self) -> None:
        self.command = parse_command(self.command)
        validate_request_id(self.id)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Request:
        """Build a request from ``{"id": .., "request": {"addr": .., "cmd": ..}}``.

        Raises:
            ValueError: If the mapping is missing ``id`` or ``request.cmd``.
            UnknownCommandError: If the command name is unknown.
            IdOutOfRangeError: If ``id`` is not an int in 0-255.
        """
        body = data.get("request") or {}
        if "id" not in data or "cmd" not in body:
            raise ValueError("Request must contain 'id' and 'request.cmd'")
        return cls(id=data["id"], command=body["cmd"], addr=body.get("addr"))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "request": {"addr": self.addr, "cmd": self.command.value},
        }


@dataclass
class Response:
    """Outcome of a request; ``error`` is set when the request failed."""

    id: int
    command: Command
    addr: int | None = None
    data: Any = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def failed(cls, request: Request, error: Exception) -> Response:
        return cls(
            id=request.id, command=request.command, addr=request.addr, error=error
        )

    def to_dict(self) -> dict[str, Any]:
        """Render as a JSON-friendly mapping (datetimes as ISO strings)."""
        data = self.data
        if isinstance(data, datetime):
            data = data.isoformat()
        return {
            "id": self.id,
            "error": None if self.error is None else str(self.error),
            "response": {
                "addr": self.addr,
                "cmd": self.command.value,
                "data": data,
            },
        }
