"""Tests for request/response envelopes and configuration."""

import logging
from datetime import datetime

import pytest

from z397web_mcp.config import ConverterConfig, log_level
from z397web_mcp.errors import (
    ControllerNotFoundError,
    IdOutOfRangeError,
    UnknownCommandError,
)
from z397web_mcp.models.envelope import Request, Response
from z397web_mcp.protocol.commands import Command


def test_request_from_dict():
    request = Request.from_dict({"id": 12, "request": {"addr": 5, "cmd": "open"}})
    assert request.id == 12
    assert request.command is Command.OPEN
    assert request.addr == 5


def test_request_without_address():
    request = Request.from_dict({"id": 1, "request": {"cmd": "scan"}})
    assert request.addr is None
    assert request.to_dict() == {"id": 1, "request": {"addr": None, "cmd": "scan"}}


def test_request_missing_fields():
    with pytest.raises(ValueError):
        Request.from_dict({"request": {"cmd": "scan"}})
    with pytest.raises(ValueError):
        Request.from_dict({"id": 1})


def test_request_id_must_be_an_int():
    with pytest.raises(IdOutOfRangeError):
        Request.from_dict({"id": "5", "request": {"cmd": "scan"}})
    with pytest.raises(IdOutOfRangeError):
        Request(id=5.0, command="scan")
    with pytest.raises(IdOutOfRangeError):
        Request(id=256, command="scan")


def test_request_unknown_command():
    with pytest.raises(UnknownCommandError):
        Request.from_dict({"id": 1, "request": {"cmd": "format"}})


def test_response_datetime_rendered_as_iso():
    response = Response(
        id=2, command=Command.GET_TIME, addr=3, data=datetime(2024, 3, 17, 13, 45, 9)
    )
    assert response.ok
    assert response.to_dict()["response"]["data"] == "2024-03-17T13:45:09"


def test_failed_response():
    request = Request(id=9, command="get_sn", addr=0x20)
    response = Response.failed(request, ControllerNotFoundError(0x20))
    assert not response.ok
    out = response.to_dict()
    assert out["id"] == 9
    assert out["error"]
    assert out["response"] == {"addr": 0x20, "cmd": "get_sn", "data": None}


# ─── CONFIG ──────────────────────────────────────────────────────────

def test_config_defaults():
    config = ConverterConfig.from_env({})
    assert config.host == ""
    assert config.port == 1000
    assert config.timeout == 2.0


def test_config_from_env():
    config = ConverterConfig.from_env({
        "Z397_HOST": "192.168.1.10",
        "Z397_PORT": "1001",
        "Z397_KEY": "2B07D1B1",
        "Z397_TIMEOUT": "0.5",
    })
    assert config == ConverterConfig("192.168.1.10", 1001, "2B07D1B1", 0.5)


def test_config_bad_port():
    with pytest.raises(ValueError):
        ConverterConfig.from_env({"Z397_PORT": "telnet"})


def test_config_merged_prefers_arguments():
    base = ConverterConfig("10.0.0.1", 1000, "AAAA", 2.0)
    assert base.merged(host="10.0.0.2") == ConverterConfig("10.0.0.2", 1000, "AAAA", 2.0)
    assert base.merged(key="", timeout=3.0) == ConverterConfig("10.0.0.1", 1000, "", 3.0)
    assert base.merged() == base


def test_log_level():
    assert log_level({}) == logging.INFO
    assert log_level({"Z397_LOG_LEVEL": "debug"}) == logging.DEBUG
    assert log_level({"Z397_LOG_LEVEL": "10"}) == 10
    assert log_level({"Z397_LOG_LEVEL": "chatty"}) == logging.INFO
