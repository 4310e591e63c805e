"""Caller-facing request and response envelopes."""

from .envelope import Request, Response
