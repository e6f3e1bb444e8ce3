"""Parsing helpers for responses from Sonos cloud endpoints.

On some errors the Sonos endpoints answer with plain text instead of JSON, so
every response body goes through ``parse_body`` and callers decide what a
missing field means.
"""

import json
from dataclasses import dataclass
from typing import Any

import httpx


@dataclass(frozen=True)
class Structured:
    """A response body that parsed as a JSON object."""

    data: dict[str, Any]


@dataclass(frozen=True)
class RawText:
    """A response body that did not parse as a JSON object."""

    text: str


ParsedBody = Structured | RawText


def parse_body(text: str) -> ParsedBody:
    """Attempt a structured parse, falling back to the raw text."""
    try:
        data = json.loads(text)
    except ValueError:
        return RawText(text)
    if not isinstance(data, dict):
        return RawText(text)
    return Structured(data)


def error_detail(body: ParsedBody, *fields: str) -> Any:
    """Best-effort error detail: the first present field, else the raw text."""
    if isinstance(body, Structured):
        for name in fields:
            if body.data.get(name) is not None:
                return body.data[name]
        return json.dumps(body.data)
    return body.text


def transport_detail(exc: httpx.HTTPError) -> str:
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
