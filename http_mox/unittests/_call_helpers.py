"""Builders for intercepted calls and records shared by the unit tests."""

from __future__ import annotations

import typing as t
from urllib.parse import urlsplit

from http_mox.interceptor import InterceptedCall
from http_mox.serializer import (
    DEFAULT_PORTS,
    SerializedHttp,
    SerializedResponse,
    hydrate_http_mock,
    serialize_response,
)

API = "http://api.test"


def make_call(
    method: str = "GET",
    url: str = f"{API}/users/1",
    *,
    headers: dict[str, str] | None = None,
    body: bytes = b"",
) -> InterceptedCall:
    """Return an :class:`InterceptedCall` for *method* and *url*."""
    parts = urlsplit(url)
    scheme = parts.scheme or "http"
    return InterceptedCall(
        method=method,
        scheme=scheme,
        host=parts.hostname or "",
        port=parts.port or DEFAULT_PORTS[scheme],
        path=parts.path or "/",
        query=f"?{parts.query}" if parts.query else "",
        headers=dict(headers or {}),
        stream=(body,) if body else (),
    )


def network_response(
    status_code: int = 200,
    body: bytes = b"",
    *,
    content_type: str = "text/plain",
) -> SerializedResponse:
    """Return a serialized response as a real server might produce it."""
    return serialize_response(status_code, {"content-type": content_type}, body)


def mock_record(
    method: str = "GET",
    url: str = f"{API}/users/1",
    *,
    status_code: int = 200,
    body: t.Any = "",
    headers: dict[str, str] | None = None,
) -> SerializedHttp:
    """Return a full fixture record built from the short mock form."""
    return SerializedHttp.from_dict(
        hydrate_http_mock(
            {
                "request": {"method": method, "url": url},
                "response": {
                    "status_code": status_code,
                    "headers": headers or {},
                    "body": body,
                },
            }
        )
    )
