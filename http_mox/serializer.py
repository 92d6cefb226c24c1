"""JSON-representable snapshots of HTTP requests and responses.

Every intercepted call is reduced to a :class:`SerializedRequest` and a
:class:`SerializedResponse`, paired into a :class:`SerializedHttp` record.
These are the shapes persisted in fixture files.  Bodies are tagged
(:class:`Body`) when they are captured so that writing a synthetic response
never needs to inspect the payload type.
"""

from __future__ import annotations

import dataclasses as dc
import enum
import json
import re
import typing as t
import uuid
from urllib.parse import urlsplit

SCHEMA_VERSION: t.Final[str] = "1.0.0"

DEFAULT_PORTS: t.Final[dict[str, int]] = {"http": 80, "https": 443}

_JSON_CONTENT_TYPE_RE: t.Final[re.Pattern[str]] = re.compile(
    r"^\s*application/(?:[\w.+-]+\+)?json\b", re.IGNORECASE
)

HeaderInput: t.TypeAlias = t.Mapping[str, str] | t.Iterable[tuple[str, str]]


class BodyKind(enum.StrEnum):
    """How a body payload is represented in a record."""

    TEXT = "text"
    JSON = "json"


@dc.dataclass(frozen=True, slots=True)
class Body:
    """A request or response payload tagged with its representation."""

    kind: BodyKind = BodyKind.TEXT
    value: t.Any = ""

    @classmethod
    def text(cls, value: str = "") -> Body:
        """Return a plain text body."""
        return cls(BodyKind.TEXT, value)

    @classmethod
    def json(cls, value: t.Any) -> Body:
        """Return a structured body that is JSON-encoded on the wire."""
        return cls(BodyKind.JSON, value)

    @classmethod
    def decode(cls, content: bytes, content_type: str | None = None) -> Body:
        """Build a body from raw *content*, parsing JSON content types."""
        text = content.decode("utf-8", errors="replace")
        if text and content_type and _JSON_CONTENT_TYPE_RE.match(content_type):
            try:
                value = json.loads(text)
            except ValueError:
                return cls.text(text)
            # A bare JSON string keeps its quotes so it re-encodes byte for byte.
            return cls.text(text) if isinstance(value, str) else cls.json(value)
        return cls.text(text)

    def encode(self) -> bytes:
        """Return the wire representation of the body."""
        if self.kind is BodyKind.JSON:
            return json.dumps(self.value).encode("utf-8")
        return str(self.value).encode("utf-8")

    def to_json(self) -> t.Any:
        """Return the value stored in fixture files."""
        return self.value

    @classmethod
    def from_json(cls, value: t.Any) -> Body:
        """Rebuild a body from its fixture representation.

        Strings are text bodies; any other JSON value, ``null`` included, is
        structured.
        """
        if isinstance(value, str):
            return cls.text(value)
        return cls.json(value)


def normalize_headers(headers: HeaderInput | None) -> dict[str, str]:
    """Return *headers* with lower-cased, unique keys.

    Repeated headers are folded into one comma-separated value.
    """
    if headers is None:
        return {}
    items = headers.items() if isinstance(headers, t.Mapping) else headers
    result: dict[str, str] = {}
    for key, value in items:
        name = str(key).lower()
        if name in result:
            result[name] = f"{result[name]}, {value}"
        else:
            result[name] = str(value)
    return result


def _require(data: t.Mapping[str, t.Any], key: str, typ: type, where: str) -> t.Any:
    if key not in data:
        msg = f"{where} is missing required field {key!r}"
        raise ValueError(msg)
    value = data[key]
    if not isinstance(value, typ) or isinstance(value, bool) and typ is int:
        msg = (
            f"{where}.{key} must be of type {typ.__name__}, "
            f"got {type(value).__name__}"
        )
        raise ValueError(msg)
    return value


def _headers_from_json(data: t.Mapping[str, t.Any], where: str) -> dict[str, str]:
    raw = data.get("headers", {})
    if not isinstance(raw, t.Mapping):
        msg = f"{where}.headers must be an object"
        raise ValueError(msg)  # noqa: TRY004
    return normalize_headers({str(k): str(v) for k, v in raw.items()})


def _body_from_json(data: t.Mapping[str, t.Any]) -> Body:
    if "body" not in data:
        return Body.text()
    return Body.from_json(data["body"])


def _as_mapping(data: t.Any, where: str) -> t.Mapping[str, t.Any]:
    if not isinstance(data, t.Mapping):
        msg = f"{where} must be an object, got {type(data).__name__}"
        raise ValueError(msg)  # noqa: TRY004
    return data


@dc.dataclass(frozen=True, slots=True)
class SerializedRequest:
    """Immutable snapshot of an outbound request."""

    method: str
    scheme: str
    host: str
    port: int
    path: str
    query: str = ""
    headers: dict[str, str] = dc.field(default_factory=dict)
    body: Body = dc.field(default_factory=Body.text)

    @property
    def url(self) -> str:
        """Return the absolute URL of the request."""
        return format_url(self)

    def to_dict(self) -> dict[str, t.Any]:
        """Return a JSON-serializable mapping."""
        return {
            "method": self.method,
            "scheme": self.scheme,
            "host": self.host,
            "port": self.port,
            "path": self.path,
            "query": self.query,
            "headers": dict(self.headers),
            "body": self.body.to_json(),
        }

    @classmethod
    def from_dict(
        cls, data: t.Mapping[str, t.Any], *, where: str = "request"
    ) -> SerializedRequest:
        """Construct from a JSON-compatible mapping, validating its shape."""
        data = _as_mapping(data, where)
        scheme = str(data.get("scheme", "http")).lower()
        if scheme not in DEFAULT_PORTS:
            msg = f"{where}.scheme must be one of http, https; got {scheme!r}"
            raise ValueError(msg)
        port = data.get("port", DEFAULT_PORTS[scheme])
        if not isinstance(port, int) or isinstance(port, bool):
            msg = f"{where}.port must be of type int, got {type(port).__name__}"
            raise ValueError(msg)  # noqa: TRY004
        return cls(
            method=_require(data, "method", str, where).upper(),
            scheme=scheme,
            host=_require(data, "host", str, where),
            port=port,
            path=_require(data, "path", str, where),
            query=str(data.get("query") or ""),
            headers=_headers_from_json(data, where),
            body=_body_from_json(data),
        )


@dc.dataclass(frozen=True, slots=True)
class SerializedResponse:
    """Immutable snapshot of a response."""

    status_code: int
    headers: dict[str, str] = dc.field(default_factory=dict)
    body: Body = dc.field(default_factory=Body.text)

    def to_dict(self) -> dict[str, t.Any]:
        """Return a JSON-serializable mapping."""
        return {
            "status_code": self.status_code,
            "headers": dict(self.headers),
            "body": self.body.to_json(),
        }

    @classmethod
    def from_dict(
        cls, data: t.Mapping[str, t.Any], *, where: str = "response"
    ) -> SerializedResponse:
        """Construct from a JSON-compatible mapping, validating its shape."""
        data = _as_mapping(data, where)
        return cls(
            status_code=_require(data, "status_code", int, where),
            headers=_headers_from_json(data, where),
            body=_body_from_json(data),
        )


@dc.dataclass(frozen=True, slots=True)
class SerializedHttp:
    """A completed request/response pair with its duration in milliseconds."""

    request: SerializedRequest
    response: SerializedResponse
    duration: int = 0
    id: str = dc.field(default_factory=lambda: uuid.uuid4().hex)
    version: str = SCHEMA_VERSION

    def to_dict(self) -> dict[str, t.Any]:
        """Return the fixture-file representation of this record."""
        return {
            "__id": self.id,
            "__version": self.version,
            "request": self.request.to_dict(),
            "response": self.response.to_dict(),
            "duration": self.duration,
        }

    @classmethod
    def from_dict(
        cls, data: t.Mapping[str, t.Any], *, where: str = "record"
    ) -> SerializedHttp:
        """Construct from a fixture mapping, validating its shape."""
        data = _as_mapping(data, where)
        for key in ("request", "response"):
            if key not in data:
                msg = f"{where} is missing required field {key!r}"
                raise ValueError(msg)
        duration = data.get("duration", 0)
        if not isinstance(duration, int | float) or isinstance(duration, bool):
            msg = f"{where}.duration must be a number"
            raise ValueError(msg)
        version = str(data.get("__version", SCHEMA_VERSION))
        _check_version(version, where)
        return cls(
            request=SerializedRequest.from_dict(
                data["request"], where=f"{where}.request"
            ),
            response=SerializedResponse.from_dict(
                data["response"], where=f"{where}.response"
            ),
            duration=max(0, int(duration)),
            id=str(data.get("__id") or uuid.uuid4().hex),
            version=version,
        )


def _check_version(version: str, where: str) -> None:
    """Reject records written by an incompatible major schema version."""
    major = version.split(".", 1)[0]
    if not major.isdigit():
        msg = f"{where}.__version {version!r} is not a valid version"
        raise ValueError(msg)
    if major != SCHEMA_VERSION.split(".", 1)[0]:
        msg = (
            f"{where}.__version {version!r} is incompatible with "
            f"schema version {SCHEMA_VERSION!r}"
        )
        raise ValueError(msg)


def format_url(request: SerializedRequest | RequestSerializer) -> str:
    """Return ``scheme://host[:port]/path?query`` for *request*.

    The port is omitted when it is the default for the scheme.
    """
    port = ""
    if DEFAULT_PORTS.get(request.scheme) != request.port:
        port = f":{request.port}"
    return f"{request.scheme}://{request.host}{port}{request.path}{request.query}"


def create_record(
    request: SerializedRequest,
    response: SerializedResponse,
    duration: int,
) -> SerializedHttp:
    """Pair *request* and *response* into a new record."""
    return SerializedHttp(request=request, response=response, duration=duration)


def validate_records(records: t.Iterable[t.Any]) -> list[SerializedHttp]:
    """Return *records* as validated :class:`SerializedHttp` instances.

    Mappings are parsed; instances are re-checked by a round trip through
    their dictionary form.

    Raises
    ------
    ValueError
        Naming the index of the first malformed entry.
    """
    validated: list[SerializedHttp] = []
    for index, entry in enumerate(records):
        where = f"record[{index}]"
        if isinstance(entry, SerializedHttp):
            validated.append(SerializedHttp.from_dict(entry.to_dict(), where=where))
        else:
            validated.append(SerializedHttp.from_dict(entry, where=where))
    return validated


def hydrate_http_mock(mock: t.Mapping[str, t.Any]) -> dict[str, t.Any]:
    """Expand the short mock form into a full record mapping.

    The short form lets tests write ``{"request": {"method": "GET", "url":
    "https://api.test/users/1"}, "response": {"status_code": 200, "body":
    {"id": 1}}}``.  Missing request fields take their defaults; the response
    ``status_code`` is still required.
    """
    mock = _as_mapping(mock, "mock")
    request = dict(_as_mapping(mock.get("request", {}), "mock.request"))
    url = request.pop("url", None)
    if url is not None:
        parts = urlsplit(str(url))
        scheme = parts.scheme or "http"
        request.setdefault("scheme", scheme)
        request.setdefault("host", parts.hostname or "")
        request.setdefault("port", parts.port or DEFAULT_PORTS.get(scheme, 80))
        request.setdefault("path", parts.path or "/")
        request.setdefault("query", f"?{parts.query}" if parts.query else "")
    request.setdefault("method", "GET")
    request.setdefault("path", "/")
    response = dict(_as_mapping(mock.get("response", {}), "mock.response"))
    response.setdefault("headers", {})
    response.setdefault("body", "")
    hydrated = dict(mock)
    hydrated["request"] = request
    hydrated["response"] = response
    return hydrated


class RequestSerializer:
    """Accumulate a request body stream into a :class:`SerializedRequest`."""

    def __init__(
        self,
        *,
        method: str,
        scheme: str,
        host: str,
        port: int,
        path: str,
        query: str = "",
        headers: HeaderInput | None = None,
    ) -> None:
        self.method = method.upper()
        self.scheme = scheme.lower()
        self.host = host
        self.port = port
        self.path = path or "/"
        self.query = query
        self.headers = normalize_headers(headers)
        self._chunks: list[bytes] = []
        self._finished = False

    @property
    def finished(self) -> bool:
        """Return ``True`` once the body stream has been fully consumed."""
        return self._finished

    @property
    def url(self) -> str:
        """Return the absolute URL of the request being serialized."""
        return format_url(self)

    def write(self, chunk: bytes) -> None:
        """Append a body chunk."""
        self._chunks.append(bytes(chunk))

    def consume(self, stream: t.Iterable[bytes]) -> SerializedRequest:
        """Drain *stream* into the serializer (once) and serialize it."""
        if not self._finished:
            for chunk in stream:
                self.write(chunk)
            self._finished = True
        return self.serialize()

    def serialize(self) -> SerializedRequest:
        """Return a snapshot of the request with the body seen so far."""
        return SerializedRequest(
            method=self.method,
            scheme=self.scheme,
            host=self.host,
            port=self.port,
            path=self.path,
            query=self.query,
            headers=dict(self.headers),
            body=Body.decode(b"".join(self._chunks), self.headers.get("content-type")),
        )


def serialize_response(
    status_code: int,
    headers: HeaderInput | None,
    content: bytes,
) -> SerializedResponse:
    """Return a :class:`SerializedResponse` for a fully read response."""
    normalized = normalize_headers(headers)
    return SerializedResponse(
        status_code=status_code,
        headers=normalized,
        body=Body.decode(content, normalized.get("content-type")),
    )


__all__ = [
    "DEFAULT_PORTS",
    "SCHEMA_VERSION",
    "Body",
    "BodyKind",
    "RequestSerializer",
    "SerializedHttp",
    "SerializedRequest",
    "SerializedResponse",
    "create_record",
    "format_url",
    "hydrate_http_mock",
    "normalize_headers",
    "serialize_response",
    "validate_records",
]
