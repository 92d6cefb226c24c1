"""Filtered, redactable views over an engine's records.

A view is built from a :class:`~http_mox.context.Context` and an optional
matcher.  The matcher is turned into one of a closed set of filters when the
view is created:

- ``str``: :class:`UrlFilter` (URL prefix; a leading ``/`` matches the path)
- compiled regular expression: :class:`UrlPatternFilter`
- mapping: :class:`PartialMatchFilter` (subset of ``url``/``request``/
  ``response`` that must match)
- any other callable: :class:`PredicateFilter`
"""

from __future__ import annotations

import copy
import dataclasses as dc
import logging
import re
import typing as t

from .errors import HttpMoxError
from .serializer import SerializedHttp

if t.TYPE_CHECKING:
    from .context import Context
    from .serializer import SerializedRequest, SerializedResponse

logger = logging.getLogger(__name__)

DEFAULT_REDACT_SYMBOL: t.Final[str] = "*****"

_SIDES: t.Final[tuple[str, str]] = ("request", "response")

Redactor: t.TypeAlias = t.Callable[[t.Any, str], t.Any]
PropertyPath: t.TypeAlias = str | t.Sequence[str]


class _Missing:
    """Sentinel for absent values."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: t.Final = _Missing()


def _step(current: t.Any, segment: str) -> t.Any:
    if isinstance(current, t.Mapping):
        return current.get(segment, MISSING)
    if isinstance(current, list) and segment.isdigit():
        index = int(segment)
        return current[index] if index < len(current) else MISSING
    return MISSING


def get_path(data: t.Any, segments: t.Sequence[str]) -> t.Any:
    """Return the value at *segments* in *data*, or :data:`MISSING`."""
    current = data
    for segment in segments:
        current = _step(current, segment)
        if current is MISSING:
            return MISSING
    return current


def set_path(data: t.Any, segments: t.Sequence[str], value: t.Any) -> bool:
    """Replace the existing value at *segments*; return ``False`` if absent."""
    *parents, last = segments
    container = get_path(data, parents) if parents else data
    if _step(container, last) is MISSING:
        return False
    if isinstance(container, list):
        container[int(last)] = value
    else:
        container[last] = value
    return True


def split_path(path: PropertyPath) -> list[str]:
    """Return the segments of a dot-addressed *path*."""
    segments = path.split(".") if isinstance(path, str) else list(path)
    if not segments or any(segment == "" for segment in segments):
        msg = f"Invalid property path {path!r}"
        raise ValueError(msg)
    return segments


class HttpFilter(t.Protocol):
    """A predicate selecting records."""

    def matches(self, record: SerializedHttp) -> bool:
        """Return ``True`` when *record* is selected."""
        ...


@dc.dataclass(frozen=True, slots=True)
class UrlFilter:
    """Select records whose URL starts with ``prefix``.

    A prefix beginning with ``/`` is also tried against path and query.
    """

    prefix: str

    def matches(self, record: SerializedHttp) -> bool:
        """Return ``True`` when the request URL starts with ``prefix``."""
        request = record.request
        if request.url.startswith(self.prefix):
            return True
        return self.prefix.startswith("/") and (
            f"{request.path}{request.query}".startswith(self.prefix)
        )


@dc.dataclass(frozen=True, slots=True)
class UrlPatternFilter:
    """Select records whose URL matches ``pattern``."""

    pattern: re.Pattern[str]

    def matches(self, record: SerializedHttp) -> bool:
        """Return ``True`` when ``pattern`` is found in the request URL."""
        return self.pattern.search(record.request.url) is not None


def _partial_matches(actual: t.Any, expected: t.Any) -> bool:
    if isinstance(expected, t.Mapping):
        if not isinstance(actual, t.Mapping):
            return False
        return all(
            _partial_matches(actual.get(key, MISSING), value)
            for key, value in expected.items()
        )
    if isinstance(expected, re.Pattern):
        return isinstance(actual, str) and expected.search(actual) is not None
    return actual == expected


@dc.dataclass(frozen=True, slots=True)
class PartialMatchFilter:
    """Select records matching a subset of their serialized fields.

    ``{"request": {"method": "POST"}, "response": {"status_code": 201}}``
    selects records with those values regardless of the other fields.  The
    ``url`` key takes a string prefix or regular expression, and regular
    expressions are allowed for any string field.
    """

    spec: t.Mapping[str, t.Any]

    def matches(self, record: SerializedHttp) -> bool:
        """Return ``True`` when every field in ``spec`` matches."""
        data = record.to_dict()
        for key, expected in self.spec.items():
            if key == "url":
                url_filter = as_filter(expected)
                if url_filter is None or not url_filter.matches(record):
                    return False
            elif not _partial_matches(data.get(key, MISSING), expected):
                return False
        return True


@dc.dataclass(frozen=True, slots=True)
class PredicateFilter:
    """Select records for which ``func`` returns a truthy value."""

    func: t.Callable[[SerializedHttp], bool]

    def matches(self, record: SerializedHttp) -> bool:
        """Return ``bool(func(record))``."""
        return bool(self.func(record))


FilterInput: t.TypeAlias = (
    str
    | re.Pattern[str]
    | t.Mapping[str, t.Any]
    | t.Callable[[SerializedHttp], bool]
    | HttpFilter
    | None
)

_FILTER_TYPES: t.Final = (
    UrlFilter,
    UrlPatternFilter,
    PartialMatchFilter,
    PredicateFilter,
)


def as_filter(value: FilterInput) -> HttpFilter | None:
    """Select the filter variant for *value*."""
    if value is None or isinstance(value, _FILTER_TYPES):
        return value
    if isinstance(value, str):
        return UrlFilter(value)
    if isinstance(value, re.Pattern):
        return UrlPatternFilter(value)
    if isinstance(value, t.Mapping):
        return PartialMatchFilter(value)
    if callable(value):
        return PredicateFilter(value)
    msg = f"Unsupported filter of type {type(value).__name__}"
    raise TypeError(msg)


def _redaction_targets(segments: list[str]) -> list[list[str]]:
    if segments[0] in _SIDES:
        return [segments]
    return [[side, *segments] for side in _SIDES]


def redact_record(
    record: SerializedHttp,
    paths: t.Sequence[PropertyPath],
    redactor: Redactor | None = None,
) -> SerializedHttp:
    """Return a copy of *record* with the values at *paths* replaced.

    Paths starting with ``request.`` or ``response.`` address that side only;
    any other path is applied to both.  Absent values are left alone.  The
    original record is returned unchanged when nothing was redacted.
    """
    data = copy.deepcopy(record.to_dict())
    changed = False
    for path in paths:
        for target in _redaction_targets(split_path(path)):
            current = get_path(data, target)
            if current is MISSING:
                continue
            dotted = ".".join(target)
            value = (
                DEFAULT_REDACT_SYMBOL if redactor is None else redactor(current, dotted)
            )
            changed = set_path(data, target, value) or changed
    if not changed:
        return record
    try:
        return SerializedHttp.from_dict(data)
    except ValueError as exc:
        msg = f"Redaction produced an invalid record: {exc}"
        raise HttpMoxError(msg) from exc


class FilteredHttpCollection:
    """Read-only query layer over a :class:`Context`."""

    def __init__(self, context: Context, matcher: FilterInput = None) -> None:
        self._context = context
        self._filter = as_filter(matcher)

    def _matches(self, record: SerializedHttp) -> bool:
        return self._filter is None or self._filter.matches(record)

    def intercepted(self) -> list[SerializedHttp]:
        """Return completed records passing the filter, in identity order."""
        return [r for r in self._context.completed_records() if self._matches(r)]

    def mocks(self) -> list[SerializedHttp]:
        """Return loaded mocks passing the filter, in position order."""
        return [r for r in self._context.loaded_records() if self._matches(r)]

    def only(self) -> SerializedHttp:
        """Return the single intercepted record passing the filter."""
        records = self.intercepted()
        if len(records) != 1:
            msg = f"Expected exactly one intercepted request, found {len(records)}"
            raise HttpMoxError(msg)
        return records[0]

    def request(self) -> SerializedRequest:
        """Return the request of :meth:`only`."""
        return self.only().request

    def response(self) -> SerializedResponse:
        """Return the response of :meth:`only`."""
        return self.only().response

    def redact(
        self,
        property_path: PropertyPath | t.Sequence[PropertyPath],
        redactor: Redactor | None = None,
    ) -> None:
        """Redact *property_path* on every record currently held by the view.

        Records are replaced by redacted copies; lists returned earlier by
        :meth:`intercepted` or :meth:`mocks` keep the original objects.
        """
        paths = _normalize_paths(property_path)
        logger.debug("Redacting %s", ", ".join(".".join(split_path(p)) for p in paths))

        def replace(record: SerializedHttp) -> SerializedHttp | None:
            if not self._matches(record):
                return None
            return redact_record(record, paths, redactor)

        self._context.replace_records(replace)


def _normalize_paths(
    property_path: PropertyPath | t.Sequence[PropertyPath],
) -> list[PropertyPath]:
    """Return the paths to redact.

    A string or a tuple of segments is one path; a list holds several.
    """
    if isinstance(property_path, str | tuple):
        return [property_path]
    return list(property_path)


__all__ = [
    "DEFAULT_REDACT_SYMBOL",
    "MISSING",
    "FilteredHttpCollection",
    "HttpFilter",
    "PartialMatchFilter",
    "PredicateFilter",
    "Redactor",
    "UrlFilter",
    "UrlPatternFilter",
    "as_filter",
    "get_path",
    "redact_record",
    "set_path",
    "split_path",
]
