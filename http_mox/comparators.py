"""Comparator strategies validating replayed requests against fixtures.

A comparator receives the actual request, the request recorded in the
fixture and the request identity.  It returns ``None`` when the two match and
raises to signal a mismatch; the engine wraps whatever it raises.
"""

from __future__ import annotations

import typing as t

from .filtering import MISSING, get_path

if t.TYPE_CHECKING:
    from .serializer import SerializedRequest


class Comparator(t.Protocol):
    """Callable raising when *actual* does not match *expected*."""

    def __call__(
        self,
        actual: SerializedRequest,
        expected: SerializedRequest,
        *,
        identity: int,
    ) -> None:
        """Raise if *actual* does not satisfy *expected*."""
        ...


def _mismatch(identity: int, label: str, expected: object, actual: object) -> None:
    msg = (
        f"Request #{identity}: expected {label} {expected!r}, "
        f"received {actual!r}"
    )
    raise AssertionError(msg)


class ByUrl:
    """Match the request method and absolute URL; ignore headers and body."""

    def __call__(
        self,
        actual: SerializedRequest,
        expected: SerializedRequest,
        *,
        identity: int,
    ) -> None:
        """Raise when method or URL differ."""
        if actual.method != expected.method:
            _mismatch(identity, "method", expected.method, actual.method)
        if actual.url != expected.url:
            _mismatch(identity, "URL", expected.url, actual.url)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        """Return a debug representation."""
        return "ByUrl()"


class ByBody:
    """Match the request body."""

    def __call__(
        self,
        actual: SerializedRequest,
        expected: SerializedRequest,
        *,
        identity: int,
    ) -> None:
        """Raise when the bodies differ."""
        if actual.body.to_json() != expected.body.to_json():
            _mismatch(
                identity, "body", expected.body.to_json(), actual.body.to_json()
            )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        """Return a debug representation."""
        return "ByBody()"


class ByHeaders:
    """Match the named request headers (case-insensitive names)."""

    def __init__(self, *names: str) -> None:
        self.names = tuple(name.lower() for name in names)

    def __call__(
        self,
        actual: SerializedRequest,
        expected: SerializedRequest,
        *,
        identity: int,
    ) -> None:
        """Raise when any named header differs."""
        for name in self.names:
            want = expected.headers.get(name)
            got = actual.headers.get(name)
            if want != got:
                _mismatch(identity, f"header {name!r}", want, got)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        """Return a debug representation."""
        return f"ByHeaders({', '.join(repr(n) for n in self.names)})"


class ByFields:
    """Match arbitrary dot-addressed fields of the serialized request.

    ``ByFields("method", "path", "body.user.id")`` compares only those
    values; a field missing on both sides counts as a match.
    """

    def __init__(self, *paths: str) -> None:
        self.paths = paths

    def __call__(
        self,
        actual: SerializedRequest,
        expected: SerializedRequest,
        *,
        identity: int,
    ) -> None:
        """Raise on the first differing field."""
        actual_data = actual.to_dict()
        expected_data = expected.to_dict()
        for path in self.paths:
            want = get_path(expected_data, path.split("."))
            got = get_path(actual_data, path.split("."))
            if want != got:
                _mismatch(
                    identity,
                    path,
                    None if want is MISSING else want,
                    None if got is MISSING else got,
                )

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        """Return a debug representation."""
        return f"ByFields({', '.join(repr(p) for p in self.paths)})"


class AllOf:
    """Apply several comparators in turn."""

    def __init__(self, *comparators: Comparator) -> None:
        self.comparators = comparators

    def __call__(
        self,
        actual: SerializedRequest,
        expected: SerializedRequest,
        *,
        identity: int,
    ) -> None:
        """Raise with the first failing comparator's error."""
        for comparator in self.comparators:
            comparator(actual, expected, identity=identity)

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        """Return a debug representation."""
        return f"AllOf({', '.join(repr(c) for c in self.comparators)})"


by_url = ByUrl()

__all__ = [
    "AllOf",
    "ByBody",
    "ByFields",
    "ByHeaders",
    "ByUrl",
    "Comparator",
    "by_url",
]
