"""Fixture file naming and persistence.

A fixture is a JSON array of records (see
:meth:`~http_mox.serializer.SerializedHttp.to_dict`).  The position of a
record in the array is the identity of the request it answers during replay.
"""

from __future__ import annotations

import dataclasses as dc
import json
import logging
import re
import typing as t
from pathlib import Path

from .errors import ConfigurationError, FixtureLoadError
from .serializer import SerializedHttp, validate_records

logger = logging.getLogger(__name__)

FIXTURE_SUFFIX: t.Final[str] = "-http-mox.json"

_SLUG_RE: t.Final[re.Pattern[str]] = re.compile(r"[^a-z0-9]+")


def slugify(name: str) -> str:
    """Return a lower-case, dash-separated form of *name*."""
    slug = _SLUG_RE.sub("-", name.lower()).strip("-")
    if not slug:
        msg = f"Cannot derive a fixture name from {name!r}"
        raise ConfigurationError(msg)
    return slug


def fixture_filename(name: str, directory: Path | str) -> Path:
    """Return the fixture path used for a test called *name*."""
    return Path(directory) / f"{slugify(name)}{FIXTURE_SUFFIX}"


@dc.dataclass(slots=True, frozen=True)
class FixtureOptions:
    """Location of a fixture: an explicit ``filename`` or ``name`` + ``dir``."""

    filename: Path | str | None = None
    name: str | None = None
    dir: Path | str | None = None

    @property
    def path(self) -> Path:
        """Return the resolved fixture path."""
        if self.filename is not None:
            return Path(self.filename)
        if self.name is not None and self.dir is not None:
            return fixture_filename(self.name, self.dir)
        msg = "A fixture needs either a filename or both a name and a dir"
        raise ConfigurationError(msg)


def _parse(raw: t.Any, path: Path) -> list[SerializedHttp]:
    if isinstance(raw, dict) and isinstance(raw.get("records"), list):
        raw = raw["records"]
    if not isinstance(raw, list):
        msg = f"Fixture {path} must contain a JSON array of records"
        raise FixtureLoadError(msg)
    try:
        return validate_records(raw)
    except ValueError as exc:
        msg = f"Fixture {path} is malformed: {exc}"
        raise FixtureLoadError(msg) from exc


def load_fixture(path: Path | str) -> list[SerializedHttp]:
    """Read and validate the records stored at *path*.

    Raises
    ------
    FixtureLoadError
        If the file is missing, is not JSON, or holds a malformed record.
    """
    path = Path(path)
    logger.debug("Loading fixture %s", path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Fixture {path} does not exist"
        raise FixtureLoadError(msg) from exc
    except OSError as exc:
        msg = f"Fixture {path} could not be read: {exc}"
        raise FixtureLoadError(msg) from exc
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        msg = f"Fixture {path} is not valid JSON: {exc}"
        raise FixtureLoadError(msg) from exc
    return _parse(raw, path)


def save_fixture(path: Path | str, records: t.Iterable[SerializedHttp]) -> Path:
    """Write *records* to *path*, creating directories as needed."""
    path = Path(path)
    payload = [record.to_dict() for record in records]
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2) + "\n", encoding="utf-8")
    logger.debug("Saved %d record(s) to %s", len(payload), path)
    return path


__all__ = [
    "FIXTURE_SUFFIX",
    "FixtureOptions",
    "fixture_filename",
    "load_fixture",
    "save_fixture",
    "slugify",
]
