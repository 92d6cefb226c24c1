"""RecordingSession: bind one test to one fixture file.

The recording mode comes from ``HTTP_MOX_RECORDING_MODE`` (default
``mock``).  In ``mock`` mode the fixture is loaded and replayed; in ``spy``
mode requests reach the network and the captured traffic is written to the
fixture when the session completes.

Lifecycle: ``begin()`` -> test body -> ``complete()``.
"""

from __future__ import annotations

import enum
import logging
import os
import typing as t

from .errors import ConfigurationError, LifecycleError
from .filtering import redact_record
from .fixture import FixtureOptions, load_fixture

if t.TYPE_CHECKING:
    import types
    from pathlib import Path

    from .controller import HttpMox
    from .filtering import PropertyPath, Redactor

logger = logging.getLogger(__name__)

RECORDING_MODE_ENV: t.Final[str] = "HTTP_MOX_RECORDING_MODE"


class Mode(enum.StrEnum):
    """Whether traffic is passed through and recorded or replayed."""

    SPY = "spy"
    MOCK = "mock"


def parse_mode(value: str | Mode, *, source: str = RECORDING_MODE_ENV) -> Mode:
    """Return the :class:`Mode` named by *value*.

    Raises
    ------
    ConfigurationError
        If *value* does not name a mode.
    """
    if isinstance(value, Mode):
        return value
    try:
        return Mode(value.strip().lower())
    except ValueError:
        accepted = ", ".join(mode.value for mode in Mode)
        msg = f"Invalid mode {value!r} set for {source}. Must be one of {accepted}"
        raise ConfigurationError(msg) from None


def mode_from_env(environ: t.Mapping[str, str] | None = None) -> Mode:
    """Return the recording mode selected by the environment."""
    env = os.environ if environ is None else environ
    return parse_mode(env.get(RECORDING_MODE_ENV) or Mode.MOCK.value)


class RecordingSession:
    """Replay a fixture, or record traffic into it, for one test.

    Parameters
    ----------
    mox : HttpMox
        The engine whose traffic is replayed or recorded.
    fixture : FixtureOptions | Path | str
        Location of the fixture file.
    mode : Mode | str | None
        Explicit mode; when ``None`` the environment decides.
    redact : Sequence[PropertyPath] | None
        Properties redacted from the records before they are written.
    redactor : Redactor | None
        Replacement function for *redact*; the default is a placeholder.
    """

    def __init__(
        self,
        mox: HttpMox,
        fixture: FixtureOptions | Path | str,
        *,
        mode: Mode | str | None = None,
        redact: t.Sequence[PropertyPath] | None = None,
        redactor: Redactor | None = None,
    ) -> None:
        self._mox = mox
        self._fixture = (
            fixture if isinstance(fixture, FixtureOptions) else FixtureOptions(fixture)
        )
        self._requested_mode = mode
        self._redact: list[PropertyPath] = list(redact or [])
        self._redactor = redactor
        self._mode: Mode | None = None
        self._completed = False

    @property
    def fixture_path(self) -> Path:
        """The fixture file this session reads or writes."""
        return self._fixture.path

    @property
    def mode(self) -> Mode | None:
        """The effective mode, or ``None`` before :meth:`begin`."""
        return self._mode

    @property
    def is_started(self) -> bool:
        """Return ``True`` once :meth:`begin` succeeded."""
        return self._mode is not None

    @property
    def is_completed(self) -> bool:
        """Return ``True`` once :meth:`complete` succeeded."""
        return self._completed

    def begin(self) -> RecordingSession:
        """Switch the engine into the effective mode.

        Raises
        ------
        ConfigurationError
            If the mode or the fixture location is invalid.
        FixtureLoadError
            If replaying and the fixture cannot be loaded.
        LifecycleError
            If the session has already begun.
        """
        if self._mode is not None:
            msg = "Recording session has already begun"
            raise LifecycleError(msg)
        mode = (
            mode_from_env()
            if self._requested_mode is None
            else parse_mode(self._requested_mode, source="mode")
        )
        path = self._fixture.path
        if mode is Mode.MOCK:
            self._mox.mock(load_fixture(path))
        else:
            self._mox.spy()
        self._mode = mode
        logger.debug("Recording session for %s began in %s mode", path, mode)
        return self

    def complete(self) -> Path | None:
        """Persist recorded traffic when spying; do nothing when mocking.

        Returns
        -------
        Path | None
            The fixture path written, or ``None`` in mock mode.

        Raises
        ------
        IncompleteCaptureError
            If requests are still in flight.
        LifecycleError
            If the session has not begun or was already completed.
        """
        if self._mode is None:
            msg = "Recording session has not begun; call begin() first"
            raise LifecycleError(msg)
        if self._completed:
            msg = "Recording session has already been completed"
            raise LifecycleError(msg)
        saved: Path | None = None
        if self._mode is Mode.SPY:
            records = self._mox.records_to_save()
            if self._redact:
                records = [
                    redact_record(record, self._redact, self._redactor)
                    for record in records
                ]
            saved = self._mox.save(self._fixture.path, records=records)
        self._completed = True
        return saved

    def __enter__(self) -> RecordingSession:
        """Begin the session unless it already began."""
        if self._mode is None:
            self.begin()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        """Complete the session when the block exits cleanly."""
        if exc_type is None:
            self.complete()


__all__ = [
    "RECORDING_MODE_ENV",
    "Mode",
    "RecordingSession",
    "mode_from_env",
    "parse_mode",
]
