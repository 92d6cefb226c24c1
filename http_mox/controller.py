"""HttpMox controller: the replay/record engine."""

from __future__ import annotations

import functools
import logging
import time
import typing as t

from .comparators import by_url
from .context import Context
from .errors import (
    ComparatorMismatchError,
    FixtureLoadError,
    HttpMoxError,
    IncompleteCaptureError,
    NoMockForIdentityError,
)
from .filtering import FilteredHttpCollection
from .fixture import FixtureOptions, load_fixture, save_fixture
from .interceptor import (
    INTERCEPT_EVENT,
    PROXIED_EVENT,
    InterceptEvent,
    InterceptionFacility,
    InterceptOptions,
    Interceptor,
    ProxiedEvent,
)
from .recording import Mode, RecordingSession
from .serializer import (
    SerializedHttp,
    create_record,
    hydrate_http_mock,
    validate_records,
)
from .transport import HttpxPatcher, InterceptingTransport

if t.TYPE_CHECKING:
    import types
    from pathlib import Path

    import httpx

    from .filtering import FilterInput, PropertyPath, Redactor
    from .serializer import SerializedRequest, SerializedResponse

logger = logging.getLogger(__name__)

_DEFAULT_FACILITY = object()

MockInput: t.TypeAlias = SerializedHttp | t.Mapping[str, t.Any]

_P = t.ParamSpec("_P")
_R = t.TypeVar("_R")


class HttpMox:
    """Capture outbound HTTP traffic, or answer it from a fixture.

    The engine starts in :attr:`Mode.SPY` with interception disabled.
    :meth:`spy` lets requests through and records them; :meth:`mock` answers
    each request from the loaded records by position.
    """

    def __init__(
        self,
        *,
        facility: InterceptionFacility | None | object = _DEFAULT_FACILITY,
        context: Context | None = None,
    ) -> None:
        """Create a new engine.

        Parameters
        ----------
        facility:
            Interception facility installed while interception is enabled.
            Defaults to an :class:`~http_mox.transport.HttpxPatcher`, which
            captures every httpx client.  Pass ``None`` to intercept only
            clients built with :meth:`transport`.
        context:
            State container; a fresh one is created when omitted.
        """
        if facility is _DEFAULT_FACILITY:
            facility = HttpxPatcher()
        self.ctx = context if context is not None else Context()
        self._mode = Mode.SPY
        self._interceptor = self._create_interceptor(
            t.cast("InterceptionFacility | None", facility)
        )

    @property
    def mode(self) -> Mode:
        """Return the current mode."""
        return self._mode

    @property
    def interceptor(self) -> Interceptor:
        """Return the interceptor adapter owned by this engine."""
        return self._interceptor

    # ------------------------------------------------------------------
    # Context manager protocol
    # ------------------------------------------------------------------
    def __enter__(self) -> HttpMox:
        """Return the engine; interception starts with :meth:`spy`/:meth:`mock`."""
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: types.TracebackType | None,
    ) -> None:
        """Disable interception and drop all state."""
        self.restore()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def restore(self) -> None:
        """Disable interception and clear all state."""
        logger.debug("Disabling intercept")
        self.clear()
        self._interceptor.disable()

    def spy(self, options: InterceptOptions | None = None) -> None:
        """Let requests reach the network and record them."""
        self._enable(options)
        self._set_mode(Mode.SPY)

    def mock(
        self,
        records: t.Iterable[MockInput],
        options: InterceptOptions | None = None,
    ) -> None:
        """Answer requests from *records* instead of the network.

        Mappings may use the short mock form accepted by
        :func:`~http_mox.serializer.hydrate_http_mock`.

        Raises
        ------
        FixtureLoadError
            If any record is malformed; the engine is left unchanged.
        """
        mocks = self._validate_mocks(records)
        self._enable(options)
        self._set_mode(Mode.MOCK)
        self.ctx.load_mocks(mocks)

    def recording(
        self,
        filename: Path | str | None = None,
        *,
        name: str | None = None,
        dir: Path | str | None = None,  # noqa: A002
        mode: Mode | str | None = None,
        redact: t.Sequence[PropertyPath] | None = None,
        redactor: Redactor | None = None,
    ) -> RecordingSession:
        """Begin a :class:`RecordingSession` for a fixture file."""
        session = RecordingSession(
            self,
            FixtureOptions(filename=filename, name=name, dir=dir),
            mode=mode,
            redact=redact,
            redactor=redactor,
        )
        return session.begin()

    def test(
        self,
        *,
        dir: Path | str,  # noqa: A002
        prefix: str | None = None,
    ) -> t.Callable[[t.Callable[_P, _R]], t.Callable[_P, _R]]:
        """Wrap test functions in a recording named after the function.

        The engine is restored before and after each test, and the fixture
        is only written when the test returns normally.
        """

        def decorator(func: t.Callable[_P, _R]) -> t.Callable[_P, _R]:
            title = f"{prefix}-{func.__name__}" if prefix else func.__name__

            @functools.wraps(func)
            def wrapper(*args: _P.args, **kwargs: _P.kwargs) -> _R:
                logger.debug("Running test %r", title)
                self.restore()
                try:
                    with self.recording(name=title, dir=dir):
                        return func(*args, **kwargs)
                finally:
                    self.restore()

            return wrapper

        return decorator

    def load(
        self,
        filename: Path | str | None = None,
        *,
        name: str | None = None,
        dir: Path | str | None = None,  # noqa: A002
    ) -> list[SerializedHttp]:
        """Load and validate the records of a fixture file."""
        logger.debug("Loading mocks")
        return load_fixture(FixtureOptions(filename=filename, name=name, dir=dir).path)

    def save(
        self,
        filename: Path | str | None = None,
        *,
        name: str | None = None,
        dir: Path | str | None = None,  # noqa: A002
        records: t.Iterable[SerializedHttp] | None = None,
    ) -> Path:
        """Write intercepted records (or *records*) to a fixture file.

        Raises
        ------
        IncompleteCaptureError
            If *records* is omitted and requests are still in flight.
        """
        path = FixtureOptions(filename=filename, name=name, dir=dir).path
        to_save = self.records_to_save() if records is None else list(records)
        return save_fixture(path, to_save)

    def records_to_save(self) -> list[SerializedHttp]:
        """Return completed records, refusing while requests are in flight."""
        pending = self.ctx.pending()
        if pending:
            raise IncompleteCaptureError([entry.describe() for entry in pending])
        return self.ctx.completed_records()

    def clear(self) -> None:
        """Forget all requests and mocks and restart numbering at zero.

        Call between tests to keep them independent.
        """
        self.ctx.clear()
        self._interceptor.reset()

    def matching(self, filter: FilterInput = None) -> FilteredHttpCollection:  # noqa: A002
        """Return a view over the records selected by *filter*."""
        return FilteredHttpCollection(self.ctx, filter)

    def intercepted(self) -> list[SerializedHttp]:
        """Return every completed record in request order."""
        return self.matching().intercepted()

    def mocks(self) -> list[SerializedHttp]:
        """Return every loaded mock in position order."""
        return self.matching().mocks()

    def redact(
        self,
        property_path: PropertyPath | t.Sequence[PropertyPath],
        redactor: Redactor | None = None,
    ) -> None:
        """Redact *property_path* on every record."""
        self.matching().redact(property_path, redactor)

    def transport(
        self, inner: httpx.BaseTransport | httpx.AsyncBaseTransport | None = None
    ) -> InterceptingTransport:
        """Return an httpx transport routed through this engine."""
        return InterceptingTransport(self._interceptor, inner)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _enable(self, options: InterceptOptions | None) -> None:
        options = options or InterceptOptions()
        logger.debug(
            "Enabling intercept. Ignoring ports %s", sorted(options.ignore_ports)
        )
        self._interceptor.enable(options)

    def _set_mode(self, mode: Mode) -> None:
        self._mode = mode
        self._interceptor.proxy(mode is not Mode.MOCK)
        logger.debug("Mode set to %s", mode)

    @staticmethod
    def _validate_mocks(records: t.Iterable[MockInput]) -> list[SerializedHttp]:
        try:
            entries = [
                record
                if isinstance(record, SerializedHttp)
                else hydrate_http_mock(record)
                for record in records
            ]
            return validate_records(entries)
        except ValueError as exc:
            msg = f"Invalid mocks: {exc}"
            raise FixtureLoadError(msg) from exc

    def _create_interceptor(self, facility: InterceptionFacility | None) -> Interceptor:
        interceptor = Interceptor(facility, should_proxy=self._mode is not Mode.MOCK)
        interceptor.on(INTERCEPT_EVENT, self._on_intercept)
        interceptor.on(PROXIED_EVENT, self._on_proxied)
        return interceptor

    def _on_intercept(self, event: InterceptEvent) -> None:
        self.ctx.start(event.identity, event.request_serializer, time.monotonic())
        if not event.call.proxied:
            self._mock_response(event)

    def _on_proxied(self, event: ProxiedEvent) -> None:
        self._record_completed(event.request, event.response, event.identity)

    def _mock_response(self, event: InterceptEvent) -> None:
        """Answer *event* from the loaded mock at its position.

        Failures are delivered to the intercepted call only.
        """
        identity = event.identity
        call = event.call
        try:
            request = event.drain()
            mock = self.ctx.mock_at(identity)
            if mock is None:
                raise NoMockForIdentityError(identity)
            compare = event.comparator or by_url
            try:
                compare(request, mock.request, identity=identity)
            except Exception as exc:
                raise ComparatorMismatchError(identity, str(exc) or repr(exc)) from exc
            call.respond(
                mock.response.status_code,
                mock.response.headers,
                mock.response.body.encode(),
            )
            self._record_completed(request, mock.response, identity)
        except HttpMoxError as exc:
            if call.settled:
                raise
            logger.debug("Mock response failed: %s", exc)
            call.fail(exc)
        except Exception as exc:
            if call.settled:
                raise
            logger.exception("Mock response failed unexpectedly")
            error = HttpMoxError(f"Mock response failed: {exc}")
            error.__cause__ = exc
            call.fail(error)

    def _record_completed(
        self,
        request: SerializedRequest,
        response: SerializedResponse,
        identity: int,
    ) -> None:
        entry = self.ctx.in_flight_entry(identity)
        duration = max(0, round((time.monotonic() - entry.start_time) * 1000))
        record = create_record(request, response, duration)
        self.ctx.finish(identity, record)
        logger.debug(
            "Added request-response for %s %s (duration: %d)",
            request.method,
            request.host,
            duration,
        )


__all__ = ["HttpMox", "Mode"]
