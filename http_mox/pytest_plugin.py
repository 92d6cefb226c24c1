"""Pytest plugin providing the ``http_mox`` and ``http_mox_recording`` fixtures."""

from __future__ import annotations

import logging
import typing as t
from pathlib import Path

import pytest

from .controller import HttpMox
from .errors import ConfigurationError

if t.TYPE_CHECKING:
    from .recording import RecordingSession

logger = logging.getLogger(__name__)


def pytest_addoption(parser: pytest.Parser) -> None:
    """Register command-line and ini options for the plugin."""
    group = parser.getgroup("http_mox")
    group.addoption(
        "--http-mox-fixture-dir",
        action="store",
        dest="http_mox_fixture_dir",
        default=None,
        help=(
            "Directory holding http_mox_recording fixture files. "
            "Overrides the pytest.ini setting."
        ),
    )
    parser.addini(
        "http_mox_fixture_dir",
        "Directory (relative to the rootdir) holding http_mox_recording fixtures.",
        default=None,
    )


def pytest_configure(config: pytest.Config) -> None:
    """Register plugin-specific markers."""
    config.addinivalue_line(
        "markers",
        (
            "http_mox(fixture_dir=None, name=None, mode=None): override the "
            "fixture location or recording mode used by http_mox_recording."
        ),
    )


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(
    item: pytest.Item, call: pytest.CallInfo[t.Any]
) -> t.Generator[None, None, None]:
    """Attach each phase's report to the test item.

    The recording fixture inspects the ``call`` report during teardown to
    decide whether captured traffic should be written.
    """
    del call
    outcome = yield
    rep = outcome.get_result()
    setattr(item, f"rep_{rep.when}", rep)


def _marker_kwargs(request: pytest.FixtureRequest) -> dict[str, t.Any]:
    marker = request.node.get_closest_marker("http_mox")
    return dict(marker.kwargs) if marker is not None else {}


def _fixture_dir(request: pytest.FixtureRequest) -> Path:
    """Return the fixture directory.

    Priority order: marker > CLI option > INI setting.
    """
    marker_value = _marker_kwargs(request).get("fixture_dir")
    if marker_value is not None:
        return Path(marker_value)

    config = request.config
    cli_value = config.getoption("http_mox_fixture_dir")
    if cli_value is not None:
        return Path(cli_value)

    ini_value = config.getini("http_mox_fixture_dir")
    if ini_value:
        return Path(config.rootpath) / str(ini_value)

    msg = (
        "http_mox_recording needs a fixture directory: set the "
        "http_mox_fixture_dir ini option, pass --http-mox-fixture-dir, or "
        "use @pytest.mark.http_mox(fixture_dir=...)"
    )
    raise ConfigurationError(msg)


def _call_stage_failed(item: pytest.Item) -> bool:
    """Return ``True`` when the test body did not pass."""
    rep_call = getattr(item, "rep_call", None)
    return rep_call is None or not rep_call.passed


@pytest.fixture
def http_mox() -> t.Generator[HttpMox, None, None]:
    """Provide an :class:`HttpMox` engine, restored after the test."""
    mox = HttpMox()
    try:
        yield mox
    finally:
        try:
            mox.restore()
        except Exception:
            logger.exception("Error during http_mox fixture cleanup")
            raise


@pytest.fixture
def http_mox_recording(
    request: pytest.FixtureRequest, http_mox: HttpMox
) -> t.Generator[RecordingSession, None, None]:
    """Replay or record the test's traffic through a fixture file.

    The fixture is named after the test.  Recorded traffic is only written
    when the test body passed.
    """
    kwargs = _marker_kwargs(request)
    session = http_mox.recording(
        name=str(kwargs.get("name") or request.node.name),
        dir=_fixture_dir(request),
        mode=kwargs.get("mode"),
    )
    yield session
    if _call_stage_failed(request.node):
        logger.debug("Skipping fixture write for %s", request.node.nodeid)
        return
    try:
        session.complete()
    except Exception:
        logger.exception("Error completing http_mox recording session")
        raise
