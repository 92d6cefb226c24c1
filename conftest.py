"""Global test configuration and shared fixtures."""

from __future__ import annotations

import socket
import typing as t

import pytest

import http_mox.recording

pytest_plugins = ("http_mox.pytest_plugin", "pytester")

_LOOPBACK_SUPPORTED: bool | None = None


def _can_bind_loopback() -> bool:
    """Return ``True`` when the platform allows binding a loopback TCP port."""
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind(("127.0.0.1", 0))
        except PermissionError:
            return False
        finally:
            sock.close()
    except OSError:
        return False
    else:
        return True


def _loopback_supported() -> bool:
    global _LOOPBACK_SUPPORTED
    if _LOOPBACK_SUPPORTED is None:
        _LOOPBACK_SUPPORTED = _can_bind_loopback()
    return _LOOPBACK_SUPPORTED


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers and cache platform capability checks."""
    config.addinivalue_line(
        "markers",
        "requires_loopback: mark test as needing a local TCP server",
    )
    _loopback_supported()


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Skip tests needing a loopback server when the platform disallows them."""
    if _loopback_supported():
        return
    skip = pytest.mark.skip(reason="Loopback sockets are not permitted here")
    for item in items:
        if "requires_loopback" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(autouse=True)
def clear_recording_mode(monkeypatch: pytest.MonkeyPatch) -> t.Iterator[None]:
    """Keep the developer's recording mode from leaking into tests."""
    monkeypatch.delenv(http_mox.recording.RECORDING_MODE_ENV, raising=False)
    yield
