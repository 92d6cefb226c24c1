"""Unit tests for :class:`http_mox.controller.HttpMox`."""

from __future__ import annotations

import concurrent.futures
import random
import typing as t

import pytest

from http_mox.controller import HttpMox
from http_mox.errors import (
    ComparatorMismatchError,
    FixtureLoadError,
    HttpMoxError,
    IncompleteCaptureError,
    NoMockForIdentityError,
)
from http_mox.fixture import fixture_filename, load_fixture
from http_mox.interceptor import InterceptedCall, InterceptOptions
from http_mox.recording import RECORDING_MODE_ENV, Mode
from http_mox.serializer import Body
from http_mox.unittests._call_helpers import (
    API,
    make_call,
    mock_record,
    network_response,
)

if t.TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def mox() -> t.Iterator[HttpMox]:
    """Return an engine without a network facility."""
    engine = HttpMox(facility=None)
    yield engine
    engine.restore()


def _spy_call(mox: HttpMox, url: str, *, status_code: int = 200) -> InterceptedCall:
    call = make_call(url=url)
    mox.interceptor.submit(call)
    mox.interceptor.complete(call, network_response(status_code, b"ok"))
    return call


class TestSpyMode:
    """Requests reaching the network are recorded by identity."""

    def test_completed_request_is_recorded(self, mox: HttpMox) -> None:
        """A single spied request yields one record."""
        mox.spy()
        _spy_call(mox, f"{API}/users/1")

        [record] = mox.intercepted()
        assert record.request.method == "GET"
        assert record.request.url == f"{API}/users/1"
        assert record.response.body == Body.text("ok")
        assert record.duration >= 0

    def test_out_of_order_completion_keeps_identity_order(self, mox: HttpMox) -> None:
        """Completion order never changes the order of records."""
        mox.spy()
        calls = [make_call(url=f"{API}/{n}") for n in range(4)]
        for call in calls:
            mox.interceptor.submit(call)
        for index in (3, 1, 0, 2):
            body = str(index).encode()
            mox.interceptor.complete(calls[index], network_response(200, body))

        records = mox.intercepted()
        assert [r.request.path for r in records] == ["/0", "/1", "/2", "/3"]
        assert [r.response.body.value for r in records] == ["0", "1", "2", "3"]

    def test_concurrent_submissions_get_unique_identities(self, mox: HttpMox) -> None:
        """Identities are assigned exactly once under concurrent submission."""
        mox.spy()
        calls = [make_call(url=f"{API}/{n}") for n in range(32)]
        with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
            identities = list(pool.map(mox.interceptor.submit, calls))
        shuffled = list(calls)
        random.Random(7).shuffle(shuffled)
        with concurrent.futures.ThreadPoolExecutor(max_workers=8) as pool:
            list(
                pool.map(
                    lambda call: mox.interceptor.complete(call, network_response()),
                    shuffled,
                )
            )

        assert sorted(t.cast("list[int]", identities)) == list(range(32))
        records = mox.intercepted()
        by_identity = {call.identity: call.path for call in calls}
        assert [r.request.path for r in records] == [by_identity[i] for i in range(32)]


class TestMockMode:
    """Requests are answered from loaded records by position."""

    def test_matching_request_gets_mock_response(self, mox: HttpMox) -> None:
        """The caller receives the fixture response and it is recorded."""
        mox.mock([mock_record(url=f"{API}/users/1", body={"id": 1})])
        call = make_call(url=f"{API}/users/1")
        mox.interceptor.submit(call)

        assert call.response is not None
        assert call.response.status_code == 200
        assert call.response.content == b'{"id": 1}'
        [record] = mox.intercepted()
        assert record.response.body == Body.json({"id": 1})

    def test_mismatch_fails_only_that_call(self, mox: HttpMox) -> None:
        """A comparator failure is delivered to the mismatching call alone."""
        mox.mock(
            [
                mock_record(url=f"{API}/a"),
                mock_record(url=f"{API}/b"),
                mock_record(url=f"{API}/c"),
            ]
        )
        calls = [make_call(url=f"{API}/{p}") for p in ("a", "wrong", "c")]
        for call in calls:
            mox.interceptor.submit(call)

        assert isinstance(calls[1].error, ComparatorMismatchError)
        assert calls[1].error.identity == 1
        assert calls[0].response is not None
        assert calls[2].response is not None
        assert [r.request.path for r in mox.intercepted()] == ["/a", "/c"]

    def test_missing_mock_fails_the_call(self, mox: HttpMox) -> None:
        """A request beyond the loaded records has no mock."""
        mox.mock([mock_record()])
        mox.interceptor.submit(make_call())
        extra = make_call()
        mox.interceptor.submit(extra)

        assert isinstance(extra.error, NoMockForIdentityError)
        assert "#1" in str(extra.error)

    def test_comparator_option_is_used(self, mox: HttpMox) -> None:
        """A custom comparator replaces the default URL comparison."""
        seen: list[int] = []

        def accept_anything(actual: object, expected: object, *, identity: int) -> None:
            del actual, expected
            seen.append(identity)

        mox.mock(
            [mock_record(url=f"{API}/a")],
            InterceptOptions(comparator=accept_anything),
        )
        call = make_call(url=f"{API}/b")
        mox.interceptor.submit(call)

        assert seen == [0]
        assert call.response is not None

    def test_unexpected_failure_is_wrapped(
        self, mox: HttpMox, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Non-domain errors reach the caller as HttpMoxError."""
        mox.mock([mock_record()])

        def broken(identity: int) -> None:
            raise RuntimeError(f"boom {identity}")

        monkeypatch.setattr(mox.ctx, "mock_at", broken)
        call = make_call()
        mox.interceptor.submit(call)

        assert isinstance(call.error, HttpMoxError)
        assert "boom 0" in str(call.error)
        assert isinstance(call.error.__cause__, RuntimeError)

    def test_malformed_mocks_leave_engine_unchanged(self, mox: HttpMox) -> None:
        """Invalid input raises before any state is touched."""
        with pytest.raises(FixtureLoadError, match=r"record\[1\]"):
            mox.mock([mock_record(), {"request": {"url": f"{API}/x"}, "response": {}}])

        assert mox.mode is Mode.SPY
        assert not mox.interceptor.enabled
        assert mox.mocks() == []

    def test_short_form_mocks_are_accepted(self, mox: HttpMox) -> None:
        """Mappings in the short mock form are hydrated."""
        mox.mock(
            [{"request": {"url": f"{API}/users/1"}, "response": {"status_code": 204}}]
        )
        [mock] = mox.mocks()
        assert mock.request.method == "GET"
        assert mock.response.status_code == 204


class TestSaving:
    """records_to_save() and save() refuse incomplete captures."""

    def test_save_waits_for_in_flight_requests(
        self, mox: HttpMox, tmp_path: Path
    ) -> None:
        """Saving fails while any request is still in flight."""
        mox.spy()
        first, second = make_call(url=f"{API}/1"), make_call(url=f"{API}/2")
        mox.interceptor.submit(first)
        mox.interceptor.submit(second)
        mox.interceptor.complete(first, network_response())

        with pytest.raises(IncompleteCaptureError, match="1 in flight") as excinfo:
            mox.save(tmp_path / "out.json")
        assert excinfo.value.pending == [f"GET {API}/2"]

        mox.interceptor.complete(second, network_response())
        path = mox.save(tmp_path / "out.json")
        assert len(load_fixture(path)) == 2

    def test_save_by_name_uses_fixture_naming(
        self, mox: HttpMox, tmp_path: Path
    ) -> None:
        """name + dir resolve to the conventional fixture file."""
        mox.spy()
        _spy_call(mox, f"{API}/1")
        path = mox.save(name="Lists Users", dir=tmp_path)

        assert path == fixture_filename("Lists Users", tmp_path)
        assert mox.load(name="Lists Users", dir=tmp_path)[0].request.path == "/1"


class TestLifecycle:
    """clear(), restore() and engine independence."""

    def test_clear_resets_collections_and_numbering(self, mox: HttpMox) -> None:
        """After clear(), collections are empty and numbering restarts."""
        mox.mock([mock_record()])
        mox.interceptor.submit(make_call())
        mox.clear()

        assert mox.intercepted() == []
        assert mox.mocks() == []
        assert mox.interceptor.request_number == 0

    def test_restore_disables_interception(self, mox: HttpMox) -> None:
        """restore() stops interception."""
        mox.spy()
        mox.restore()

        assert not mox.interceptor.enabled
        assert mox.interceptor.submit(make_call()) is None

    def test_engines_are_independent(self) -> None:
        """Two engines keep their own numbering and records."""
        with HttpMox(facility=None) as one, HttpMox(facility=None) as two:
            one.spy()
            two.spy()
            _spy_call(one, f"{API}/one")
            _spy_call(one, f"{API}/one-again")
            _spy_call(two, f"{API}/two")

            assert one.interceptor.request_number == 2
            assert two.interceptor.request_number == 1
            assert [r.request.path for r in two.intercepted()] == ["/two"]


class TestTestDecorator:
    """The test() wrapper records once and replays afterwards."""

    def test_spy_then_mock(
        self, mox: HttpMox, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """The same decorated function records, then replays its fixture."""
        responses: list[object] = []

        @mox.test(dir=tmp_path, prefix="users")
        def fetch_user() -> None:
            call = make_call(url=f"{API}/users/1")
            mox.interceptor.submit(call)
            if call.proxied:
                mox.interceptor.complete(call, network_response(200, b"alice"))
            else:
                assert call.response is not None
                responses.append(call.response.content)

        monkeypatch.setenv(RECORDING_MODE_ENV, "spy")
        fetch_user()
        path = fixture_filename("users-fetch_user", tmp_path)
        assert path.exists()
        assert not mox.interceptor.enabled

        monkeypatch.setenv(RECORDING_MODE_ENV, "mock")
        fetch_user()
        assert responses == [b"alice"]
        assert fetch_user.__name__ == "fetch_user"

    def test_failing_test_writes_nothing(
        self, mox: HttpMox, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """A test that raises leaves no fixture behind."""

        @mox.test(dir=tmp_path)
        def broken() -> None:
            _spy_call(mox, f"{API}/users/1")
            raise RuntimeError("test failed")

        monkeypatch.setenv(RECORDING_MODE_ENV, "spy")
        with pytest.raises(RuntimeError):
            broken()

        assert not fixture_filename("broken", tmp_path).exists()
