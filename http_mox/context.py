"""Per-engine bookkeeping for in-flight, completed and loaded records."""

from __future__ import annotations

import dataclasses as dc
import threading
import typing as t

from .errors import LifecycleError

if t.TYPE_CHECKING:
    from .serializer import RequestSerializer, SerializedHttp


@dc.dataclass(slots=True)
class InFlightRequest:
    """A submitted request whose completion has not been recorded yet."""

    identity: int
    request_serializer: RequestSerializer
    start_time: float

    def describe(self) -> str:
        """Return ``METHOD url`` for error messages."""
        serializer = self.request_serializer
        return f"{serializer.method} {serializer.url}"


class Context:
    """State shared by an engine's event handlers, views and sessions.

    ``in_flight`` and ``completed`` are keyed by request identity so that
    completions may arrive in any order.  ``loaded_mocks`` is positional:
    entry *i* answers the *i*-th submitted request.
    """

    def __init__(self) -> None:
        self.in_flight: dict[int, InFlightRequest] = {}
        self.completed: dict[int, SerializedHttp] = {}
        self.loaded_mocks: list[SerializedHttp] = []
        self._lock = threading.RLock()

    def clear(self) -> None:
        """Forget every in-flight, completed and loaded record."""
        with self._lock:
            self.in_flight.clear()
            self.completed.clear()
            self.loaded_mocks = []

    def start(
        self,
        identity: int,
        request_serializer: RequestSerializer,
        start_time: float,
    ) -> InFlightRequest:
        """Register *identity* as in flight."""
        entry = InFlightRequest(identity, request_serializer, start_time)
        with self._lock:
            if identity in self.in_flight or identity in self.completed:
                msg = f"Request #{identity} was already submitted"
                raise LifecycleError(msg)
            self.in_flight[identity] = entry
        return entry

    def finish(self, identity: int, record: SerializedHttp) -> None:
        """Move *identity* from in flight to completed."""
        with self._lock:
            if identity not in self.in_flight:
                msg = f"Request #{identity} is not in flight"
                raise LifecycleError(msg)
            self.completed[identity] = record
            del self.in_flight[identity]

    def in_flight_entry(self, identity: int) -> InFlightRequest:
        """Return the in-flight entry for *identity*."""
        with self._lock:
            entry = self.in_flight.get(identity)
        if entry is None:
            msg = f"Request #{identity} is not in flight"
            raise LifecycleError(msg)
        return entry

    def pending(self) -> list[InFlightRequest]:
        """Return in-flight entries in identity order."""
        with self._lock:
            return [self.in_flight[key] for key in sorted(self.in_flight)]

    def completed_records(self) -> list[SerializedHttp]:
        """Return completed records in identity order."""
        with self._lock:
            return [self.completed[key] for key in sorted(self.completed)]

    def load_mocks(self, records: t.Iterable[SerializedHttp]) -> None:
        """Replace the loaded mocks with *records*."""
        mocks = list(records)
        with self._lock:
            self.loaded_mocks = mocks

    def loaded_records(self) -> list[SerializedHttp]:
        """Return a copy of the loaded mocks in position order."""
        with self._lock:
            return list(self.loaded_mocks)

    def mock_at(self, identity: int) -> SerializedHttp | None:
        """Return the loaded mock answering *identity*, if any."""
        with self._lock:
            if 0 <= identity < len(self.loaded_mocks):
                return self.loaded_mocks[identity]
        return None

    def replace_records(
        self,
        replace: t.Callable[[SerializedHttp], SerializedHttp | None],
    ) -> None:
        """Swap completed and loaded records for *replace*'s result.

        ``replace`` returns ``None`` to keep a record unchanged.
        """
        with self._lock:
            for key, record in list(self.completed.items()):
                updated = replace(record)
                if updated is not None:
                    self.completed[key] = updated
            self.loaded_mocks = [
                replace(record) or record for record in self.loaded_mocks
            ]
