"""Interceptor adapter between an interception facility and the engine.

The facility (see :mod:`http_mox.transport`) turns each outbound request into
an :class:`InterceptedCall` and hands it to :meth:`Interceptor.submit`.  The
interceptor assigns the request its identity and notifies ``intercept``
listeners.  When the request is allowed through to the network, the facility
reports the real response with :meth:`Interceptor.complete`, which notifies
``proxied`` listeners.
"""

from __future__ import annotations

import dataclasses as dc
import logging
import threading
import typing as t

from .errors import HttpMoxError
from .serializer import (
    RequestSerializer,
    SerializedRequest,
    SerializedResponse,
    normalize_headers,
)

if t.TYPE_CHECKING:
    from .comparators import Comparator

logger = logging.getLogger(__name__)

INTERCEPT_EVENT: t.Final[str] = "intercept"
PROXIED_EVENT: t.Final[str] = "proxied"
_EVENTS: t.Final[tuple[str, ...]] = (INTERCEPT_EVENT, PROXIED_EVENT)


@dc.dataclass(slots=True)
class InterceptOptions:
    """Options accepted by :meth:`Interceptor.enable`."""

    comparator: Comparator | None = None
    ignore_ports: frozenset[int] = frozenset()

    def __post_init__(self) -> None:
        """Normalise ``ignore_ports`` to a frozenset of ints."""
        self.ignore_ports = frozenset(int(port) for port in self.ignore_ports)


@dc.dataclass(slots=True)
class SyntheticResponse:
    """A response written onto an intercepted call."""

    status_code: int
    headers: dict[str, str]
    content: bytes


@dc.dataclass(slots=True)
class InterceptedCall:
    """One outbound request as seen by the interception facility.

    ``stream`` yields the raw request body.  The engine answers the caller
    through :meth:`respond` or :meth:`fail`; the facility reads the outcome
    back from :attr:`response` or :attr:`error`.
    """

    method: str
    scheme: str
    host: str
    port: int
    path: str
    query: str = ""
    headers: dict[str, str] = dc.field(default_factory=dict)
    stream: t.Iterable[bytes] = ()
    identity: int | None = None
    proxied: bool = False
    serializer: RequestSerializer | None = None
    response: SyntheticResponse | None = None
    error: BaseException | None = None

    def __post_init__(self) -> None:
        """Normalise the request line and headers."""
        self.method = self.method.upper()
        self.scheme = self.scheme.lower()
        self.headers = normalize_headers(self.headers)

    @property
    def settled(self) -> bool:
        """Return ``True`` once a response or an error was delivered."""
        return self.response is not None or self.error is not None

    def respond(
        self,
        status_code: int,
        headers: t.Mapping[str, str],
        content: bytes,
    ) -> None:
        """Deliver a synthetic response to the caller."""
        self._ensure_unsettled()
        self.response = SyntheticResponse(status_code, dict(headers), content)

    def fail(self, error: BaseException) -> None:
        """Deliver *error* to the caller instead of a response."""
        self._ensure_unsettled()
        self.error = error

    def _ensure_unsettled(self) -> None:
        if self.settled:
            msg = f"Request #{self.identity} has already been answered"
            raise HttpMoxError(msg)

    def make_serializer(self) -> RequestSerializer:
        """Return a serializer for this call's request line and headers."""
        return RequestSerializer(
            method=self.method,
            scheme=self.scheme,
            host=self.host,
            port=self.port,
            path=self.path,
            query=self.query,
            headers=self.headers,
        )


@dc.dataclass(slots=True)
class InterceptEvent:
    """Emitted for every submitted request."""

    identity: int
    call: InterceptedCall
    request_serializer: RequestSerializer
    comparator: Comparator | None = None

    def drain(self) -> SerializedRequest:
        """Consume the request body and return the serialized request."""
        return self.request_serializer.consume(self.call.stream)


@dc.dataclass(slots=True)
class ProxiedEvent:
    """Emitted when a request that reached the network has completed."""

    identity: int
    request: SerializedRequest
    response: SerializedResponse


class InterceptionFacility(t.Protocol):
    """Something that routes outbound requests into an :class:`Interceptor`."""

    def install(self, interceptor: Interceptor) -> None:
        """Start routing requests to *interceptor*."""
        ...

    def uninstall(self) -> None:
        """Stop routing requests."""
        ...


class Interceptor:
    """Assign identities to intercepted requests and publish their events."""

    def __init__(
        self,
        facility: InterceptionFacility | None = None,
        *,
        should_proxy: bool = True,
    ) -> None:
        self.facility = facility
        self.request_number = 0
        self._should_proxy = should_proxy
        self._enabled = False
        self._comparator: Comparator | None = None
        self._ignore_ports: frozenset[int] = frozenset()
        self._listeners: dict[str, list[t.Callable[[t.Any], None]]] = {
            name: [] for name in _EVENTS
        }
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        """Return ``True`` while requests are being intercepted."""
        return self._enabled

    @property
    def proxying(self) -> bool:
        """Return ``True`` when intercepted requests may reach the network."""
        return self._should_proxy

    @property
    def ignore_ports(self) -> frozenset[int]:
        """Ports whose requests bypass interception."""
        return self._ignore_ports

    def on(self, event: str, listener: t.Callable[[t.Any], None]) -> None:
        """Subscribe *listener* to ``"intercept"`` or ``"proxied"``."""
        if event not in self._listeners:
            msg = f"Unknown event {event!r}; expected one of {', '.join(_EVENTS)}"
            raise ValueError(msg)
        self._listeners[event].append(listener)

    def _emit(self, event: str, payload: InterceptEvent | ProxiedEvent) -> None:
        for listener in list(self._listeners[event]):
            listener(payload)

    def enable(self, options: InterceptOptions | None = None) -> None:
        """Begin intercepting requests."""
        options = options or InterceptOptions()
        self._comparator = options.comparator
        self._ignore_ports = options.ignore_ports
        if not self._enabled and self.facility is not None:
            self.facility.install(self)
        self._enabled = True
        logger.debug(
            "Interception enabled (ignoring ports %s)", sorted(self._ignore_ports)
        )

    def disable(self) -> None:
        """Stop intercepting requests."""
        if self._enabled and self.facility is not None:
            self.facility.uninstall()
        self._enabled = False
        logger.debug("Interception disabled")

    def proxy(self, should_proxy: bool) -> None:  # noqa: FBT001
        """Allow or forbid intercepted requests from reaching the network."""
        self._should_proxy = should_proxy

    def reset(self) -> None:
        """Restart identity numbering at zero."""
        with self._lock:
            self.request_number = 0

    def intercepts(self, port: int) -> bool:
        """Return ``True`` when a request to *port* would be intercepted."""
        return self._enabled and port not in self._ignore_ports

    def submit(self, call: InterceptedCall) -> int | None:
        """Assign *call* an identity and emit ``intercept``.

        Returns ``None`` without side effects when interception is disabled
        or the call targets an ignored port.
        """
        if not self.intercepts(call.port):
            return None
        with self._lock:
            identity = self.request_number
            self.request_number += 1
        call.identity = identity
        call.proxied = self._should_proxy
        call.serializer = call.make_serializer()
        logger.debug(
            "Intercepted request #%d %s %s", identity, call.method, call.serializer.url
        )
        self._emit(
            INTERCEPT_EVENT,
            InterceptEvent(identity, call, call.serializer, self._comparator),
        )
        return identity

    def complete(self, call: InterceptedCall, response: SerializedResponse) -> None:
        """Report the network *response* for a submitted *call*."""
        if call.identity is None or call.serializer is None:
            msg = "Cannot complete a request that was never submitted"
            raise HttpMoxError(msg)
        request = call.serializer.consume(call.stream)
        self._emit(PROXIED_EVENT, ProxiedEvent(call.identity, request, response))


__all__ = [
    "INTERCEPT_EVENT",
    "PROXIED_EVENT",
    "InterceptEvent",
    "InterceptOptions",
    "InterceptedCall",
    "InterceptionFacility",
    "Interceptor",
    "ProxiedEvent",
    "SyntheticResponse",
]
