"""httpx interception facilities.

:class:`InterceptingTransport` wraps an inner httpx transport and is passed
to a client explicitly.  :class:`HttpxPatcher` replaces the request handlers
of :class:`httpx.HTTPTransport` and :class:`httpx.AsyncHTTPTransport` while
interception is enabled, so every httpx client in the process is routed
through the :class:`~http_mox.interceptor.Interceptor`.
"""

from __future__ import annotations

import logging
import typing as t

import httpx

from .errors import HttpMoxError
from .interceptor import InterceptedCall, Interceptor
from .serializer import DEFAULT_PORTS, normalize_headers, serialize_response

logger = logging.getLogger(__name__)

# Synthetic bodies are stored decoded, so framing headers from a fixture no
# longer describe them.
_FRAMING_HEADERS: t.Final[frozenset[str]] = frozenset(
    {"content-encoding", "content-length", "transfer-encoding"}
)

# Set on requests already routed through an interceptor so a patched inner
# transport does not number them again.
_ROUTED_EXTENSION: t.Final[str] = "http_mox.routed"

_SyncSend: t.TypeAlias = t.Callable[[httpx.Request], httpx.Response]
_AsyncSend: t.TypeAlias = t.Callable[[httpx.Request], t.Awaitable[httpx.Response]]


def call_from_request(request: httpx.Request) -> InterceptedCall:
    """Describe an already-read httpx *request* as an intercepted call."""
    url = request.url
    scheme = url.scheme
    raw_path, sep, raw_query = url.raw_path.decode("ascii").partition("?")
    return InterceptedCall(
        method=request.method,
        scheme=scheme,
        host=url.host,
        port=url.port or DEFAULT_PORTS.get(scheme, 80),
        path=raw_path or "/",
        query=f"?{raw_query}" if sep else "",
        headers=normalize_headers(request.headers.multi_items()),
        stream=(request.content,),
    )


def _synthetic_response(
    call: InterceptedCall, request: httpx.Request
) -> httpx.Response:
    if call.error is not None:
        raise call.error
    if call.response is None:
        msg = f"Request #{call.identity} was intercepted but never answered"
        raise HttpMoxError(msg)
    headers = {
        key: value
        for key, value in call.response.headers.items()
        if key.lower() not in _FRAMING_HEADERS
    }
    return httpx.Response(
        call.response.status_code,
        headers=headers,
        content=call.response.content,
        request=request,
    )


def _replayable_response(
    interceptor: Interceptor,
    call: InterceptedCall,
    request: httpx.Request,
    response: httpx.Response,
    raw: bytes,
) -> httpx.Response:
    """Rebuild a fully read network response and report its completion."""
    rebuilt = httpx.Response(
        response.status_code,
        headers=response.headers,
        content=raw,
        extensions=response.extensions,
        request=request,
    )
    rebuilt.read()
    interceptor.complete(
        call,
        serialize_response(
            rebuilt.status_code, rebuilt.headers.multi_items(), rebuilt.content
        ),
    )
    return rebuilt


def dispatch(
    interceptor: Interceptor, request: httpx.Request, send: _SyncSend
) -> httpx.Response:
    """Route a synchronous *request* through *interceptor*."""
    request.read()
    call = call_from_request(request)
    if request.extensions.get(_ROUTED_EXTENSION) or interceptor.submit(call) is None:
        return send(request)
    request.extensions[_ROUTED_EXTENSION] = True
    if not call.proxied:
        return _synthetic_response(call, request)
    response = send(request)
    try:
        raw = b"".join(t.cast("t.Iterable[bytes]", response.stream))
    finally:
        response.close()
    return _replayable_response(interceptor, call, request, response, raw)


async def adispatch(
    interceptor: Interceptor, request: httpx.Request, send: _AsyncSend
) -> httpx.Response:
    """Route an asynchronous *request* through *interceptor*."""
    await request.aread()
    call = call_from_request(request)
    if request.extensions.get(_ROUTED_EXTENSION) or interceptor.submit(call) is None:
        return await send(request)
    request.extensions[_ROUTED_EXTENSION] = True
    if not call.proxied:
        return _synthetic_response(call, request)
    response = await send(request)
    try:
        stream = t.cast("t.AsyncIterable[bytes]", response.stream)
        raw = b"".join([chunk async for chunk in stream])
    finally:
        await response.aclose()
    return _replayable_response(interceptor, call, request, response, raw)


class InterceptingTransport(httpx.BaseTransport, httpx.AsyncBaseTransport):
    """httpx transport routing requests through an :class:`Interceptor`.

    Requests that are not intercepted, or that are allowed through, are sent
    with *inner*.  Without an explicit *inner* transport the regular httpx
    network transports are used.
    """

    def __init__(
        self,
        interceptor: Interceptor,
        inner: httpx.BaseTransport | httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._interceptor = interceptor
        self._inner = inner
        self._sync_inner: httpx.BaseTransport | None = None
        self._async_inner: httpx.AsyncBaseTransport | None = None

    def _sync_transport(self) -> httpx.BaseTransport:
        if isinstance(self._inner, httpx.BaseTransport):
            return self._inner
        if self._sync_inner is None:
            self._sync_inner = httpx.HTTPTransport()
        return self._sync_inner

    def _async_transport(self) -> httpx.AsyncBaseTransport:
        if isinstance(self._inner, httpx.AsyncBaseTransport):
            return self._inner
        if self._async_inner is None:
            self._async_inner = httpx.AsyncHTTPTransport()
        return self._async_inner

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        """Handle a request from a synchronous client."""
        return dispatch(
            self._interceptor, request, self._sync_transport().handle_request
        )

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        """Handle a request from an asynchronous client."""
        return await adispatch(
            self._interceptor,
            request,
            self._async_transport().handle_async_request,
        )

    def close(self) -> None:
        """Close the synchronous inner transport."""
        if isinstance(self._inner, httpx.BaseTransport):
            self._inner.close()
        if self._sync_inner is not None:
            self._sync_inner.close()

    async def aclose(self) -> None:
        """Close the asynchronous inner transport."""
        if isinstance(self._inner, httpx.AsyncBaseTransport):
            await self._inner.aclose()
        if self._async_inner is not None:
            await self._async_inner.aclose()


class HttpxPatcher:
    """Route every httpx network transport through an interceptor.

    Installing replaces ``httpx.HTTPTransport.handle_request`` and
    ``httpx.AsyncHTTPTransport.handle_async_request``; the replaced methods
    act as the real network.  Uninstalling restores exactly what was
    replaced.
    """

    def __init__(self) -> None:
        self._saved: tuple[t.Any, t.Any] | None = None
        self._patched: tuple[t.Any, t.Any] | None = None

    @property
    def installed(self) -> bool:
        """Return ``True`` while the httpx transports are patched."""
        return self._saved is not None

    def install(self, interceptor: Interceptor) -> None:
        """Patch the httpx transports to use *interceptor*."""
        if self._saved is not None:
            msg = "HttpxPatcher is already installed"
            raise HttpMoxError(msg)
        sync_original = httpx.HTTPTransport.handle_request
        async_original = httpx.AsyncHTTPTransport.handle_async_request

        def handle_request(
            transport: httpx.HTTPTransport, request: httpx.Request
        ) -> httpx.Response:
            return dispatch(
                interceptor, request, lambda req: sync_original(transport, req)
            )

        async def handle_async_request(
            transport: httpx.AsyncHTTPTransport, request: httpx.Request
        ) -> httpx.Response:
            return await adispatch(
                interceptor, request, lambda req: async_original(transport, req)
            )

        httpx.HTTPTransport.handle_request = handle_request  # type: ignore[method-assign]
        httpx.AsyncHTTPTransport.handle_async_request = handle_async_request  # type: ignore[method-assign]
        self._saved = (sync_original, async_original)
        self._patched = (handle_request, handle_async_request)
        logger.debug("Patched httpx transports")

    def uninstall(self) -> None:
        """Restore the httpx transports."""
        if self._saved is None or self._patched is None:
            return
        if (
            httpx.HTTPTransport.handle_request is not self._patched[0]
            or httpx.AsyncHTTPTransport.handle_async_request is not self._patched[1]
        ):
            logger.warning("httpx transports were re-patched after http-mox")
        sync_original, async_original = self._saved
        httpx.HTTPTransport.handle_request = sync_original  # type: ignore[method-assign]
        httpx.AsyncHTTPTransport.handle_async_request = async_original  # type: ignore[method-assign]
        self._saved = None
        self._patched = None
        logger.debug("Restored httpx transports")


__all__ = [
    "HttpxPatcher",
    "InterceptingTransport",
    "adispatch",
    "call_from_request",
    "dispatch",
]
