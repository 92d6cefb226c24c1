"""Record outbound HTTP traffic once and replay it deterministically in tests.

:class:`HttpMox` intercepts httpx requests.  In spy mode they reach the
network and are recorded; in mock mode each request is answered from a
fixture record chosen by the order in which requests were made.
"""

from __future__ import annotations

from .comparators import AllOf, ByBody, ByFields, ByHeaders, ByUrl, Comparator, by_url
from .context import Context, InFlightRequest
from .controller import HttpMox
from .errors import (
    ComparatorMismatchError,
    ConfigurationError,
    FixtureLoadError,
    HttpMoxError,
    IncompleteCaptureError,
    LifecycleError,
    NoMockForIdentityError,
)
from .filtering import (
    DEFAULT_REDACT_SYMBOL,
    FilteredHttpCollection,
    PartialMatchFilter,
    PredicateFilter,
    UrlFilter,
    UrlPatternFilter,
)
from .fixture import FixtureOptions, fixture_filename, load_fixture, save_fixture
from .interceptor import InterceptedCall, InterceptOptions, Interceptor
from .recording import RECORDING_MODE_ENV, Mode, RecordingSession
from .serializer import (
    Body,
    BodyKind,
    SerializedHttp,
    SerializedRequest,
    SerializedResponse,
)
from .transport import HttpxPatcher, InterceptingTransport

__all__ = [
    "DEFAULT_REDACT_SYMBOL",
    "RECORDING_MODE_ENV",
    "AllOf",
    "Body",
    "BodyKind",
    "ByBody",
    "ByFields",
    "ByHeaders",
    "ByUrl",
    "Comparator",
    "ComparatorMismatchError",
    "ConfigurationError",
    "Context",
    "FilteredHttpCollection",
    "FixtureLoadError",
    "FixtureOptions",
    "HttpMox",
    "HttpMoxError",
    "HttpxPatcher",
    "InFlightRequest",
    "IncompleteCaptureError",
    "InterceptOptions",
    "InterceptedCall",
    "InterceptingTransport",
    "Interceptor",
    "LifecycleError",
    "Mode",
    "NoMockForIdentityError",
    "PartialMatchFilter",
    "PredicateFilter",
    "RecordingSession",
    "SerializedHttp",
    "SerializedRequest",
    "SerializedResponse",
    "UrlFilter",
    "UrlPatternFilter",
    "by_url",
    "fixture_filename",
    "load_fixture",
    "save_fixture",
]
