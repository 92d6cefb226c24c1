"""Exception hierarchy for http-mox."""

from __future__ import annotations


class HttpMoxError(Exception):
    """Base class for all http-mox errors."""


class ConfigurationError(HttpMoxError):
    """Raised for invalid settings detected before interception begins."""


class LifecycleError(HttpMoxError):
    """Raised when an operation is attempted in the wrong lifecycle state."""


class FixtureLoadError(HttpMoxError):
    """Raised when a fixture file is missing or does not match the schema."""


class NoMockForIdentityError(HttpMoxError):
    """Raised for a replayed request that has no fixture entry at its position."""

    def __init__(self, identity: int) -> None:
        self.identity = identity
        super().__init__(f"No mock found for request #{identity}")


class ComparatorMismatchError(HttpMoxError):
    """Raised when a replayed request does not match its fixture entry."""

    def __init__(self, identity: int, message: str) -> None:
        self.identity = identity
        super().__init__(message)


class IncompleteCaptureError(HttpMoxError):
    """Raised when saving while requests are still in flight."""

    def __init__(self, pending: list[str]) -> None:
        self.pending = list(pending)
        lines = "\n".join(self.pending)
        super().__init__(
            f"Cannot save. Still have {len(self.pending)} in flight "
            f"request(s):\n{lines}"
        )


__all__ = [
    "ComparatorMismatchError",
    "ConfigurationError",
    "FixtureLoadError",
    "HttpMoxError",
    "IncompleteCaptureError",
    "LifecycleError",
    "NoMockForIdentityError",
]
