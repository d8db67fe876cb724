"""Exception hierarchy raised by registration, the pipelines and connections."""

from __future__ import annotations

from typing import Any, Optional


class HookHTTPError(Exception):
    """Base class for every error raised by hookhttp."""


class ConfigurationError(HookHTTPError, ValueError):
    """Invalid middleware definition or conflicting per-request configuration.

    Raised synchronously, before any network I/O takes place.
    """


class MiddlewareExecutionError(HookHTTPError):
    """A middleware's ``request`` or ``response`` method failed unexpectedly."""

    def __init__(self, message: str, *, middleware: Any = None, phase: Optional[str] = None) -> None:
        super().__init__(message)
        self.middleware = middleware
        self.phase = phase

    @property
    def middleware_name(self) -> Optional[str]:
        if self.middleware is None:
            return None
        return type(self.middleware).__qualname__


class TransportError(HookHTTPError):
    """The underlying HTTP transport failed to deliver a response."""


__all__ = [
    "ConfigurationError",
    "HookHTTPError",
    "MiddlewareExecutionError",
    "TransportError",
]
