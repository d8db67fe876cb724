"""Public package interface for hookhttp."""

from .config import ConnectionConfig, MiddlewareConfig, TelemetryConfig
from .connection import HttpConnection, HttpRequest
from .cookies import CookieJar, CookieJarMiddleware, CookieRecord, default_cookie_jar, parse_set_cookie
from .errors import ConfigurationError, HookHTTPError, MiddlewareExecutionError, TransportError
from .jsonify import JSONMiddleware
from .middleware import (
    MiddlewareEntry,
    MiddlewarePipeline,
    MiddlewareRegistry,
    global_registry,
    register_connection,
    register_global,
    reset_global_registry,
    use,
)
from .requests_support import requests_request
from .telemetry import InMemoryTelemetrySink, LoggingTelemetrySink, PipelineTelemetry
from .types import (
    HeaderMap,
    IncomingResponse,
    OutgoingRequest,
    ResponseHeader,
    SupportsRequestTransform,
    SupportsResponseTransform,
)

__all__ = [
    "ConfigurationError",
    "ConnectionConfig",
    "CookieJar",
    "CookieJarMiddleware",
    "CookieRecord",
    "HeaderMap",
    "HookHTTPError",
    "HttpConnection",
    "HttpRequest",
    "IncomingResponse",
    "InMemoryTelemetrySink",
    "JSONMiddleware",
    "LoggingTelemetrySink",
    "MiddlewareConfig",
    "MiddlewareEntry",
    "MiddlewareExecutionError",
    "MiddlewarePipeline",
    "MiddlewareRegistry",
    "OutgoingRequest",
    "PipelineTelemetry",
    "ResponseHeader",
    "SupportsRequestTransform",
    "SupportsResponseTransform",
    "TelemetryConfig",
    "TransportError",
    "default_cookie_jar",
    "global_registry",
    "parse_set_cookie",
    "requests_request",
    "register_connection",
    "register_global",
    "reset_global_registry",
    "use",
]
