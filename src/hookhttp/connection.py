"""Asynchronous connection that runs the middleware pipelines around httpx."""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Iterable, Mapping, Optional

import anyio
import httpx

from .config import ConnectionConfig, MiddlewareConfig
from .errors import ConfigurationError, HookHTTPError, MiddlewareExecutionError, TransportError
from .middleware import MiddlewareEntry, MiddlewarePipeline, MiddlewareRegistry
from .telemetry import PipelineTelemetry, RequestTrace, TelemetrySink
from .types import HeaderMap, IncomingResponse, OutgoingRequest, ResponseHeader

LOGGER = logging.getLogger(__name__)

Callback = Callable[["HttpRequest"], Any]


def _check_body(body: Any) -> None:
    if body is None or isinstance(body, (bytes, bytearray, str, Mapping)):
        return
    raise ConfigurationError(
        f"cannot send a {type(body).__name__} body; register a middleware that serializes it"
    )


class HttpRequest:
    """Handle for a single request issued on an :class:`HttpConnection`.

    The request pipeline has already run when the handle is returned. Awaiting
    the handle performs the transport I/O, folds the response pipeline and then
    fires the success callbacks (or the errbacks on failure). Middleware
    failures and transport failures travel through the same errback channel.
    Every registered callback runs even if an earlier one raises; the first
    exception raised by a callback then propagates to whoever awaited.
    """

    def __init__(
        self,
        connection: "HttpConnection",
        method: str,
        url: str,
        pipeline: MiddlewarePipeline,
    ) -> None:
        self.connection = connection
        self.method = method
        self.url = url
        self.trace: RequestTrace = connection.telemetry.trace(method, url)
        self.head = HeaderMap()
        self.body: Any = None
        self.result: Optional[IncomingResponse] = None
        self.error: Optional[BaseException] = None
        self._pipeline = pipeline
        self._callbacks: list[Callback] = []
        self._errbacks: list[Callback] = []
        self._done = False
        self._started = False
        self._finished: Optional[anyio.Event] = None

    def __repr__(self) -> str:
        return f"<HttpRequest {self.method} {self.url}>"

    # ------------------------------------------------------------------
    # Result accessors
    # ------------------------------------------------------------------
    @property
    def done(self) -> bool:
        return self._done

    @property
    def outgoing(self) -> OutgoingRequest:
        return OutgoingRequest(method=self.method, url=self.url, head=self.head, body=self.body)

    @property
    def response(self) -> Any:
        return self.result.response if self.result is not None else None

    @property
    def response_header(self) -> Optional[ResponseHeader]:
        return self.result.response_header if self.result is not None else None

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------
    def callback(self, fn: Callback) -> "HttpRequest":
        """Run ``fn(self)`` once the transformed response is available."""

        if self._done:
            if self.error is None:
                fn(self)
        else:
            self._callbacks.append(fn)
        return self

    def errback(self, fn: Callback) -> "HttpRequest":
        """Run ``fn(self)`` if the request fails; ``self.error`` holds the cause."""

        if self._done:
            if self.error is not None:
                fn(self)
        else:
            self._errbacks.append(fn)
        return self

    def succeed(self, resp: IncomingResponse) -> None:
        """Fold ``resp`` through the response pipeline, then fire callbacks."""

        if self._done:
            raise HookHTTPError(f"{self!r} already completed")
        status = resp.status
        try:
            resp = self._pipeline.apply_response(resp)
        except MiddlewareExecutionError as exc:
            self.trace.middleware_failed(exc, status_code=status)
            self.fail(exc)
            return
        self.trace.response_folded(self._pipeline.names("response"), resp.status, resp.response_header)
        self.result = resp
        self._done = True
        self._run(self._callbacks)

    def fail(self, error: BaseException) -> None:
        if self._done:
            raise HookHTTPError(f"{self!r} already completed")
        LOGGER.debug("Request %s %s failed: %r", self.method, self.url, error)
        self.error = error
        self._done = True
        self._run(self._errbacks)

    def _run(self, callbacks: list[Callback]) -> None:
        """Run every callback, then re-raise the first exception any of them raised."""

        pending = list(callbacks)
        self._callbacks.clear()
        self._errbacks.clear()
        first: Optional[Exception] = None
        for fn in pending:
            try:
                fn(self)
            except Exception as exc:
                if first is None:
                    first = exc
                else:
                    LOGGER.exception("Callback %r on %r failed", fn, self)
        if first is not None:
            raise first

    # ------------------------------------------------------------------
    # Awaiting
    # ------------------------------------------------------------------
    def __await__(self):
        return self.wait().__await__()

    async def wait(self) -> IncomingResponse:
        """Send the request (once) and return the transformed response."""

        if not self._done:
            if self._started:
                assert self._finished is not None
                await self._finished.wait()
            else:
                self._started = True
                self._finished = anyio.Event()
                try:
                    await self.connection._perform(self)
                finally:
                    self._finished.set()
        if not self._done:
            # the sending task was cancelled before a response arrived
            raise HookHTTPError(f"{self!r} was abandoned before completing")
        if self.error is not None:
            raise self.error
        return self.result


class HttpConnection:
    """A connection to one origin with its own ordered middleware.

    Global middleware (see :func:`hookhttp.middleware.use`) always runs first,
    followed by middleware registered on this connection. Registration is
    closed once the first request has been dispatched.
    """

    def __init__(
        self,
        url: str,
        *,
        config: Optional[ConnectionConfig] = None,
        client_options: Optional[dict[str, Any]] = None,
        telemetry_sinks: Optional[Iterable[TelemetrySink]] = None,
        telemetry_random: Optional[Callable[[], float]] = None,
    ) -> None:
        self.url = url
        self.config = config or ConnectionConfig()
        self._client_options = dict(client_options or {})
        self._client_options.setdefault("timeout", self.config.timeout_seconds)
        self._client = httpx.AsyncClient(**self._client_options)
        self.middleware = MiddlewareRegistry(name="connection")
        self.telemetry = PipelineTelemetry(
            self.config.telemetry,
            telemetry_sinks or (),
            random_fn=telemetry_random or random.random,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpConnection":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    def use(
        self,
        definition: Any,
        *args: Any,
        block: Optional[Callable[[], Any]] = None,
        config: Optional[MiddlewareConfig] = None,
        **kwargs: Any,
    ) -> MiddlewareEntry:
        """Construct ``definition`` and append it to this connection's middleware."""

        return self.middleware.use(definition, *args, block=block, config=config, **kwargs)

    def pipeline(self) -> MiddlewarePipeline:
        return MiddlewarePipeline.for_registry(self.middleware)

    # ------------------------------------------------------------------
    # Request API
    # ------------------------------------------------------------------
    def build_request(
        self,
        method: str,
        path: str = "",
        *,
        head: Optional[Mapping[str, str]] = None,
        body: Any = None,
        query: Optional[Mapping[str, Any]] = None,
    ) -> HttpRequest:
        """Run the request pipeline and return a handle ready to be sent.

        :class:`ConfigurationError` raised by a middleware propagates to the
        caller; any other middleware failure is recorded on the handle.
        """

        url = self.resolve_url(path, query)
        self.middleware.freeze()
        pipeline = self.pipeline()
        handle = HttpRequest(self, method.upper(), url, pipeline)

        request_head = HeaderMap(self.config.default_headers)
        for name, value in (head or {}).items():
            request_head[name] = value
        try:
            handle.head, handle.body = pipeline.apply_request(handle, request_head, body)
        except MiddlewareExecutionError as exc:
            handle.trace.middleware_failed(exc)
            handle.fail(exc)
        else:
            _check_body(handle.body)
            handle.trace.request_folded(pipeline.names("request"), handle.head)
        return handle

    def request(self, method: str, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.build_request(method, path, **kwargs)

    def get(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("GET", path, **kwargs)

    def head(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("HEAD", path, **kwargs)

    def post(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("POST", path, **kwargs)

    def put(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("PUT", path, **kwargs)

    def patch(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("PATCH", path, **kwargs)

    def delete(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("DELETE", path, **kwargs)

    def options(self, path: str = "", **kwargs: Any) -> HttpRequest:
        return self.request("OPTIONS", path, **kwargs)

    def resolve_url(self, path: str = "", query: Optional[Mapping[str, Any]] = None) -> str:
        url = httpx.URL(self.url)
        if path:
            url = url.join(path)
        if query:
            url = url.copy_merge_params(query)
        return str(url)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    async def _perform(self, handle: HttpRequest) -> None:
        LOGGER.debug("Dispatching %s %s", handle.method, handle.url)
        try:
            response = await self._send(handle)
        except httpx.HTTPError as exc:
            error = TransportError(f"{handle.method} {handle.url} failed: {exc!r}")
            error.__cause__ = exc
            handle.trace.transport_failed(error)
            handle.fail(error)
            return

        handle.succeed(IncomingResponse.from_httpx(response, handle.outgoing))

    async def _send(self, handle: HttpRequest) -> httpx.Response:
        headers = handle.head.multi_items()
        body = handle.body
        if isinstance(body, Mapping):
            return await self._client.request(handle.method, handle.url, headers=headers, data=body)
        if isinstance(body, bytearray):
            body = bytes(body)
        return await self._client.request(handle.method, handle.url, headers=headers, content=body)


__all__ = ["HttpConnection", "HttpRequest"]
