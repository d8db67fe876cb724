"""Pipeline telemetry: what each middleware phase did to a request."""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Iterable, Mapping, Optional, Protocol, Sequence

from .config import TelemetryConfig
from .errors import MiddlewareExecutionError
from .types import TelemetryEvent

LOGGER = logging.getLogger(__name__)


class TelemetrySink(Protocol):
    """Receives pipeline events."""

    def handle(self, event: TelemetryEvent) -> None:  # pragma: no cover - protocol
        ...


class PipelineTelemetry:
    """Hands out one :class:`RequestTrace` per request built on a connection.

    Sampling is decided once per request, so a traced request reports every
    phase it went through and an untraced one reports none.
    """

    def __init__(
        self,
        config: TelemetryConfig,
        sinks: Iterable[TelemetrySink] = (),
        *,
        random_fn: Callable[[], float] = random.random,
    ) -> None:
        self.config = config
        self.sinks: tuple[TelemetrySink, ...] = tuple(sinks)
        self._random = random_fn

    def trace(self, method: str, url: str) -> "RequestTrace":
        sampled = (
            self.config.enabled
            and bool(self.sinks)
            and self._random() <= self.config.sample_rate
        )
        return RequestTrace(self, method, url, sampled=sampled)

    def publish(self, event: TelemetryEvent) -> None:
        for sink in self.sinks:
            try:
                sink.handle(event)
            except Exception:
                LOGGER.exception("Telemetry sink %s failed on %s", sink, event.event)


class RequestTrace:
    """Events for a single request.

    ``middleware.request``  request pipeline folded
    ``middleware.response`` response pipeline folded, before user callbacks
    ``middleware.error``    a middleware raised; names it and its phase
    ``transport.error``     no response arrived, so no response phase ran
    """

    def __init__(self, telemetry: PipelineTelemetry, method: str, url: str, *, sampled: bool) -> None:
        self.telemetry = telemetry
        self.method = method
        self.url = url
        self.sampled = sampled
        self._started = time.perf_counter()

    def request_folded(self, middleware: Sequence[str], head: Mapping[str, str]) -> None:
        self._emit("middleware.request", phase="request", middleware=middleware, headers=head)

    def response_folded(
        self,
        middleware: Sequence[str],
        status_code: int,
        headers: Mapping[str, str],
    ) -> None:
        self._emit(
            "middleware.response",
            phase="response",
            middleware=middleware,
            status_code=status_code,
            headers=headers,
        )

    def middleware_failed(self, error: MiddlewareExecutionError, status_code: Optional[int] = None) -> None:
        name = error.middleware_name
        self._emit(
            "middleware.error",
            phase=error.phase,
            middleware=[name] if name else [],
            status_code=status_code,
            error=error,
        )

    def transport_failed(self, error: BaseException) -> None:
        self._emit("transport.error", phase="transport", error=error)

    def _emit(
        self,
        event_name: str,
        *,
        phase: Optional[str],
        middleware: Sequence[str] = (),
        status_code: Optional[int] = None,
        headers: Optional[Mapping[str, str]] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        if not self.sampled:
            return
        payload: dict[str, object] = {}
        if error is not None:
            payload["error"] = repr(error)
        if headers is not None and self.telemetry.config.include_headers:
            payload["headers"] = dict(headers)
        self.telemetry.publish(
            TelemetryEvent(
                event=event_name,
                method=self.method,
                url=self.url,
                phase=phase,
                middleware=list(middleware),
                status_code=status_code,
                elapsed_ms=int((time.perf_counter() - self._started) * 1000),
                payload=payload,
            )
        )


class LoggingTelemetrySink:
    """Writes one log line per pipeline event."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def handle(self, event: TelemetryEvent) -> None:
        LOGGER.log(
            self.level,
            "%s %s %s [%s] %s",
            event.event,
            event.method,
            event.url,
            ", ".join(event.middleware) or "-",
            event.payload.get("error", ""),
        )


class InMemoryTelemetrySink:
    """Keeps every event; useful in tests."""

    def __init__(self) -> None:
        self.events: list[TelemetryEvent] = []

    def handle(self, event: TelemetryEvent) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [event.event for event in self.events]


__all__ = [
    "InMemoryTelemetrySink",
    "LoggingTelemetrySink",
    "PipelineTelemetry",
    "RequestTrace",
    "TelemetrySink",
]
