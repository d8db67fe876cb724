"""Common data types shared by the pipelines, the cookie jar and connections."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, MutableMapping, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, Field

HeaderName = str
HeaderValue = str
HeaderTuple = tuple[HeaderName, HeaderValue]


class HeaderMap(MutableMapping[HeaderName, HeaderValue]):
    """Case-insensitive header mapping that keeps every value of repeated headers.

    Item assignment replaces all values for a name (last write wins) while
    :meth:`add` appends another occurrence, which is how ``Set-Cookie`` and
    ``Cookie`` arrive from servers.
    """

    def __init__(
        self,
        headers: Mapping[str, str] | Iterable[HeaderTuple] | None = None,
    ) -> None:
        self._items: dict[str, list[HeaderTuple]] = {}
        if headers is None:
            return
        if isinstance(headers, HeaderMap):
            for name, value in headers.multi_items():
                self.add(name, value)
        elif isinstance(headers, Mapping):
            for name, value in headers.items():
                self[name] = value
        else:
            for name, value in headers:
                self.add(name, value)

    def __getitem__(self, name: str) -> str:
        return self._items[name.lower()][-1][1]

    def __setitem__(self, name: str, value: str) -> None:
        self._items[name.lower()] = [(name, str(value))]

    def __delitem__(self, name: str) -> None:
        del self._items[name.lower()]

    def __iter__(self) -> Iterator[str]:
        for values in self._items.values():
            yield values[0][0]

    def __len__(self) -> int:
        return len(self._items)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.lower() in self._items

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.multi_items()!r})"

    def add(self, name: str, value: str) -> None:
        """Append a value without discarding earlier ones."""

        self._items.setdefault(name.lower(), []).append((name, str(value)))

    def get_list(self, name: str) -> list[str]:
        return [value for _, value in self._items.get(name.lower(), [])]

    def multi_items(self) -> list[HeaderTuple]:
        return [item for values in self._items.values() for item in values]

    def copy(self) -> "HeaderMap":
        return type(self)(self.multi_items())


class ResponseHeader(HeaderMap):
    """Response headers plus the status line data handed over by the transport."""

    def __init__(
        self,
        headers: Mapping[str, str] | Iterable[HeaderTuple] | None = None,
        *,
        status: int = 0,
        reason: Optional[str] = None,
    ) -> None:
        super().__init__(headers)
        self.status = status
        self.reason = reason

    @property
    def cookie(self) -> Optional[str]:
        """First cookie header seen on the response (``Cookie`` or ``Set-Cookie``)."""

        for name in ("cookie", "set-cookie"):
            values = self.get_list(name)
            if values:
                return values[0]
        return None

    @property
    def set_cookie(self) -> list[str]:
        return self.get_list("set-cookie")

    def copy(self) -> "ResponseHeader":
        return type(self)(self.multi_items(), status=self.status, reason=self.reason)


@dataclass
class OutgoingRequest:
    """A request as it travels through the request pipeline."""

    method: str
    url: str
    head: HeaderMap = field(default_factory=HeaderMap)
    body: Any = None


@dataclass
class IncomingResponse:
    """A fully parsed response handed to the response pipeline and callbacks."""

    status: int
    response_header: ResponseHeader
    response: Any = None
    url: str = ""
    request: Optional[OutgoingRequest] = None

    @classmethod
    def from_httpx(cls, response, request: Optional[OutgoingRequest] = None) -> "IncomingResponse":
        header = ResponseHeader(
            response.headers.multi_items(),
            status=response.status_code,
            reason=response.reason_phrase,
        )
        return cls(
            status=response.status_code,
            response_header=header,
            response=response.text,
            url=str(response.request.url) if request is None else request.url,
            request=request,
        )

    @classmethod
    def from_requests(cls, response, request: Optional[OutgoingRequest] = None) -> "IncomingResponse":
        raw_headers = getattr(getattr(response, "raw", None), "headers", None)
        iteritems = getattr(raw_headers, "iteritems", None)
        if callable(iteritems):
            # urllib3 keeps repeated headers apart; requests folds them with ", "
            items = list(iteritems())
        else:
            items = list(response.headers.items())
        header = ResponseHeader(items, status=response.status_code, reason=response.reason)
        return cls(
            status=response.status_code,
            response_header=header,
            response=response.text,
            url=response.url if request is None else request.url,
            request=request,
        )


@runtime_checkable
class SupportsRequestTransform(Protocol):
    """Middleware that rewrites the outgoing head and body."""

    def request(self, client: Any, head: HeaderMap, body: Any) -> tuple[HeaderMap, Any]:  # pragma: no cover - protocol
        ...


@runtime_checkable
class SupportsResponseTransform(Protocol):
    """Middleware that mutates the incoming response before callbacks run."""

    def response(self, resp: IncomingResponse) -> Optional[IncomingResponse]:  # pragma: no cover - protocol
        ...


class TelemetryEvent(BaseModel):
    """One step of a request through the middleware pipelines.

    ``middleware`` names the middleware that ran in ``phase``, or the one that
    failed for ``middleware.error`` events. ``elapsed_ms`` counts from the
    moment the request was built.
    """

    event: str
    method: str
    url: str
    phase: Optional[str] = None
    middleware: list[str] = Field(default_factory=list)
    status_code: Optional[int] = None
    elapsed_ms: Optional[int] = None
    payload: dict[str, object] = Field(default_factory=dict)


__all__ = [
    "HeaderMap",
    "HeaderName",
    "HeaderTuple",
    "HeaderValue",
    "IncomingResponse",
    "OutgoingRequest",
    "ResponseHeader",
    "SupportsRequestTransform",
    "SupportsResponseTransform",
    "TelemetryEvent",
]
