"""Integration helpers for running the middleware pipelines with the `requests` library."""

from __future__ import annotations

from typing import Any, Mapping, Optional

import requests

from .connection import HttpConnection
from .errors import TransportError
from .types import IncomingResponse


def requests_request(
    connection: HttpConnection,
    method: str,
    path: str = "",
    *,
    session: Optional[requests.Session] = None,
    head: Optional[Mapping[str, str]] = None,
    body: Any = None,
    query: Optional[Mapping[str, Any]] = None,
    **kwargs,
) -> IncomingResponse:
    """Send a request through ``connection``'s middleware using a ``requests`` session.

    The request pipeline runs exactly as for :meth:`HttpConnection.request`;
    the response pipeline and the handle's callbacks run before this returns.
    Extra keyword arguments are passed to ``requests.Session.request``.
    """

    handle = connection.build_request(method, path, head=head, body=body, query=query)
    if handle.done:
        raise handle.error

    close_session = False
    if session is None:
        session = requests.Session()
        close_session = True

    try:
        kwargs.setdefault("timeout", connection.config.timeout_seconds)
        payload = handle.body
        if isinstance(payload, Mapping):
            kwargs["data"] = dict(payload)
        elif payload is not None:
            kwargs["data"] = payload
        try:
            response = session.request(
                handle.method,
                handle.url,
                headers=dict(handle.head),
                **kwargs,
            )
        except requests.RequestException as exc:
            error = TransportError(f"{handle.method} {handle.url} failed: {exc!r}")
            handle.trace.transport_failed(error)
            handle.fail(error)
            raise error from exc

        handle.succeed(IncomingResponse.from_requests(response, handle.outgoing))
        if handle.error is not None:
            raise handle.error
        return handle.result
    finally:
        if close_session:
            session.close()


__all__ = ["requests_request"]
