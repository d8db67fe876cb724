"""Middleware that JSON-encodes request bodies and decodes JSON responses."""

from __future__ import annotations

import json
from typing import Any

from .types import HeaderMap, IncomingResponse


class JSONMiddleware:
    """Serialize structured request bodies and parse JSON response bodies."""

    def __init__(self, content_type: str = "application/json") -> None:
        self.content_type = content_type

    def request(self, client: Any, head: HeaderMap, body: Any) -> tuple[HeaderMap, Any]:
        if body is None or isinstance(body, (bytes, bytearray, str)):
            return head, body
        head["content-type"] = self.content_type
        return head, json.dumps(body)

    def response(self, resp: IncomingResponse) -> None:
        body = resp.response
        if not isinstance(body, (str, bytes, bytearray)) or not body:
            return
        try:
            resp.response = json.loads(body)
        except ValueError:
            # not JSON; leave the body for the caller
            return


__all__ = ["JSONMiddleware"]
