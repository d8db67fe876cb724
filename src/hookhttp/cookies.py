"""Cookie jar store and the middleware that replays it on every request."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterator, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, field_validator

from .errors import ConfigurationError
from .types import HeaderMap, IncomingResponse

LOGGER = logging.getLogger(__name__)


class CookieRecord(BaseModel):
    """One stored cookie, unique per (domain, path, name)."""

    name: str
    value: str = ""
    domain: str
    path: str = "/"
    expires: Optional[datetime] = None
    secure: bool = False
    http_only: bool = False

    @field_validator("expires")
    @classmethod
    def _ensure_aware(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def __str__(self) -> str:
        return f"{self.name}={self.value}"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires is None:
            return False
        return self.expires <= (now or datetime.now(timezone.utc))

    def matches(self, scheme: str, host: str, path: str, now: Optional[datetime] = None) -> bool:
        """Suffix match on domain, prefix match on path, ``secure`` only over https."""

        if not domain_matches(host, self.domain):
            return False
        if not path.startswith(self.path):
            return False
        if self.secure and scheme != "https":
            return False
        return not self.is_expired(now)


def normalize_domain(domain: str) -> str:
    return domain.strip().lstrip(".").lower()


def domain_matches(host: str, domain: str) -> bool:
    host = normalize_domain(host)
    domain = normalize_domain(domain)
    if not domain:
        return False
    return host == domain or host.endswith("." + domain)


def default_path(request_path: str) -> str:
    """Directory of the request path, as used when ``Path`` is absent."""

    if not request_path.startswith("/"):
        return "/"
    directory = request_path.rsplit("/", 1)[0]
    return directory or "/"


def _split_url(url: str) -> tuple[str, str, str]:
    parts = urlsplit(url)
    return (parts.scheme or "http").lower(), (parts.hostname or "").lower(), parts.path or "/"


def _parse_expires(value: str) -> Optional[datetime]:
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_set_cookie(header: str, url: str, *, now: Optional[datetime] = None) -> Optional[CookieRecord]:
    """Parse a single ``Set-Cookie`` value, using ``url`` for default domain and path.

    Attributes that cannot be understood are dropped one by one; only a
    missing ``name=value`` pair makes the whole cookie unusable.
    """

    _, host, request_path = _split_url(url)
    pair, *attributes = header.split(";")
    if "=" not in pair:
        return None
    name, value = (part.strip() for part in pair.split("=", 1))
    if not name:
        return None

    domain = host
    path = default_path(request_path)
    expires: Optional[datetime] = None
    max_age: Optional[int] = None
    secure = False
    http_only = False

    for attribute in attributes:
        key, _, attr_value = attribute.partition("=")
        key = key.strip().lower()
        attr_value = attr_value.strip()
        if key == "domain":
            candidate = normalize_domain(attr_value)
            if candidate and domain_matches(host, candidate):
                domain = candidate
            else:
                LOGGER.debug("Ignoring cookie domain %r for host %r", attr_value, host)
        elif key == "path":
            if attr_value.startswith("/"):
                path = attr_value
        elif key == "expires":
            expires = _parse_expires(attr_value) or expires
        elif key == "max-age":
            try:
                max_age = int(attr_value)
            except ValueError:
                LOGGER.debug("Ignoring cookie max-age %r", attr_value)
        elif key == "secure":
            secure = True
        elif key == "httponly":
            http_only = True

    if max_age is not None:
        expires = (now or datetime.now(timezone.utc)) + timedelta(seconds=max_age)

    return CookieRecord(
        name=name,
        value=value,
        domain=domain,
        path=path,
        expires=expires,
        secure=secure,
        http_only=http_only,
    )


class CookieJar:
    """Stores cookies by domain, path and name.

    A jar may be shared by any number of connections; reads and upserts are
    serialized by a lock so that threads sharing a jar cannot interleave on a
    single (domain, path, name) triple.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._store: dict[str, dict[str, dict[str, CookieRecord]]] = {}

    def __len__(self) -> int:
        with self._lock:
            return sum(len(names) for paths in self._store.values() for names in paths.values())

    def __iter__(self) -> Iterator[CookieRecord]:
        with self._lock:
            records = [
                record
                for paths in self._store.values()
                for names in paths.values()
                for record in names.values()
            ]
        return iter(records)

    def upsert(self, record: CookieRecord, *, now: Optional[datetime] = None) -> None:
        """Insert or replace the record for its triple; an expired record deletes it."""

        domain = normalize_domain(record.domain)
        with self._lock:
            if record.is_expired(now):
                self._discard(domain, record.path, record.name)
                return
            paths = self._store.setdefault(domain, {})
            paths.setdefault(record.path, {})[record.name] = record

    def _discard(self, domain: str, path: str, name: str) -> None:
        paths = self._store.get(domain)
        if not paths or path not in paths:
            return
        paths[path].pop(name, None)
        if not paths[path]:
            del paths[path]
        if not paths:
            del self._store[domain]

    def set_cookie(self, url: str, cookie_string: str) -> Optional[CookieRecord]:
        """Parse ``cookie_string`` as a ``Set-Cookie`` value received from ``url`` and store it."""

        record = parse_set_cookie(cookie_string, url)
        if record is None:
            LOGGER.debug("Skipping unparseable cookie %r from %s", cookie_string, url)
            return None
        self.upsert(record)
        return record

    def get_cookies(self, url: str) -> list[CookieRecord]:
        """Return the records that a request to ``url`` would carry."""

        scheme, host, path = _split_url(url)
        now = datetime.now(timezone.utc)
        with self._lock:
            matched = [
                record
                for domain, paths in self._store.items()
                if domain_matches(host, domain)
                for names in paths.values()
                for record in names.values()
                if record.matches(scheme, host, path, now)
            ]
        # longest path first; sorted() keeps insertion order for ties
        return sorted(matched, key=lambda record: len(record.path), reverse=True)

    def cookie_header(self, url: str) -> Optional[str]:
        cookies = self.get_cookies(url)
        if not cookies:
            return None
        return "; ".join(str(record) for record in cookies)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()


_DEFAULT_JAR = CookieJar()


def default_cookie_jar() -> CookieJar:
    """The process-wide jar used by :class:`CookieJarMiddleware` unless one is supplied."""

    return _DEFAULT_JAR


class CookieJarMiddleware:
    """Injects stored cookies into requests and records cookies set by responses."""

    def __init__(self, jar: Optional[CookieJar] = None) -> None:
        self.jar = jar if jar is not None else default_cookie_jar()

    def request(self, client: Any, head: HeaderMap, body: Any) -> tuple[HeaderMap, Any]:
        if "cookie" in head:
            raise ConfigurationError(
                "explicit 'cookie' header conflicts with the cookie jar middleware; "
                "seed the jar with set_cookie() instead"
            )
        header = self.jar.cookie_header(client.url)
        if header:
            head["cookie"] = header
        return head, body

    def response(self, resp: IncomingResponse) -> None:
        for value in resp.response_header.get_list("set-cookie"):
            self.jar.set_cookie(resp.url, value)

    # Imperative API proxied to the jar
    def set_cookie(self, url: str, cookie_string: str) -> Optional[CookieRecord]:
        return self.jar.set_cookie(url, cookie_string)

    def get_cookies(self, url: str) -> list[CookieRecord]:
        return self.jar.get_cookies(url)


__all__ = [
    "CookieJar",
    "CookieJarMiddleware",
    "CookieRecord",
    "default_cookie_jar",
    "default_path",
    "domain_matches",
    "parse_set_cookie",
]
