"""Middleware registration and the request/response folding pipelines."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional, Sequence

from .config import MiddlewareConfig
from .errors import ConfigurationError, MiddlewareExecutionError
from .types import (
    HeaderMap,
    IncomingResponse,
    SupportsRequestTransform,
    SupportsResponseTransform,
)

LOGGER = logging.getLogger(__name__)


def _name(obj: Any) -> str:
    if isinstance(obj, type):
        return obj.__qualname__
    return getattr(obj, "__qualname__", type(obj).__qualname__)


@dataclass(frozen=True)
class MiddlewareEntry:
    """A constructed middleware together with the capabilities it exposes."""

    definition: Any
    instance: Any
    supports_request: bool
    supports_response: bool

    @classmethod
    def build(cls, definition: Any, config: Optional[MiddlewareConfig] = None) -> "MiddlewareEntry":
        """Construct ``definition`` once using ``config`` and record its capabilities."""

        if not callable(definition):
            raise ConfigurationError(
                f"middleware definition {definition!r} must be a class or factory callable"
            )
        config = config or MiddlewareConfig()
        kwargs = dict(config.kwargs)
        if config.block is not None:
            kwargs["block"] = config.block
        try:
            instance = definition(*config.args, **kwargs)
        except TypeError as exc:
            raise ConfigurationError(
                f"cannot construct middleware {_name(definition)}: {exc}"
            ) from exc

        for attribute in ("request", "response"):
            if hasattr(instance, attribute) and not callable(getattr(instance, attribute)):
                raise ConfigurationError(
                    f"middleware {_name(definition)} defines a non-callable '{attribute}'"
                )
        return cls(
            definition=definition,
            instance=instance,
            supports_request=isinstance(instance, SupportsRequestTransform),
            supports_response=isinstance(instance, SupportsResponseTransform),
        )


def _resolve_config(
    args: Sequence[Any],
    kwargs: dict[str, Any],
    block: Optional[Callable[[], Any]],
    config: Optional[MiddlewareConfig],
) -> Optional[MiddlewareConfig]:
    if config is None:
        if not args and not kwargs and block is None:
            return None
        return MiddlewareConfig(args=tuple(args), kwargs=kwargs, block=block)
    if args or kwargs or block is not None:
        raise ConfigurationError("pass either a MiddlewareConfig or inline arguments, not both")
    return config


class MiddlewareRegistry:
    """Ordered, append-only list of middleware entries."""

    def __init__(self, entries: Optional[Iterable[MiddlewareEntry]] = None, *, name: str = "connection") -> None:
        self.name = name
        self._entries: list[MiddlewareEntry] = list(entries or [])
        self._frozen = False

    def __iter__(self) -> Iterator[MiddlewareEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        """Refuse further registrations, e.g. once a request has been dispatched."""

        self._frozen = True

    def add(self, entry: MiddlewareEntry) -> None:
        if self._frozen:
            raise ConfigurationError(
                f"cannot register {_name(entry.definition)} on the {self.name} registry "
                "after a request has been dispatched"
            )
        self._entries.append(entry)
        LOGGER.debug(
            "Registered %s middleware %s (request=%s, response=%s)",
            self.name,
            _name(entry.definition),
            entry.supports_request,
            entry.supports_response,
        )

    def use(
        self,
        definition: Any,
        *args: Any,
        block: Optional[Callable[[], Any]] = None,
        config: Optional[MiddlewareConfig] = None,
        **kwargs: Any,
    ) -> MiddlewareEntry:
        """Construct ``definition`` and append it; returns the new entry."""

        entry = MiddlewareEntry.build(definition, _resolve_config(args, kwargs, block, config))
        self.add(entry)
        return entry

    def entries(self) -> list[MiddlewareEntry]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self._frozen = False


_GLOBAL_REGISTRY = MiddlewareRegistry(name="global")


def global_registry() -> MiddlewareRegistry:
    """Return the process-wide registry applied before every connection's own middleware."""

    return _GLOBAL_REGISTRY


def reset_global_registry() -> None:
    _GLOBAL_REGISTRY.clear()


def use(
    definition: Any,
    *args: Any,
    block: Optional[Callable[[], Any]] = None,
    config: Optional[MiddlewareConfig] = None,
    **kwargs: Any,
) -> MiddlewareEntry:
    """Register middleware for every connection (global scope)."""

    return _GLOBAL_REGISTRY.use(definition, *args, block=block, config=config, **kwargs)


register_global = use


def register_connection(
    conn: Any,
    definition: Any,
    *args: Any,
    block: Optional[Callable[[], Any]] = None,
    config: Optional[MiddlewareConfig] = None,
    **kwargs: Any,
) -> MiddlewareEntry:
    """Register middleware on a single connection; same as ``conn.use(...)``."""

    return conn.use(definition, *args, block=block, config=config, **kwargs)


class MiddlewarePipeline:
    """Folds a request or a response through entries in registration order.

    The response phase runs in the same order as the request phase; it is not
    unwound in reverse.
    """

    def __init__(self, entries: Iterable[MiddlewareEntry]) -> None:
        self._entries = list(entries)

    @classmethod
    def for_registry(cls, local: Optional[MiddlewareRegistry] = None) -> "MiddlewarePipeline":
        """Global entries first, then the entries of ``local``."""

        entries = global_registry().entries()
        if local is not None:
            entries.extend(local.entries())
        return cls(entries)

    @property
    def entries(self) -> list[MiddlewareEntry]:
        return list(self._entries)

    def names(self, phase: str) -> list[str]:
        """Names of the entries that take part in ``phase`` ("request" or "response")."""

        flag = "supports_request" if phase == "request" else "supports_response"
        return [_name(entry.definition) for entry in self._entries if getattr(entry, flag)]

    def apply_request(self, client: Any, head: HeaderMap, body: Any) -> tuple[HeaderMap, Any]:
        for entry in self._entries:
            if not entry.supports_request:
                continue
            try:
                result = entry.instance.request(client, head, body)
            except ConfigurationError:
                raise
            except Exception as exc:
                raise MiddlewareExecutionError(
                    f"request middleware {_name(entry.definition)} failed: {exc!r}",
                    middleware=entry.instance,
                    phase="request",
                ) from exc
            try:
                head, body = result
            except (TypeError, ValueError) as exc:
                raise MiddlewareExecutionError(
                    f"request middleware {_name(entry.definition)} must return (head, body), "
                    f"got {result!r}",
                    middleware=entry.instance,
                    phase="request",
                ) from exc
            if not isinstance(head, HeaderMap):
                head = HeaderMap(head)
        return head, body

    def apply_response(self, resp: IncomingResponse) -> IncomingResponse:
        for entry in self._entries:
            if not entry.supports_response:
                continue
            try:
                result = entry.instance.response(resp)
            except Exception as exc:
                raise MiddlewareExecutionError(
                    f"response middleware {_name(entry.definition)} failed: {exc!r}",
                    middleware=entry.instance,
                    phase="response",
                ) from exc
            if isinstance(result, IncomingResponse):
                resp = result
        return resp


__all__ = [
    "MiddlewareEntry",
    "MiddlewarePipeline",
    "MiddlewareRegistry",
    "global_registry",
    "register_connection",
    "register_global",
    "reset_global_registry",
    "use",
]
