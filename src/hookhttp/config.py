"""Configuration models for connections, telemetry and middleware construction."""

from __future__ import annotations

from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveFloat, field_validator


class TelemetryConfig(BaseModel):
    """Controls which pipeline events reach telemetry sinks."""

    enabled: bool = True
    sample_rate: float = Field(
        default=1.0,
        ge=0.0,
        le=1.0,
        description="Fraction of requests whose pipeline events are traced.",
    )
    include_headers: bool = Field(
        default=False,
        description="Attach request and response headers to pipeline events.",
    )


class MiddlewareConfig(BaseModel):
    """Arguments used to construct a middleware instance at registration time.

    ``block`` is the deferred configuration callback: a zero-argument callable
    handed to the middleware constructor as the ``block`` keyword.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    args: tuple[Any, ...] = ()
    kwargs: dict[str, Any] = Field(default_factory=dict)
    block: Optional[Callable[[], Any]] = None

    @field_validator("kwargs")
    @classmethod
    def _reject_block_kwarg(cls, value: dict[str, Any]) -> dict[str, Any]:
        if "block" in value:
            raise ValueError("pass the configuration callback through 'block', not kwargs")
        return value


class ConnectionConfig(BaseModel):
    """Per-connection settings."""

    timeout_seconds: PositiveFloat = Field(
        default=30.0,
        description="Transport timeout applied to every request on the connection.",
    )
    default_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Headers placed in every outgoing head before the request pipeline runs.",
    )
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("default_headers")
    @classmethod
    def _validate_header_names(cls, value: dict[str, str]) -> dict[str, str]:
        for name in value:
            if not name.strip():
                raise ValueError("header names must be non-empty")
        return value


__all__ = [
    "ConnectionConfig",
    "MiddlewareConfig",
    "TelemetryConfig",
]
