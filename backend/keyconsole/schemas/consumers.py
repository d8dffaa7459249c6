"""
Pydantic v2 schemas for consumer management.

Separation:
  • LimitForm              — what the dashboard form collects (UI units).
  • ConsumerCreateRequest  — what clients POST to the proxy.
  • ConsumerUpdateRequest  — what clients PATCH to the proxy.
  • UpstreamMetadata       — the exact metadata shape the gateway accepts.
  • Consumer               — a gateway consumer as returned upstream.

Wire names are camelCase; Python attributes are snake_case. Request
models accept both (populate_by_name=True).
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# Numbers arrive from forms as strings as often as numbers.
LooseNumber = int | float | str | None


# ── Dashboard form ──────────────────────────────────────────
class LimitForm(BaseModel):
    """
    Limit fields as the dashboard form submits them.

    money_limit is in UI units: whole dollars scaled by 1000.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str | None = None
    tokens: LooseNumber = None
    request_limit: LooseNumber = Field(default=None, alias="requestLimit")
    time_window: LooseNumber = Field(
        default=None,
        alias="timeWindow",
        description="Window length in minutes.",
    )
    model: str | None = None
    money_limit: LooseNumber = Field(default=None, alias="moneyLimit")


# ── Proxy request bodies ────────────────────────────────────
class ConsumerLimitsIn(BaseModel):
    """Upstream-scale limits as sent to the proxy. Every field optional."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tokens: LooseNumber = None
    requests: LooseNumber = None
    time_window_minutes: LooseNumber = Field(default=None, alias="timeWindowMinutes")
    budget: LooseNumber = None


class ConsumerMetadataIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    limits: ConsumerLimitsIn | None = None
    model: str | None = None


class ConsumerCreateRequest(BaseModel):
    """
    Payload accepted by POST /api/consumers.

    Loosely typed. The proxy normalizes the name and fills
    every missing limit from CREATE_DEFAULTS.
    """

    model_config = ConfigDict(extra="allow")

    id: str | None = None
    name: str | None = None
    managers: list[Any] | None = None
    description: str | None = None
    tags: dict[str, Any] | None = None
    metadata: ConsumerMetadataIn | None = None


class ConsumerUpdateRequest(BaseModel):
    """
    Payload accepted by PATCH /api/consumers/{consumer_name}.

    Partial updates are not supported: tokens and requests must be
    resent, either changed or with their previous values.
    """

    model_config = ConfigDict(extra="allow")

    name: str | None = None
    metadata: ConsumerMetadataIn | None = None


# ── Upstream shapes ─────────────────────────────────────────
class UpstreamLimits(BaseModel):
    """Fully specified limits in the numeric types the gateway validates."""

    model_config = ConfigDict(populate_by_name=True)

    tokens: int | float
    requests: int | float
    time_window_minutes: int | float = Field(alias="timeWindowMinutes")
    budget: float


class UpstreamMetadata(BaseModel):
    """The consumer `metadata` object written to the gateway."""

    limits: UpstreamLimits
    model: str

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class ConsumerLimits(BaseModel):
    """Limits as read back from the gateway. Every field is optional."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tokens: float | None = None
    requests: float | None = None
    time_window_minutes: float | None = Field(default=None, alias="timeWindowMinutes")
    budget: float | None = None


class ConsumerMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    limits: ConsumerLimits | None = None
    model: str | None = None


class Consumer(BaseModel):
    """
    A gateway consumer.

    `id` is the local cache identity; `name` is the key the gateway uses
    for update and delete. Callers carry both.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str
    name: str
    created_on: str | None = Field(default=None, alias="createdOn")
    updated_on: str | None = Field(default=None, alias="updatedOn")
    description: str | None = None
    tags: dict[str, Any] | None = None
    metadata: ConsumerMetadata | None = None


class ConsumerDeleted(BaseModel):
    """Body returned by DELETE /api/consumers/{consumer_name}."""

    success: bool = True
    message: str
