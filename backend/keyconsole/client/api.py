"""
Async client for the console's own /api surface.

This is what the dashboard talks to, never the gateway or metering API
directly. Non-2xx responses and transport failures become ConsoleApiError
with a human-readable message suitable for a notification.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Literal
from urllib.parse import quote

import httpx
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from keyconsole.schemas.consumers import Consumer

logger = logging.getLogger(__name__)

_CONSUMER_LIST = TypeAdapter(list[Consumer])


class ConsoleApiError(Exception):
    """A console API call failed. status_code is None for transport failures."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


# ── Key issuance ────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class IssuedKey:
    """A freshly issued API key. Shown once; never cached or logged."""

    key: str = field(repr=False)
    kind: Literal["issued"] = "issued"


@dataclass(frozen=True, slots=True)
class NoKeyIssued:
    kind: Literal["none"] = "none"


KeyIssuance = IssuedKey | NoKeyIssued


class _IssuedKeyEntry(BaseModel):
    key: str = Field(min_length=1)


class _CreatedConsumerKeys(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_keys: list[_IssuedKeyEntry] = Field(default_factory=list, alias="apiKeys")


def parse_issued_key(payload: Any) -> KeyIssuance:
    """Pull apiKeys[0].key out of a create response, or report that none was issued."""
    try:
        parsed = _CreatedConsumerKeys.model_validate(payload)
    except ValidationError:
        return NoKeyIssued()
    if not parsed.api_keys:
        return NoKeyIssued()
    return IssuedKey(key=parsed.api_keys[0].key)


@dataclass(frozen=True, slots=True)
class CreatedConsumer:
    consumer: Consumer
    issued: KeyIssuance


# ── Client ──────────────────────────────────────────────────
class ConsoleApi:
    """
    Thin wrapper over the console backend.

    Usage:
        async with ConsoleApi("http://localhost:8000") as api:
            consumers = await api.list_consumers()
    """

    def __init__(
        self,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )

    async def __aenter__(self) -> ConsoleApi:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    # ── Consumers ───────────────────────────────────────────

    async def list_consumers(self) -> list[Consumer]:
        """
        Return every consumer. The backend answers {data, offset, limit};
        anything else is treated as an empty list.
        """
        payload = await self._json("GET", "/api/consumers", action="fetch consumers")
        rows = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(rows, list):
            logger.warning("Consumer list response had no data array")
            return []
        try:
            return _CONSUMER_LIST.validate_python(rows)
        except ValidationError as exc:
            logger.warning("Discarding malformed consumer list: %s", exc)
            return []

    async def create_consumer(self, payload: dict[str, Any]) -> CreatedConsumer:
        body = await self._json("POST", "/api/consumers", action="create consumer", json=payload)
        issued = parse_issued_key(body)
        if isinstance(issued, NoKeyIssued):
            logger.info("No API key found in create response")

        # The key material must not outlive this call, so drop it from the
        # record that goes into caches.
        record = body
        if isinstance(body, dict):
            record = {k: v for k, v in body.items() if k != "apiKeys"}
        return CreatedConsumer(consumer=_consumer(record, "create consumer"), issued=issued)

    async def update_consumer(self, consumer_name: str, payload: dict[str, Any]) -> Consumer:
        body = await self._json(
            "PATCH",
            f"/api/consumers/{quote(consumer_name, safe='')}",
            action="update consumer",
            json=payload,
        )
        return _consumer(body, "update consumer")

    async def delete_consumer(self, consumer_name: str) -> None:
        await self._json(
            "DELETE",
            f"/api/consumers/{quote(consumer_name, safe='')}",
            action="delete consumer",
        )

    # ── Usage ───────────────────────────────────────────────

    async def get_usage(
        self,
        subject: str,
        metric: str = "tokens_total",
        time_range: str = "30d",
        window_size: str = "DAY",
    ) -> dict[str, Any]:
        return await self._json(
            "GET",
            "/api/usage",
            action="fetch usage data",
            params={
                "subject": subject,
                "metric": metric,
                "timeRange": time_range,
                "windowSize": window_size,
            },
        )

    async def get_model_usage(self, subject: str, time_range: str = "30d") -> dict[str, Any]:
        return await self._json(
            "GET",
            "/api/model-usage",
            action="fetch model usage data",
            params={"subject": subject, "timeRange": time_range},
        )

    # ── Transport ───────────────────────────────────────────

    async def _json(
        self,
        method: str,
        url: str,
        *,
        action: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as exc:
            logger.error("Failed to %s: %s", action, exc)
            raise ConsoleApiError(f"Failed to {action}: {exc}") from exc

        if not response.is_success:
            raise ConsoleApiError(
                f"Failed to {action}: {response.status_code} {response.reason_phrase}"
                f"\nDetails: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise ConsoleApiError(
                f"Failed to {action}: unreadable response",
                status_code=response.status_code,
                body=response.text,
            ) from exc


def _consumer(body: Any, action: str) -> Consumer:
    try:
        return Consumer.model_validate(body)
    except ValidationError as exc:
        raise ConsoleApiError(f"Failed to {action}: unexpected response shape") from exc
