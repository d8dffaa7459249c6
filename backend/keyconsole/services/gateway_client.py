"""
Gateway client for the consumer / API key resource API.

Uses the gateway's REST API via httpx:
  {base}/accounts/{account}/key-buckets/{bucket}/consumers[/{name}]

Configuration:
  GATEWAY_API_KEY  — bearer token, server-side only
  GATEWAY_ACCOUNT  — account identifier
  GATEWAY_BUCKET   — key bucket identifier

Every call is a single attempt: non-2xx responses raise UpstreamError with
the status and raw body, transport failures raise UpstreamUnavailableError.
Retrying is left to the caller.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from keyconsole.core.config import Settings, settings
from keyconsole.core.errors import (
    ConfigurationError,
    UpstreamError,
    UpstreamUnavailableError,
)

logger = logging.getLogger(__name__)


class GatewayClient:
    """Thin async wrapper around the gateway consumers collection."""

    def __init__(
        self,
        config: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    @property
    def consumers_url(self) -> str:
        c = self._config
        return (
            f"{c.GATEWAY_BASE_URL.rstrip('/')}/accounts/{c.GATEWAY_ACCOUNT}"
            f"/key-buckets/{c.GATEWAY_BUCKET}/consumers"
        )

    def ensure_configured(self) -> None:
        """Raise ConfigurationError if the gateway key is missing."""
        if not self._config.GATEWAY_API_KEY:
            logger.error("GATEWAY_API_KEY is not configured")
            raise ConfigurationError(
                "API key is not configured",
                message="Set GATEWAY_API_KEY in the server environment.",
            )

    # ── Operations ──────────────────────────────────────────

    async def list_consumers(self) -> dict[str, Any]:
        """
        Fetch one page of consumers.

        Returns the envelope {data, offset, limit}. An envelope without a
        `data` list is logged and treated as empty.
        """
        page_size = self._config.CONSUMER_PAGE_SIZE
        response = await self._request(
            "GET",
            self.consumers_url,
            action="fetch consumers",
            params={"limit": page_size, "offset": 0},
        )

        payload = _json_or_none(response)
        if not isinstance(payload, dict) or not isinstance(payload.get("data"), list):
            logger.warning(
                "Unexpected consumer list shape from gateway: %s",
                type(payload).__name__,
            )
            return {"data": [], "offset": 0, "limit": page_size}

        logger.debug("Fetched %d consumers", len(payload["data"]))
        return payload

    async def create_consumer(self, body: dict[str, Any]) -> dict[str, Any]:
        """Create a consumer and have the gateway issue a non-expiring key."""
        response = await self._request(
            "POST",
            self.consumers_url,
            action="create consumer",
            params={"with-api-key": "true", "no-key-expiration": "true"},
            body=body,
        )
        return _json_body(response, "create consumer")

    async def update_consumer(self, name: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "PATCH",
            f"{self.consumers_url}/{name}",
            action="update consumer",
            body=body,
        )
        return _json_body(response, "update consumer")

    async def delete_consumer(self, name: str) -> None:
        await self._request(
            "DELETE",
            f"{self.consumers_url}/{name}",
            action="delete consumer",
        )

    # ── Transport ───────────────────────────────────────────

    async def _request(
        self,
        method: str,
        url: str,
        *,
        action: str,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> httpx.Response:
        self.ensure_configured()

        headers = {
            "Authorization": f"Bearer {self._config.GATEWAY_API_KEY}",
            "Content-Type": "application/json",
        }

        logger.info("Gateway %s %s", method, url)
        try:
            async with httpx.AsyncClient(
                timeout=self._config.UPSTREAM_TIMEOUT,
                transport=self._transport,
            ) as client:
                response = await client.request(
                    method, url, params=params, json=body, headers=headers,
                )
        except httpx.HTTPError as exc:
            logger.exception("Gateway request failed: %s %s", method, url)
            raise UpstreamUnavailableError(
                f"Failed to {action}",
                message=str(exc) or exc.__class__.__name__,
            ) from exc

        if not response.is_success:
            logger.error(
                "Gateway error: status=%d body=%s",
                response.status_code,
                response.text[:500],
            )
            raise UpstreamError(
                f"Failed to {action}: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
                body=response.text,
            )

        return response


# ── Dependency ──────────────────────────────────────────────
def get_gateway_client() -> GatewayClient:
    """FastAPI dependency. Tests override this to inject a mock transport."""
    return GatewayClient(settings)


# ── Internal helpers ────────────────────────────────────────

def _json_or_none(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def _json_body(response: httpx.Response, action: str) -> dict[str, Any]:
    payload = _json_or_none(response)
    if not isinstance(payload, dict):
        logger.error("Gateway returned a non-object body for %s", action)
        raise UpstreamUnavailableError(
            f"Failed to {action}",
            message="Gateway returned an unreadable response.",
        )
    return payload
