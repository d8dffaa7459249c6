"""
Metering client for usage queries.

Uses the metering API's meter query endpoint via httpx:
  GET {base}/api/v1/meters/{meter}/query
      ?from&to&windowSize&windowTimeZone&subject=…&groupBy=…

Configuration:
  METERING_API_KEY    — bearer token, server-side only
  METERING_BASE_URL   — defaults to the hosted metering cloud
  METERING_TIME_ZONE  — time zone used to align windows
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
from keyconsole.services.usage_query import TimeWindow, WindowSize

logger = logging.getLogger(__name__)


class MeteringClient:
    """Read-only client for meter queries."""

    def __init__(
        self,
        config: Settings,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._transport = transport

    def ensure_configured(self) -> None:
        if not self._config.METERING_API_KEY:
            logger.error("METERING_API_KEY is not configured")
            raise ConfigurationError(
                "Metering API key is not configured",
                message="Set METERING_API_KEY in the server environment.",
            )

    async def query_meter(
        self,
        meter: str,
        *,
        subject: str,
        window: TimeWindow,
        window_size: WindowSize,
        group_by: list[str] | None = None,
    ) -> dict[str, Any]:
        """
        Query aggregated usage for one subject.

        Returns the metering API's body: {data: [...], from, to, windowSize}.

        Raises:
            ConfigurationError:       METERING_API_KEY is empty.
            UpstreamError:            non-2xx from the metering API.
            UpstreamUnavailableError: transport failure or unreadable body.
        """
        self.ensure_configured()

        params: list[tuple[str, str]] = [
            ("from", window.start_iso),
            ("to", window.end_iso),
            ("windowSize", window_size.value),
            ("windowTimeZone", self._config.METERING_TIME_ZONE),
            ("subject", subject),
        ]
        params.extend(("groupBy", key) for key in group_by or [])

        url = f"{self._config.METERING_BASE_URL.rstrip('/')}/api/v1/meters/{meter}/query"
        headers = {
            "Authorization": f"Bearer {self._config.METERING_API_KEY}",
            "Accept": "application/json",
        }

        logger.info("Metering query meter=%s subject=%s window=%s", meter, subject, window_size.value)
        try:
            async with httpx.AsyncClient(
                timeout=self._config.UPSTREAM_TIMEOUT,
                transport=self._transport,
            ) as client:
                response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.exception("Metering request failed for meter %s", meter)
            raise UpstreamUnavailableError(
                "Failed to query usage data",
                message=str(exc) or exc.__class__.__name__,
            ) from exc

        if not response.is_success:
            logger.error(
                "Metering API error: status=%d body=%s",
                response.status_code,
                response.text[:500],
            )
            raise UpstreamError(
                f"Failed to query usage data: {response.status_code} {response.reason_phrase}",
                upstream_status=response.status_code,
                body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            logger.error("Failed to parse metering response: %s", exc)
            raise UpstreamUnavailableError(
                "Failed to query usage data",
                message="Metering API returned an unreadable response.",
            ) from exc

        if not isinstance(payload, dict):
            logger.warning("Unexpected meter query shape: %s", type(payload).__name__)
            return {"data": []}
        return payload


# ── Dependency ──────────────────────────────────────────────
def get_metering_client() -> MeteringClient:
    """FastAPI dependency. Tests override this to inject a mock transport."""
    return MeteringClient(settings)
