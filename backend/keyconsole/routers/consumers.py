"""
Consumer router — server-side proxy to the gateway consumers collection.

  GET    /api/consumers                   — list (one page of 1000)
  POST   /api/consumers                   — create + issue a non-expiring key
  PATCH  /api/consumers/{consumer_name}   — replace limits / rename
  DELETE /api/consumers/{consumer_name}   — delete

Rules enforced on every mutating route:
  1. Missing gateway credential → 500 before any network call.
  2. Names are re-normalized here; client-supplied names are never
     forwarded as-is.
  3. Limits are fully specified before they leave the proxy.
  4. Upstream failures are relayed with the upstream status and raw body.
"""

import logging
from dataclasses import replace
from typing import Annotated, Any

from fastapi import APIRouter, Depends, status

from keyconsole.core.config import Settings, get_settings
from keyconsole.schemas.consumers import (
    ConsumerCreateRequest,
    ConsumerDeleted,
    ConsumerUpdateRequest,
)
from keyconsole.services.gateway_client import GatewayClient, get_gateway_client
from keyconsole.services.limits import (
    CREATE_DEFAULTS,
    UPDATE_DEFAULTS,
    normalize_request_limits,
)
from keyconsole.services.names import normalize_consumer_name

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Consumers"])

Gateway = Annotated[GatewayClient, Depends(get_gateway_client)]
Config = Annotated[Settings, Depends(get_settings)]


@router.get(
    "",
    summary="List consumers",
    description=(
        "Returns the gateway envelope {data, offset, limit}. "
        "An unexpected envelope degrades to an empty list."
    ),
)
async def list_consumers(gateway: Gateway) -> dict[str, Any]:
    return await gateway.list_consumers()


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    summary="Create a consumer and issue an API key",
    description=(
        "Normalizes the name and fills missing limits with create defaults "
        "(tokens 100, requests 10, 1 minute window, budget 0.1). "
        "The issued key is returned once in apiKeys[0].key and never stored."
    ),
)
async def create_consumer(
    payload: ConsumerCreateRequest,
    gateway: Gateway,
    config: Config,
) -> dict[str, Any]:
    gateway.ensure_configured()

    # ── 1. Name (falls back to the id when no name is given) ─
    name = normalize_consumer_name(payload.name or payload.id or "")

    # ── 2. Limits ───────────────────────────────────────────
    metadata = payload.metadata
    normalized = normalize_request_limits(
        metadata.limits if metadata else None,
        metadata.model if metadata else None,
        replace(CREATE_DEFAULTS, model=config.DEFAULT_MODEL),
    )

    # ── 3. Upstream body ────────────────────────────────────
    body = {
        "name": name,
        "managers": payload.managers or [],
        "description": payload.description or "",
        "tags": payload.tags or {},
        "metadata": normalized.to_wire(),
    }

    created = await gateway.create_consumer(body)
    logger.info("Created consumer %s", name)
    return created


@router.patch(
    "/{consumer_name}",
    summary="Update a consumer's limits",
    description=(
        "The gateway keys consumers by name. The body's name (if any) wins "
        "over the path segment, so a rename is addressed by its new name. "
        "tokens and requests are required; the window defaults to 2 minutes."
    ),
)
async def update_consumer(
    consumer_name: str,
    payload: ConsumerUpdateRequest,
    gateway: Gateway,
    config: Config,
) -> dict[str, Any]:
    gateway.ensure_configured()

    name = normalize_consumer_name(payload.name or consumer_name)

    metadata = payload.metadata
    normalized = normalize_request_limits(
        metadata.limits if metadata else None,
        metadata.model if metadata else None,
        replace(UPDATE_DEFAULTS, model=config.DEFAULT_MODEL),
    )

    # The gateway requires `name` even when it is unchanged.
    body = {"name": name, "metadata": normalized.to_wire()}

    updated = await gateway.update_consumer(name, body)
    logger.info("Updated consumer %s", name)
    return updated


@router.delete(
    "/{consumer_name}",
    response_model=ConsumerDeleted,
    summary="Delete a consumer",
)
async def delete_consumer(consumer_name: str, gateway: Gateway) -> ConsumerDeleted:
    gateway.ensure_configured()

    name = normalize_consumer_name(consumer_name)
    await gateway.delete_consumer(name)

    logger.info("Deleted consumer %s", name)
    return ConsumerDeleted(message=f"Consumer {name} deleted successfully")
