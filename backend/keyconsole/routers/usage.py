"""
Usage router — proxies meter queries to the metering API.

  GET /api/usage?subject&metric&timeRange&windowSize
  GET /api/model-usage?subject&timeRange

`subject` is the consumer name. It is required: a missing subject is a
400 and never reaches the metering API.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from keyconsole.core.errors import MissingParameterError
from keyconsole.schemas.usage import ModelUsageResponse, UsageResponse
from keyconsole.services.metering_client import MeteringClient, get_metering_client
from keyconsole.services.usage_query import (
    DEFAULT_MODEL_USAGE_RANGE,
    DEFAULT_USAGE_RANGE,
    WindowSize,
    coerce_window_size,
    parse_time_range,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Usage"])

Metering = Annotated[MeteringClient, Depends(get_metering_client)]

DEFAULT_USAGE_METRIC = "http_request"
MODEL_USAGE_METER = "tokens_total"


def _require_subject(subject: str | None) -> str:
    if not subject:
        raise MissingParameterError(
            "Subject parameter is required",
            details="Pass ?subject=<consumer name>.",
        )
    return subject


@router.get(
    "/usage",
    response_model=UsageResponse,
    summary="Aggregate usage for one consumer",
    description=(
        "timeRange is digits + h|d (default 24h); windowSize is one of "
        "MINUTE, HOUR, DAY, MONTH (unknown values become HOUR)."
    ),
)
async def get_usage(
    metering: Metering,
    subject: str | None = Query(default=None, examples=["my-app"]),
    metric: str = Query(default=DEFAULT_USAGE_METRIC, examples=["tokens_total"]),
    time_range: str = Query(default=DEFAULT_USAGE_RANGE, alias="timeRange"),
    window_size: str | None = Query(default=None, alias="windowSize"),
) -> UsageResponse:
    subject = _require_subject(subject)

    window = parse_time_range(time_range, DEFAULT_USAGE_RANGE)
    size = coerce_window_size(window_size)

    data = await metering.query_meter(
        metric,
        subject=subject,
        window=window,
        window_size=size,
    )
    logger.info("Usage query for %s (%s, %s)", subject, metric, size.value)

    return UsageResponse(
        subject=subject,
        metric=metric,
        window_size=size.value,
        time_range=time_range,
        start_time=window.start_iso,
        end_time=window.end_iso,
        data=data,
    )


@router.get(
    "/model-usage",
    response_model=ModelUsageResponse,
    summary="Daily token usage grouped by model",
    description="Defaults to the last 30 days.",
)
async def get_model_usage(
    metering: Metering,
    subject: str | None = Query(default=None, examples=["my-app"]),
    time_range: str = Query(default=DEFAULT_MODEL_USAGE_RANGE, alias="timeRange"),
) -> ModelUsageResponse:
    subject = _require_subject(subject)

    window = parse_time_range(time_range, DEFAULT_MODEL_USAGE_RANGE)

    data = await metering.query_meter(
        MODEL_USAGE_METER,
        subject=subject,
        window=window,
        window_size=WindowSize.DAY,
        group_by=["model"],
    )
    logger.info("Model usage query for %s", subject)

    return ModelUsageResponse(
        subject=subject,
        metric=MODEL_USAGE_METER,
        window_size=WindowSize.DAY.value,
        start_time=window.start_iso,
        end_time=window.end_iso,
        data=data,
    )
