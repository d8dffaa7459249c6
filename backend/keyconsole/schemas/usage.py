"""
Pydantic v2 response schemas for usage endpoints.

`data` is the metering API's meter-query body, passed through untouched:
{"data": [{windowStart, windowEnd, value, subject, groupBy}], from, to,
windowSize}.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class UsageResponse(BaseModel):
    """Body of GET /api/usage."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str
    metric: str
    window_size: str = Field(alias="windowSize")
    time_range: str = Field(alias="timeRange")
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    data: dict[str, Any]


class ModelUsageResponse(BaseModel):
    """Body of GET /api/model-usage: daily tokens_total grouped by model."""

    model_config = ConfigDict(populate_by_name=True)

    subject: str
    metric: str = "tokens_total"
    window_size: str = Field(default="DAY", alias="windowSize")
    start_time: str = Field(alias="startTime")
    end_time: str = Field(alias="endTime")
    data: dict[str, Any]
