"""
Cost estimation for metered token usage.

The metering API reports token totals only, so prices here are blended
per-1K-token rates. Models without an entry use the flat dashboard rate.
Decimal everywhere to avoid floating-point rounding on money.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from decimal import Decimal
from typing import Any

# ── Pricing table ───────────────────────────────────────────
# Blended USD per 1K tokens.
DEFAULT_PRICE_PER_1K = Decimal("0.020")

MODEL_PRICING: dict[str, Decimal] = {
    "gpt-4o": Decimal("0.020"),
    "gpt-4o-mini": Decimal("0.0006"),
    "gpt-4-turbo": Decimal("0.02"),
    "gpt-3.5-turbo": Decimal("0.001"),
    "claude-3-haiku": Decimal("0.0008"),
    "claude-3-sonnet": Decimal("0.009"),
}

_ONE_THOUSAND = Decimal("1000")


def get_supported_models() -> list[str]:
    """Return a sorted list of model names with known pricing."""
    return sorted(MODEL_PRICING.keys())


def price_per_1k(model_name: str | None) -> Decimal:
    if model_name is None:
        return DEFAULT_PRICE_PER_1K
    return MODEL_PRICING.get(model_name, DEFAULT_PRICE_PER_1K)


def estimate_cost(model_name: str | None, tokens: int | float) -> Decimal:
    """
    Estimate the USD cost of `tokens` tokens on `model_name`.

    Raises:
        ValueError: If tokens is negative.
    """
    if tokens < 0:
        raise ValueError(f"tokens must be >= 0, got {tokens}")
    return (Decimal(str(tokens)) / _ONE_THOUSAND) * price_per_1k(model_name)


def cost_series(
    rows: Iterable[Mapping[str, Any]],
    model_name: str | None = None,
) -> list[dict[str, Any]]:
    """
    Turn a usage series into chart points with an estimated cost.

    A row's own groupBy.model wins over `model_name`.
    """
    points = []
    for row in rows:
        tokens = row.get("value") or 0
        group = row.get("groupBy") or {}
        points.append(
            {
                "windowStart": row.get("windowStart"),
                "windowEnd": row.get("windowEnd"),
                "tokens": tokens,
                "cost": estimate_cost(group.get("model") or model_name, tokens),
            }
        )
    return points
