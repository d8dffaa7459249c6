"""
Limit normalization — UI/proxy limit shapes → gateway metadata.

The gateway validates consumer limits narrowly: every field present,
every field a number. Forms and proxy callers send partial, loosely
typed data. This module is the single place where that gap is closed.

Defaults differ between create and update and are kept as two named
configurations rather than branches:

  field               CREATE_DEFAULTS   UPDATE_DEFAULTS
  tokens              100               required
  requests            10                required
  timeWindowMinutes   1                 2
  budget              0.1               0.1
  model               gpt-4o            gpt-4o

A value that is supplied but not a finite number raises InvalidLimitError
instead of reaching the gateway as NaN.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import Decimal

from keyconsole.core.errors import InvalidLimitError
from keyconsole.schemas.consumers import (
    ConsumerLimits,
    ConsumerLimitsIn,
    LimitForm,
    LooseNumber,
    UpstreamLimits,
    UpstreamMetadata,
)

# The form shows money limits in dollars x 1000.
MONEY_LIMIT_SCALE = Decimal("1000")

DEFAULT_MODEL = "gpt-4o"


@dataclass(frozen=True, slots=True)
class LimitDefaults:
    """Fallbacks for limit fields the caller left out.

    A None tokens/requests default means the field is required.
    """

    tokens: int | None
    requests: int | None
    time_window_minutes: int
    budget: float
    model: str = DEFAULT_MODEL


CREATE_DEFAULTS = LimitDefaults(
    tokens=100,
    requests=10,
    time_window_minutes=1,
    budget=0.1,
)

UPDATE_DEFAULTS = LimitDefaults(
    tokens=None,
    requests=None,
    time_window_minutes=2,
    budget=0.1,
)


def coerce_number(value: LooseNumber, field: str) -> int | float | None:
    """
    Coerce a loosely typed form value into a finite number.

    Returns None when the value was not supplied (None or blank string).
    Integral values come back as int.

    Raises:
        InvalidLimitError: value is present but not a finite number.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidLimitError(
            "Invalid consumer limits",
            details=f"{field} must be a number, got {value!r}",
        )
    if isinstance(value, int):
        return value

    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            raise InvalidLimitError(
                "Invalid consumer limits",
                details=f"{field} must be a number, got {value!r}",
            ) from None
    else:
        number = float(value)

    if not math.isfinite(number):
        raise InvalidLimitError(
            "Invalid consumer limits",
            details=f"{field} must be a finite number, got {value!r}",
        )
    return int(number) if number.is_integer() else number


def normalize_limit_form(form: LimitForm, defaults: LimitDefaults) -> UpstreamMetadata:
    """
    Convert a dashboard form submission into gateway metadata.

    money_limit is divided by 1000 to recover the gateway's budget unit.
    """
    money = coerce_number(form.money_limit, "moneyLimit")
    budget = None if money is None else float(Decimal(str(money)) / MONEY_LIMIT_SCALE)

    return _build(
        tokens=coerce_number(form.tokens, "tokens"),
        requests=coerce_number(form.request_limit, "requestLimit"),
        time_window=coerce_number(form.time_window, "timeWindow"),
        budget=budget,
        model=form.model,
        defaults=defaults,
    )


def normalize_request_limits(
    limits: ConsumerLimitsIn | None,
    model: str | None,
    defaults: LimitDefaults,
) -> UpstreamMetadata:
    """Normalize upstream-scale limits arriving at the proxy."""
    limits = limits or ConsumerLimitsIn()
    budget = coerce_number(limits.budget, "budget")

    return _build(
        tokens=coerce_number(limits.tokens, "tokens"),
        requests=coerce_number(limits.requests, "requests"),
        time_window=coerce_number(limits.time_window_minutes, "timeWindowMinutes"),
        budget=None if budget is None else float(budget),
        model=model,
        defaults=defaults,
    )


def form_from_limits(
    limits: ConsumerLimits | None,
    *,
    name: str | None = None,
    model: str | None = None,
) -> LimitForm:
    """
    Express stored gateway limits as a form, in UI units.

    Used to pre-fill an update so fields the operator did not touch are
    resent with their previous values.
    """
    limits = limits or ConsumerLimits()
    money = None
    if limits.budget is not None:
        money = float(Decimal(str(limits.budget)) * MONEY_LIMIT_SCALE)
    return LimitForm(
        name=name,
        tokens=limits.tokens,
        request_limit=limits.requests,
        time_window=limits.time_window_minutes,
        model=model,
        money_limit=money,
    )


# ── Internal helpers ────────────────────────────────────────

def _build(
    *,
    tokens: int | float | None,
    requests: int | float | None,
    time_window: int | float | None,
    budget: float | None,
    model: str | None,
    defaults: LimitDefaults,
) -> UpstreamMetadata:
    return UpstreamMetadata(
        limits=UpstreamLimits(
            tokens=_required_or_default(tokens, defaults.tokens, "tokens"),
            requests=_required_or_default(requests, defaults.requests, "requests"),
            time_window_minutes=(
                time_window if time_window is not None else defaults.time_window_minutes
            ),
            budget=budget if budget is not None else defaults.budget,
        ),
        model=model or defaults.model,
    )


def _required_or_default(
    value: int | float | None,
    default: int | None,
    field: str,
) -> int | float:
    if value is not None:
        return value
    if default is None:
        raise InvalidLimitError(
            "Invalid consumer limits",
            details=f"{field} is required when updating a consumer",
        )
    return default
