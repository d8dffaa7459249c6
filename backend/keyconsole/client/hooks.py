"""
Data hooks for the console — queries and mutations over a QueryCache.

Query keys:
  ("consumers", "list")
  ("usage", "data", subject, metric, time_range, window_size)
  ("usage", "model", subject, time_range)

Every successful consumer mutation invalidates the consumer list and
patches it locally (append / replace by id / remove by id) so the UI
reflects the change before the refetch settles. Failures are reported to
the notifier and returned, never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Generic, TypeVar

from keyconsole.client.api import ConsoleApi, CreatedConsumer
from keyconsole.client.query_cache import QueryCache, QueryState, call_with_retry
from keyconsole.core.errors import InvalidLimitError
from keyconsole.schemas.consumers import Consumer, LimitForm
from keyconsole.services.cost_calculator import cost_series
from keyconsole.services.limits import (
    CREATE_DEFAULTS,
    UPDATE_DEFAULTS,
    form_from_limits,
    normalize_limit_form,
)
from keyconsole.services.usage_query import aggregate_by_model, series_rows

logger = logging.getLogger(__name__)

T = TypeVar("T")

# (level, message); stands in for the dashboard's toasts
Notifier = Callable[[str, str], None]


def log_notifier(level: str, message: str) -> None:
    logger.log(logging.ERROR if level == "error" else logging.INFO, message)


class ConsumerKeys:
    all: tuple[str, ...] = ("consumers",)

    @classmethod
    def lists(cls) -> tuple[str, ...]:
        return (*cls.all, "list")


class UsageKeys:
    all: tuple[str, ...] = ("usage",)

    @classmethod
    def usage(cls, subject: str, metric: str, time_range: str, window_size: str) -> tuple[str, ...]:
        return (*cls.all, "data", subject, metric, time_range, window_size)

    @classmethod
    def model_usage(cls, subject: str, time_range: str) -> tuple[str, ...]:
        return (*cls.all, "model", subject, time_range)


@dataclass
class MutationResult(Generic[T]):
    data: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


# ── Consumers ───────────────────────────────────────────────
class ConsumerHooks:
    def __init__(
        self,
        api: ConsoleApi,
        cache: QueryCache,
        notify: Notifier = log_notifier,
    ) -> None:
        self._api = api
        self._cache = cache
        self._notify = notify

    async def consumers(self) -> QueryState[list[Consumer]]:
        return await self._cache.fetch(ConsumerKeys.lists(), self._api.list_consumers)

    async def create(self, form: LimitForm) -> MutationResult[CreatedConsumer]:
        """
        Create a consumer from a dashboard form.

        The issued key (if any) is only available on the returned result.
        """

        try:
            metadata = normalize_limit_form(form, CREATE_DEFAULTS)
        except InvalidLimitError as exc:
            return self._rejected(exc)

        async def run() -> CreatedConsumer:
            return await self._api.create_consumer(
                {"name": form.name or "", "metadata": metadata.to_wire()}
            )

        result = await self._mutate(run, "Failed to create consumer")
        if result.ok and result.data is not None:
            created = result.data.consumer
            self._cache.invalidate(ConsumerKeys.lists())
            self._cache.set_data(
                ConsumerKeys.lists(),
                lambda old: [*(old or []), created],
            )
            self._notify("success", "Consumer created successfully")
        return result

    async def update(self, consumer: Consumer, form: LimitForm) -> MutationResult[Consumer]:
        """
        Update a consumer's limits.

        Fields left empty on the form are resent with the consumer's current
        values; the gateway does not accept partial updates.
        """

        metadata = consumer.metadata
        merged = form_from_limits(
            metadata.limits if metadata else None,
            name=consumer.name,
            model=metadata.model if metadata else None,
        ).model_copy(update=form.model_dump(exclude_none=True))
        try:
            normalized = normalize_limit_form(merged, UPDATE_DEFAULTS)
        except InvalidLimitError as exc:
            return self._rejected(exc)

        async def run() -> Consumer:
            return await self._api.update_consumer(
                consumer.name,
                {"name": merged.name or consumer.name, "metadata": normalized.to_wire()},
            )

        result = await self._mutate(run, "Failed to update consumer")
        if result.ok and result.data is not None:
            updated = result.data
            self._cache.invalidate(ConsumerKeys.lists())
            self._cache.set_data(
                ConsumerKeys.lists(),
                lambda old: None if old is None else [updated if c.id == updated.id else c for c in old],
            )
            self._notify("success", "Consumer updated successfully")
        return result

    async def delete(self, consumer: Consumer) -> MutationResult[None]:
        """Delete by name upstream, drop by id locally."""

        async def run() -> None:
            await self._api.delete_consumer(consumer.name)

        result: MutationResult[None] = await self._mutate(run, "Failed to delete consumer")
        if result.ok:
            self._cache.invalidate(ConsumerKeys.lists())
            self._cache.set_data(
                ConsumerKeys.lists(),
                lambda old: None if old is None else [c for c in old if c.id != consumer.id],
            )
            self._notify("success", "Consumer deleted successfully")
        return result

    def _rejected(self, exc: InvalidLimitError) -> MutationResult[Any]:
        self._notify("error", f"{exc.error}: {exc.details}")
        return MutationResult(error=exc)

    async def _mutate(self, fn: Callable[[], Awaitable[T]], fallback: str) -> MutationResult[T]:
        try:
            data = await call_with_retry(fn, self._cache.mutation_retry, self._cache.retry_wait)
        except Exception as exc:
            self._notify("error", str(exc) or fallback)
            return MutationResult(error=exc)
        return MutationResult(data=data)


# ── Usage ───────────────────────────────────────────────────
class UsageHooks:
    def __init__(self, api: ConsoleApi, cache: QueryCache) -> None:
        self._api = api
        self._cache = cache

    async def usage(
        self,
        subject: str,
        metric: str = "tokens_total",
        time_range: str = "30d",
        window_size: str = "DAY",
    ) -> QueryState[dict[str, Any]]:
        if not subject:
            return QueryState()

        async def fetch() -> dict[str, Any]:
            return await self._api.get_usage(subject, metric, time_range, window_size)

        return await self._cache.fetch(
            UsageKeys.usage(subject, metric, time_range, window_size), fetch
        )

    async def model_usage(self, subject: str, time_range: str = "30d") -> QueryState[dict[str, Any]]:
        if not subject:
            return QueryState()

        async def fetch() -> dict[str, Any]:
            return await self._api.get_model_usage(subject, time_range)

        return await self._cache.fetch(UsageKeys.model_usage(subject, time_range), fetch)

    async def model_distribution(self, subject: str, time_range: str = "30d") -> dict[str, float]:
        """Token totals per model over the range; empty when nothing is loaded."""
        state = await self.model_usage(subject, time_range)
        return aggregate_by_model(_rows(state))

    async def cost_series(
        self,
        subject: str,
        time_range: str = "30d",
        window_size: str = "DAY",
        model_name: str | None = None,
    ) -> list[dict[str, Any]]:
        state = await self.usage(subject, "tokens_total", time_range, window_size)
        return cost_series(_rows(state), model_name)

    async def total_cost(self, subject: str, time_range: str = "30d") -> Decimal:
        points = await self.cost_series(subject, time_range)
        return sum((p["cost"] for p in points), Decimal("0"))


def _rows(state: QueryState[dict[str, Any]]) -> list[dict[str, Any]]:
    if state.data is None:
        return []
    return series_rows(state.data.get("data"))
