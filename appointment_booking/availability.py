"""Per-session cache of provider availability.

Dates are cached per ``(calendar_id, appointment_type_id, year_month)`` and
time slots per ``(calendar_id, date_key, appointment_type_id)``. A date key
missing from a fetched month means "unavailable"; whether a month has been
fetched at all is answered by :meth:`AvailabilityCache.has_month`.

Every fetch carries the cache generation and a per-key request token. A
response is applied only if the cache has not been reset since, the key
still matches the bound provider/type pair, and no newer request for the
same key has been issued.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import Awaitable, Callable
from typing import TypeAlias, TypeVar

from appointment_booking.api_client import ApiClient
from appointment_booking.errors import ApiError
from appointment_booking.models import TimeSlot
from appointment_booking.normalizer import normalize_date_keys, normalize_time_slots

logger = logging.getLogger(__name__)

DateKey: TypeAlias = tuple[str, str | None, str]  # calendar, type, month
TimeKey: TypeAlias = tuple[str, str, str | None]  # calendar, date, type

K = TypeVar("K", DateKey, TimeKey)
V = TypeVar("V")


class AvailabilityCache:
    def __init__(self, api: ApiClient) -> None:
        self._api = api
        self._months: dict[DateKey, frozenset[str]] = {}
        self._times: dict[TimeKey, tuple[TimeSlot, ...]] = {}
        self._date_tasks: dict[DateKey, asyncio.Task] = {}
        self._time_tasks: dict[TimeKey, asyncio.Task] = {}
        self._tokens: dict[DateKey | TimeKey, int] = {}
        self._counter = itertools.count(1)
        self._generation = 0
        self._identity: tuple[str, str | None] | None = None
        self._closed = False

        self.dates_error: str | None = None
        self.times_error: str | None = None

    # ------------------------------------------------------------------ #
    #  State
    # ------------------------------------------------------------------ #
    @property
    def dates_loading(self) -> bool:
        return bool(self._date_tasks)

    @property
    def times_loading(self) -> bool:
        return bool(self._time_tasks)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def closed(self) -> bool:
        return self._closed

    def bind(self, calendar_id: str, appointment_type_id: str | None) -> None:
        """Record the provider/type pair whose responses may be applied."""
        self._identity = (calendar_id, appointment_type_id)

    def reset(self) -> None:
        """Forget everything; responses still in flight will be discarded."""
        self._generation += 1
        self._months.clear()
        self._times.clear()
        self._date_tasks.clear()
        self._time_tasks.clear()
        self._tokens.clear()
        self._identity = None
        self.dates_error = None
        self.times_error = None

    def close(self) -> None:
        self._closed = True
        self.reset()

    def dates_for(self, calendar_id: str, appointment_type_id: str | None, year_month: str) -> frozenset[str]:
        return self._months.get((calendar_id, appointment_type_id, year_month), frozenset())

    def has_month(self, calendar_id: str, appointment_type_id: str | None, year_month: str) -> bool:
        return (calendar_id, appointment_type_id, year_month) in self._months

    def times_for(self, calendar_id: str, date_key: str, appointment_type_id: str | None) -> tuple[TimeSlot, ...]:
        return self._times.get((calendar_id, date_key, appointment_type_id), ())

    def has_times(self, calendar_id: str, date_key: str, appointment_type_id: str | None) -> bool:
        return (calendar_id, date_key, appointment_type_id) in self._times

    # ------------------------------------------------------------------ #
    #  Loading
    # ------------------------------------------------------------------ #
    async def load_dates(
        self,
        calendar_id: str,
        appointment_type_id: str | None,
        year_month: str,
        force: bool = False,
    ) -> frozenset[str] | None:
        """Fetch the available dates of one month.

        Returns the cached set, or ``None`` when the fetch failed or its
        response was discarded as stale.
        """
        key: DateKey = (calendar_id, appointment_type_id, year_month)

        async def fetch() -> frozenset[str]:
            raw = await self._api.get_available_dates(calendar_id, appointment_type_id, year_month)
            return frozenset(normalize_date_keys(raw))

        return await self._load(key, (calendar_id, appointment_type_id), fetch, "dates", force)

    async def load_times(
        self,
        calendar_id: str,
        date_key: str,
        appointment_type_id: str | None,
        force: bool = False,
    ) -> tuple[TimeSlot, ...] | None:
        """Fetch the ordered time slots of one date."""
        key: TimeKey = (calendar_id, date_key, appointment_type_id)

        async def fetch() -> tuple[TimeSlot, ...]:
            raw = await self._api.get_available_times(calendar_id, date_key, appointment_type_id)
            return tuple(normalize_time_slots(raw))

        return await self._load(key, (calendar_id, appointment_type_id), fetch, "times", force)

    async def _load(
        self,
        key: K,
        pair: tuple[str, str | None],
        fetch: Callable[[], Awaitable[V]],
        scope: str,
        force: bool,
    ) -> V | None:
        if self._closed:
            return None

        store: dict = self._months if scope == "dates" else self._times
        tasks: dict = self._date_tasks if scope == "dates" else self._time_tasks

        if not force:
            if key in store:
                return store[key]
            if (running := tasks.get(key)) is not None:
                return await asyncio.shield(running)

        token = next(self._counter)
        self._tokens[key] = token
        task = asyncio.ensure_future(self._run(key, pair, fetch, scope, token, self._generation))
        tasks[key] = task
        return await asyncio.shield(task)

    def _is_current(self, key: K, pair: tuple[str, str | None], token: int, generation: int) -> bool:
        if self._closed or generation != self._generation:
            return False
        if self._identity is not None and self._identity != pair:
            return False
        return self._tokens.get(key) == token

    async def _run(
        self,
        key: K,
        pair: tuple[str, str | None],
        fetch: Callable[[], Awaitable[V]],
        scope: str,
        token: int,
        generation: int,
    ) -> V | None:
        store: dict = self._months if scope == "dates" else self._times
        tasks: dict = self._date_tasks if scope == "dates" else self._time_tasks
        setattr(self, f"{scope}_error", None)
        try:
            result = await fetch()
        except ApiError as exc:
            if self._is_current(key, pair, token, generation):
                logger.warning("Loading %s for %s failed: %s", scope, key, exc.message)
                setattr(self, f"{scope}_error", exc.message or f"Failed to load available {scope}")
            return None
        finally:
            if generation == self._generation and self._tokens.get(key) == token:
                tasks.pop(key, None)

        if not self._is_current(key, pair, token, generation):
            logger.debug("Discarding stale %s response for %s", scope, key)
            return None
        store[key] = result
        return result
