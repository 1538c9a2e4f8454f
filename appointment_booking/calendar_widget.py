"""Month-grid model for picking an appointment date."""

from __future__ import annotations

import calendar
import logging
from collections.abc import Callable, Collection
from dataclasses import dataclass
from datetime import date

from dateutil.relativedelta import relativedelta

from appointment_booking.errors import DateNotSelectableError
from appointment_booking.normalizer import month_key, normalize_date_key, normalize_date_keys

logger = logging.getLogger(__name__)

WEEKDAY_LABELS = ("S", "M", "T", "W", "T", "F", "S")

MonthListener = Callable[[str], None]


@dataclass(frozen=True, slots=True)
class CalendarCell:
    date_key: str
    day: int
    available: bool
    selected: bool
    is_today: bool
    disabled: bool

    @property
    def selectable(self) -> bool:
        return self.available and not self.disabled

    @property
    def show_today_marker(self) -> bool:
        # "today but nothing free" only; selected and bookable days win.
        return self.is_today and not self.selected and not self.available


def _first_of_month(value: date) -> date:
    return value.replace(day=1)


def _month_str(value: date) -> str:
    return f"{value.year:04d}-{value.month:02d}"


class CalendarWidget:
    """Displayed month, selection and availability membership for one picker.

    Weekends follow the same membership test as weekdays: a day is available
    exactly when the availability feed lists it.
    """

    def __init__(
        self,
        availability: Callable[[str], Collection[str]] | Collection[str] = (),
        *,
        today: date | None = None,
        minimum_date: date | None = None,
        selected_date: str | None = None,
        loading: Callable[[], bool] | None = None,
    ) -> None:
        if callable(availability):
            self._availability = availability
        else:
            static = frozenset(normalize_date_keys(availability))
            self._availability = lambda _month: static
        self._today = today
        self._minimum_date = minimum_date
        self._loading = loading or (lambda: False)
        self._listeners: list[MonthListener] = []
        self.selected_date: str | None = normalize_date_key(selected_date)
        anchor = date.fromisoformat(self.selected_date) if self.selected_date else self.today
        self._month = _first_of_month(anchor)

    # ------------------------------------------------------------------ #
    #  State
    # ------------------------------------------------------------------ #
    @property
    def today(self) -> date:
        return self._today or date.today()

    @property
    def minimum_date(self) -> date:
        return self._minimum_date or self.today

    @property
    def displayed_month(self) -> str:
        return _month_str(self._month)

    @property
    def month_label(self) -> str:
        return self._month.strftime("%B %Y")

    @property
    def loading(self) -> bool:
        return self._loading()

    @property
    def can_go_previous(self) -> bool:
        return not self.loading and self._month > _first_of_month(self.today)

    @property
    def can_go_next(self) -> bool:
        return not self.loading

    def available_dates(self) -> frozenset[str]:
        return frozenset(self._availability(self.displayed_month))

    def is_available(self, date_key: str | None) -> bool:
        key = normalize_date_key(date_key)
        if key is None:
            return False
        return key in frozenset(self._availability(key[:7]))

    def is_disabled(self, day: date) -> bool:
        return day < self.minimum_date

    # ------------------------------------------------------------------ #
    #  Rendering
    # ------------------------------------------------------------------ #
    @property
    def leading_blanks(self) -> int:
        # Sunday-first grid; date.weekday() is Monday-first.
        return (self._month.weekday() + 1) % 7

    def grid(self) -> list[list[CalendarCell | None]]:
        """Weeks of the displayed month, ``None`` for blank cells."""
        available = self.available_dates()
        today = self.today
        weeks: list[list[CalendarCell | None]] = []
        for week in calendar.Calendar(firstweekday=6).monthdayscalendar(self._month.year, self._month.month):
            row: list[CalendarCell | None] = []
            for day_number in week:
                if day_number == 0:
                    row.append(None)
                    continue
                day = self._month.replace(day=day_number)
                key = day.isoformat()
                row.append(
                    CalendarCell(
                        date_key=key,
                        day=day_number,
                        available=key in available,
                        selected=key == self.selected_date,
                        is_today=day == today,
                        disabled=self.is_disabled(day),
                    )
                )
            weeks.append(row)
        return weeks

    # ------------------------------------------------------------------ #
    #  Navigation
    # ------------------------------------------------------------------ #
    def on_month_change(self, listener: MonthListener) -> None:
        self._listeners.append(listener)

    def _emit(self) -> None:
        month = self.displayed_month
        for listener in list(self._listeners):
            listener(month)

    def go_to_previous_month(self) -> str | None:
        """Show the previous month; ``None`` when navigation is disabled."""
        if not self.can_go_previous:
            return None
        self._month = self._month - relativedelta(months=1)
        self._emit()
        return self.displayed_month

    def go_to_next_month(self) -> str | None:
        if not self.can_go_next:
            return None
        self._month = self._month + relativedelta(months=1)
        self._emit()
        return self.displayed_month

    def show_month(self, value: str | date) -> str:
        """Jump to the month containing ``value`` without emitting an event."""
        month = month_key(value)
        if month is None:
            raise ValueError(f"Not a month: {value!r}")
        self._month = date.fromisoformat(f"{month}-01")
        return self.displayed_month

    # ------------------------------------------------------------------ #
    #  Selection
    # ------------------------------------------------------------------ #
    def select(self, value: str | date) -> str:
        """Select a day, returning its canonical key."""
        key = normalize_date_key(value)
        if key is None:
            raise DateNotSelectableError(f"'{value}' is not a valid date")
        day = date.fromisoformat(key)
        if self.is_disabled(day):
            raise DateNotSelectableError(f"{key} is in the past")
        if not self.is_available(key):
            raise DateNotSelectableError(f"{key} has no availability")
        self.selected_date = key
        self._month = _first_of_month(day)
        logger.debug("Calendar selected %s", key)
        return key

    def clear_selection(self) -> None:
        self.selected_date = None
