"""Booking session: ordered dependent selections over cached availability."""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum, auto
from typing import Any

from appointment_booking.api_client import ApiClient
from appointment_booking.appointments import AppointmentSummary, summarize
from appointment_booking.availability import AvailabilityCache
from appointment_booking.calendar_widget import WEEKDAY_LABELS, CalendarWidget
from appointment_booking.committer import BookingCommitter
from appointment_booking.config import Settings, get_settings
from appointment_booking.directory import ProviderDirectory
from appointment_booking.errors import (
    ApiError,
    BookingError,
    SelectionError,
    SelectionLockedError,
    SubmissionInProgressError,
)
from appointment_booking.models import (
    Appointment,
    AppointmentType,
    Provider,
    RescheduleTarget,
    Selection,
    TimeSlot,
)
from appointment_booking.normalizer import format_slot_time, month_key, slot_to_iso
from appointment_booking.slots import Slot, build_default_slots, downstream_of

logger = logging.getLogger(__name__)


class BookingPhase(Enum):
    CHOOSING_PROVIDER = auto()
    CHOOSING_TYPE = auto()
    CHOOSING_DATE = auto()
    CHOOSING_TIME = auto()
    READY_TO_SUBMIT = auto()
    SUBMITTING = auto()


_P = BookingPhase

# slot -> (phases it may be set from, phase it leads to)
TRANSITIONS: dict[str, tuple[frozenset[BookingPhase], BookingPhase]] = {
    "provider": (
        frozenset({_P.CHOOSING_PROVIDER, _P.CHOOSING_TYPE, _P.CHOOSING_DATE, _P.CHOOSING_TIME, _P.READY_TO_SUBMIT}),
        _P.CHOOSING_TYPE,
    ),
    "appointment_type": (
        frozenset({_P.CHOOSING_TYPE, _P.CHOOSING_DATE, _P.CHOOSING_TIME, _P.READY_TO_SUBMIT}),
        _P.CHOOSING_DATE,
    ),
    "date": (
        frozenset({_P.CHOOSING_DATE, _P.CHOOSING_TIME, _P.READY_TO_SUBMIT}),
        _P.CHOOSING_TIME,
    ),
    "time_slot": (
        frozenset({_P.CHOOSING_TIME, _P.READY_TO_SUBMIT}),
        _P.READY_TO_SUBMIT,
    ),
}


class BookingStateMachine:
    """One booking or reschedule session.

    Owns the selection, the availability cache and the calendar for the
    lifetime of the session. Upstream changes always clear downstream
    selections; nothing is shared with other sessions.
    """

    def __init__(
        self,
        api: ApiClient,
        reschedule: RescheduleTarget | None = None,
        settings: Settings | None = None,
        today: date | None = None,
    ) -> None:
        settings = settings or get_settings()
        self.api = api
        self.reschedule = reschedule
        self.directory = ProviderDirectory(api, page_size=settings.doctors_page_size)
        self.cache = AvailabilityCache(api)
        self.calendar = CalendarWidget(
            self._calendar_dates, today=today, loading=lambda: self.cache.dates_loading
        )
        self.committer = BookingCommitter(api, fallback_time=settings.fallback_slot_time)
        self.slot_definitions: list[Slot] = build_default_slots(self.directory, self.cache, self.calendar)

        self.selection = Selection(notes=reschedule.notes if reschedule else "")
        self.phase = BookingPhase.CHOOSING_PROVIDER
        self.submitting = False
        self.submit_error: str | None = None
        self.completed = False
        self.last_appointment: Appointment | None = None
        self.appointments: list[AppointmentSummary] = []

        self._last_fetched_month: str | None = None
        self._seeded = False
        self._closed = False

        if reschedule and reschedule.date:
            target_month = month_key(reschedule.date)
            if target_month is None:
                logger.debug("Ignoring unparseable reschedule date %r", reschedule.date)
            else:
                # never open on a month that is entirely in the past
                self.calendar.show_month(max(target_month, month_key(self.calendar.today)))

    # ------------------------------------------------------------------ #
    #  Read-only views
    # ------------------------------------------------------------------ #
    @property
    def mode(self) -> str:
        return "reschedule" if self.reschedule else "book"

    @property
    def closed(self) -> bool:
        return self._closed

    def _bound_pair(self) -> tuple[str, str] | None:
        provider, appointment_type = self.selection.provider, self.selection.appointment_type
        if provider is None or appointment_type is None or not provider.calendar_id:
            return None
        return provider.calendar_id, appointment_type.id

    def _calendar_dates(self, year_month: str) -> frozenset[str]:
        pair = self._bound_pair()
        if pair is None:
            return frozenset()
        return self.cache.dates_for(pair[0], pair[1], year_month)

    def options(self, slot_name: str) -> list[Any]:
        slot = next(s for s in self.slot_definitions if s.name == slot_name)
        return slot.options(self.selection)

    @property
    def available_dates(self) -> list[str]:
        return self.options("date")

    @property
    def available_times(self) -> list[TimeSlot]:
        return self.options("time_slot")

    @property
    def dates_loading(self) -> bool:
        return self.cache.dates_loading

    @property
    def times_loading(self) -> bool:
        return self.cache.times_loading

    # ------------------------------------------------------------------ #
    #  Transition helpers
    # ------------------------------------------------------------------ #
    def _ensure_editable(self) -> None:
        if self._closed:
            raise SelectionError("This booking session has been closed")
        if self.submitting:
            raise SelectionLockedError("The appointment is being saved")

    def _ensure_transition(self, slot_name: str) -> None:
        self._ensure_editable()
        allowed, _ = TRANSITIONS[slot_name]
        if self.phase not in allowed:
            raise SelectionError(f"Cannot choose {slot_name.replace('_', ' ')} yet")

    def _apply(self, slot_name: str, value: Any) -> None:
        """Set a slot, clear every slot that depends on it and advance the phase."""
        setattr(self.selection, slot_name, value)
        for dependent in downstream_of(self.slot_definitions, slot_name):
            setattr(self.selection, dependent, None)
        self.phase = TRANSITIONS[slot_name][1]
        self.completed = False

    # ------------------------------------------------------------------ #
    #  Providers
    # ------------------------------------------------------------------ #
    async def load_providers(self, search: str | None = None, location: str | None = None) -> list[Provider]:
        providers = await self.directory.load(search=search, location=location)
        await self._seed_reschedule()
        return providers

    async def load_more_providers(self) -> list[Provider]:
        providers = await self.directory.load_more()
        await self._seed_reschedule()
        return providers

    async def _seed_reschedule(self) -> None:
        """Pre-select provider and type of the appointment being rescheduled."""
        if self._seeded or self._closed or self.reschedule is None or self.selection.provider:
            return
        provider = self.directory.find(self.reschedule.provider_id)
        if provider is None or not provider.calendar_id:
            return
        self._seeded = True
        self._apply("provider", provider)
        self.cache.reset()
        appointment_type = provider.find_type(self.reschedule.appointment_type_id)
        if appointment_type is None:
            logger.info("Reschedule type %s not offered by provider %s", self.reschedule.appointment_type_id, provider.id)
            return
        await self._choose_type(appointment_type)

    async def select_provider(self, provider_id: str | int) -> BookingPhase:
        self._ensure_transition("provider")
        provider = self.directory.find(provider_id)
        if provider is None:
            raise SelectionError(f"Unknown doctor '{provider_id}'")
        if not provider.calendar_id:
            raise SelectionError(f"{provider.name} does not take online bookings")
        self._apply("provider", provider)
        self.calendar.clear_selection()
        self.cache.reset()
        self._last_fetched_month = None
        return self.phase

    # ------------------------------------------------------------------ #
    #  Appointment type and dates
    # ------------------------------------------------------------------ #
    async def select_appointment_type(self, type_id: str | int) -> BookingPhase:
        self._ensure_transition("appointment_type")
        appointment_type = self.selection.provider.find_type(type_id)
        if appointment_type is None:
            raise SelectionError(f"Unknown appointment type '{type_id}'")
        await self._choose_type(appointment_type)
        return self.phase

    async def _choose_type(self, appointment_type: AppointmentType) -> None:
        self._apply("appointment_type", appointment_type)
        self.calendar.clear_selection()
        self.cache.reset()
        self.cache.bind(self.selection.provider.calendar_id, appointment_type.id)
        self._last_fetched_month = None
        await self._load_month(self.calendar.displayed_month)

    async def _load_month(self, year_month: str, force: bool = False) -> None:
        pair = self._bound_pair()
        if pair is None:
            return
        self._last_fetched_month = year_month
        await self.cache.load_dates(pair[0], pair[1], year_month, force=force)

    async def on_month_change(self, year_month: str) -> None:
        """Fetch dates for a newly displayed month, once per distinct month."""
        if self._bound_pair() is None or year_month == self._last_fetched_month:
            return
        await self._load_month(year_month)

    async def go_to_previous_month(self) -> str | None:
        self._ensure_editable()
        month = self.calendar.go_to_previous_month()
        if month:
            await self.on_month_change(month)
        return month

    async def go_to_next_month(self) -> str | None:
        self._ensure_editable()
        month = self.calendar.go_to_next_month()
        if month:
            await self.on_month_change(month)
        return month

    async def retry_dates(self) -> None:
        self._ensure_editable()
        await self._load_month(self.calendar.displayed_month, force=True)

    async def select_date(self, value: str | date) -> BookingPhase:
        self._ensure_transition("date")
        date_key = self.calendar.select(value)
        self._apply("date", date_key)
        calendar_id, type_id = self._bound_pair()
        await self.cache.load_times(calendar_id, date_key, type_id)
        return self.phase

    # ------------------------------------------------------------------ #
    #  Time slot
    # ------------------------------------------------------------------ #
    async def retry_times(self) -> None:
        self._ensure_editable()
        pair = self._bound_pair()
        if pair is None or not self.selection.date:
            return
        await self.cache.load_times(pair[0], self.selection.date, pair[1], force=True)

    def _match_slot(self, value: TimeSlot | str) -> TimeSlot | None:
        if not value:
            return None
        for slot in self.available_times:
            if isinstance(value, TimeSlot):
                if slot == value:
                    return slot
            elif value in (slot.time, slot.iso_time, slot.raw_time, format_slot_time(slot)):
                return slot
        return None

    async def select_time(self, value: TimeSlot | str) -> BookingPhase:
        self._ensure_transition("time_slot")
        if self._bound_pair() is None or not self.selection.date:
            raise SelectionError("Choose a doctor, appointment type and date first")
        slot = self._match_slot(value)
        if slot is None:
            raise SelectionError(f"{value} is not an available time on {self.selection.date}")
        if not slot.available:
            raise SelectionError(f"{format_slot_time(slot)} is no longer available")
        self._apply("time_slot", slot)
        return self.phase

    # ------------------------------------------------------------------ #
    #  Free-form fields
    # ------------------------------------------------------------------ #
    def set_notes(self, notes: Any) -> None:
        self._ensure_editable()
        self.selection.notes = "" if notes is None else str(notes)

    def set_phone(self, phone: Any) -> None:
        self._ensure_editable()
        self.selection.phone = "" if phone is None else str(phone)

    # ------------------------------------------------------------------ #
    #  Submission
    # ------------------------------------------------------------------ #
    async def submit(self) -> Appointment:
        """Book or reschedule; the selection is kept intact on failure."""
        if self._closed:
            raise SelectionError("This booking session has been closed")
        if self.submitting:
            raise SubmissionInProgressError("The appointment is already being saved")

        previous_phase = self.phase
        self.submitting = True
        self.phase = BookingPhase.SUBMITTING
        self.submit_error = None
        try:
            appointment = await self.committer.commit(self.selection, self.reschedule)
        except BookingError as exc:
            self.submit_error = exc.message
            raise
        finally:
            self.submitting = False
            self.phase = previous_phase

        self.last_appointment = appointment
        self.completed = True
        await self._refresh_appointments()
        return appointment

    async def _refresh_appointments(self) -> None:
        if self._closed:
            return
        try:
            appointments = await self.api.list_appointments()
        except ApiError as exc:
            logger.warning("Refreshing appointments failed: %s", exc.message)
            return
        self.appointments = [summarize(a) for a in appointments]

    def close(self) -> None:
        """End the session; late responses are ignored from here on."""
        self._closed = True
        self.cache.close()

    # ------------------------------------------------------------------ #
    #  Serialisation
    # ------------------------------------------------------------------ #
    def snapshot(self) -> dict[str, Any]:
        s = self.selection
        ready = self.phase is BookingPhase.READY_TO_SUBMIT
        return {
            "mode": self.mode,
            "phase": self.phase.name.lower(),
            "completed": self.completed,
            "selection": {
                "provider_id": s.provider.id if s.provider else None,
                "provider_name": s.provider.name if s.provider else None,
                "appointment_type_id": s.appointment_type.id if s.appointment_type else None,
                "appointment_type_name": s.appointment_type.name if s.appointment_type else None,
                "category": s.appointment_type.category if s.appointment_type else None,
                "date": s.date,
                "time": format_slot_time(s.time_slot) if s.time_slot else None,
                "datetime": slot_to_iso(s.time_slot, s.date, self.committer.fallback_time) if ready else None,
                "notes": s.notes,
                "phone": s.phone,
                "requires_phone": s.requires_phone,
            },
            "providers": [
                {"id": p.id, "name": p.name, "specialty": p.specialty, "bookable": bool(p.calendar_id)}
                for p in self.options("provider")
            ],
            "has_more_providers": self.directory.has_more,
            "appointment_types": [t.model_dump() for t in self.options("appointment_type")],
            "calendar": {
                "month": self.calendar.displayed_month,
                "label": self.calendar.month_label,
                "can_go_previous": self.calendar.can_go_previous,
                "can_go_next": self.calendar.can_go_next,
                "weekdays": list(WEEKDAY_LABELS),
                "weeks": [
                    [
                        None
                        if cell is None
                        else {
                            "date": cell.date_key,
                            "day": cell.day,
                            "available": cell.available,
                            "selected": cell.selected,
                            "today": cell.show_today_marker,
                            "selectable": cell.selectable,
                        }
                        for cell in week
                    ]
                    for week in self.calendar.grid()
                ],
            },
            "times": [
                {"time": format_slot_time(t), "iso_time": t.iso_time, "available": t.available}
                for t in self.available_times
            ],
            "dates_loading": self.cache.dates_loading,
            "times_loading": self.cache.times_loading,
            "dates_error": self.cache.dates_error,
            "times_error": self.cache.times_error,
            "providers_error": self.directory.error,
            "submitting": self.submitting,
            "submit_error": self.submit_error,
        }
