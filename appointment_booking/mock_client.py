from __future__ import annotations

import copy
from collections import Counter
from typing import Any

from appointment_booking.errors import ApiError
from appointment_booking.models import (
    Appointment,
    BookingRequest,
    CurrentUser,
    DoctorPage,
    Provider,
    RescheduleRequest,
)

DEFAULT_PROVIDERS: list[dict[str, Any]] = [
    {
        "id": 7,
        "name": "Dr. Garcia",
        "specialty": "Cardiology",
        "acuityCalendarId": "cal_1",
        "timezone": "Europe/Lisbon",
        "address": "Rua Central 1, Lisboa",
        "appointmentTypes": [
            {"id": 5, "name": "First consultation", "category": "in-person", "duration": 30, "price": 60},
            {"id": 3, "name": "Follow-up call", "category": "phone", "duration": 15, "price": 25},
        ],
    },
    {
        "id": 8,
        "name": "Dr. Perez",
        "specialty": "Dermatology",
        "acuityCalendarId": "cal_2",
        "timezone": "Europe/Madrid",
        "appointmentTypes": [
            {"id": 9, "name": "Video consultation", "type": "video", "duration": 20, "price": 40},
        ],
    },
    {
        "id": 12,
        "name": "Dr. Lopez",
        "specialty": "Pediatrics",
        "appointmentTypes": [],
    },
]

# Both payload shapes the server is known to send.
DEFAULT_DATES: dict[tuple[str, str, str], list[Any]] = {
    ("cal_1", "5", "2024-03"): ["2024-03-10", "2024-03-15"],
    ("cal_1", "5", "2024-04"): ["2024-04-02", "2024-04-03"],
    ("cal_1", "3", "2024-03"): ["2024-03-11"],
    ("cal_2", "9", "2024-03"): [{"date": "2024-03-20"}, {"date": "2024-03-21T00:00:00+0100"}],
}

DEFAULT_TIMES: dict[tuple[str, str, str], list[Any]] = {
    ("cal_1", "2024-03-10", "5"): ["09:00", "14:30"],
    ("cal_1", "2024-03-15", "5"): [{"time": "10:00"}, {"time": "11:00", "available": False}],
    ("cal_1", "2024-04-02", "5"): ["2024-04-02T09:30:00+0100"],
    ("cal_1", "2024-03-11", "3"): [{"startTime": "16:00"}],
    ("cal_2", "2024-03-20", "9"): [{"datetime": "2024-03-20T08:15:00+0100"}],
}

DEFAULT_USER = {"email": "jane.doe@example.com", "full_name": "Jane Doe"}


class MockApiClient:
    """In-memory stand-in for the appointments API."""

    def __init__(
        self,
        providers: list[dict[str, Any]] | None = None,
        dates: dict[tuple[str, str, str], list[Any]] | None = None,
        times: dict[tuple[str, str, str], list[Any]] | None = None,
        user: dict[str, Any] | None = None,
    ) -> None:
        self.providers = [
            Provider.model_validate(p) for p in (providers if providers is not None else DEFAULT_PROVIDERS)
        ]
        self.dates = copy.deepcopy(dates if dates is not None else DEFAULT_DATES)
        self.times = copy.deepcopy(times if times is not None else DEFAULT_TIMES)
        self.user = dict(user if user is not None else DEFAULT_USER)
        self.appointments: dict[str, Appointment] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self._failures: Counter[str] = Counter()
        self._failure_messages: dict[str, str] = {}
        self._next_id = 100

    # ------------------------------------------------------------------ #
    #  Test helpers
    # ------------------------------------------------------------------ #
    def fail(self, method: str, message: str = "Service unavailable", times: int = 1) -> None:
        """Make the next ``times`` calls to ``method`` raise :class:`ApiError`."""
        self._failures[method] += times
        self._failure_messages[method] = message

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        if self._failures[method] > 0:
            self._failures[method] -= 1
            raise ApiError(self._failure_messages[method], status_code=503)

    # ------------------------------------------------------------------ #
    #  ApiClient
    # ------------------------------------------------------------------ #
    async def list_doctors(
        self,
        search: str | None = None,
        location: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> DoctorPage:
        self._record("list_doctors", search, location, offset, limit)
        found = self.providers
        if search:
            needle = search.lower()
            found = [p for p in found if needle in p.name.lower() or needle in (p.specialty or "").lower()]
        if location:
            found = [p for p in found if location.lower() in (p.address or "").lower()]
        page = found[offset : offset + limit]
        return DoctorPage(doctors=page, has_more=len(page) == limit)

    async def get_available_dates(
        self, calendar_id: str, appointment_type_id: str | None, year_month: str
    ) -> list[Any]:
        self._record("get_available_dates", calendar_id, appointment_type_id, year_month)
        return list(self.dates.get((calendar_id, str(appointment_type_id), year_month), []))

    async def get_available_times(
        self, calendar_id: str, date_key: str, appointment_type_id: str | None
    ) -> list[Any]:
        self._record("get_available_times", calendar_id, date_key, appointment_type_id)
        return list(self.times.get((calendar_id, date_key, str(appointment_type_id)), []))

    async def create_appointment(self, request: BookingRequest) -> Appointment:
        self._record("create_appointment", request)
        provider = next((p for p in self.providers if p.calendar_id == request.calendar_id), None)
        appointment_type = provider.find_type(request.appointment_type_id) if provider else None
        self._next_id += 1
        appointment = Appointment(
            id=str(self._next_id),
            professional_id=provider.id if provider else None,
            appointment_date=request.datetime_iso,
            status="scheduled",
            consultation_type=appointment_type.category.replace("-", "_") if appointment_type else None,
            appointment_type_id=str(request.appointment_type_id) if request.appointment_type_id else None,
            appointment_type_name=appointment_type.name if appointment_type else None,
            appointment_type_price=appointment_type.price if appointment_type else None,
            doctor_name=provider.name if provider else None,
            doctor_specialty=provider.specialty if provider else None,
            notes=request.note,
            timezone=request.timezone,
            phone=request.phone,
        )
        self.appointments[appointment.id] = appointment
        return appointment

    async def reschedule_appointment(
        self, appointment_id: str, request: RescheduleRequest
    ) -> Appointment:
        self._record("reschedule_appointment", appointment_id, request)
        current = self.appointments.get(appointment_id) or Appointment(id=appointment_id, status="scheduled")
        update: dict[str, Any] = {"appointment_date": request.appointment_date}
        if request.appointment_type_id is not None:
            update["appointment_type_id"] = str(request.appointment_type_id)
        if request.notes:
            update["notes"] = request.notes
        appointment = current.model_copy(update=update)
        self.appointments[appointment_id] = appointment
        return appointment

    async def get_current_user(self) -> CurrentUser:
        self._record("get_current_user")
        return CurrentUser.model_validate(self.user)

    async def list_appointments(self) -> list[Appointment]:
        self._record("list_appointments")
        return list(self.appointments.values())
