import asyncio
import json

import httpx
import pytest

from appointment_booking.api_client import HttpApiClient
from appointment_booking.errors import (
    BookingValidationError,
    SelectionError,
    SelectionLockedError,
    SubmissionError,
    SubmissionInProgressError,
)
from appointment_booking.mock_client import DEFAULT_PROVIDERS
from appointment_booking.models import RescheduleTarget
from appointment_booking.state_machine import BookingPhase, BookingStateMachine
from tests.conftest import TODAY, settle


async def _ready(machine, provider=7, type_id=5, day="2024-03-10", time="14:30"):
    await machine.load_providers()
    await machine.select_provider(provider)
    await machine.select_appointment_type(type_id)
    await machine.select_date(day)
    await machine.select_time(time)


@pytest.mark.asyncio
async def test_happy_path_books_and_refreshes_appointments(machine, api):
    await machine.load_providers()
    assert machine.phase is BookingPhase.CHOOSING_PROVIDER
    assert [p.name for p in machine.options("provider")] == ["Dr. Garcia", "Dr. Perez", "Dr. Lopez"]

    assert await machine.select_provider(7) is BookingPhase.CHOOSING_TYPE
    assert await machine.select_appointment_type(5) is BookingPhase.CHOOSING_DATE
    assert machine.available_dates == ["2024-03-10", "2024-03-15"]

    assert await machine.select_date("2024-03-10") is BookingPhase.CHOOSING_TIME
    assert [s.time for s in machine.available_times] == ["09:00", "14:30"]

    assert await machine.select_time("14:30") is BookingPhase.READY_TO_SUBMIT

    appointment = await machine.submit()

    assert appointment.id == "101"
    assert machine.completed
    assert machine.phase is BookingPhase.READY_TO_SUBMIT
    assert [a.id for a in machine.appointments] == ["101"]
    assert machine.appointments[0].doctor == "Dr. Garcia"

    (_, (request,)) = next(c for c in api.calls if c[0] == "create_appointment")
    assert request.to_payload() == {
        "calendar_id": "cal_1",
        "appointment_type_id": 5,
        "datetime": "2024-03-10T14:30:00",
        "first_name": "Jane",
        "last_name": "Doe",
        "email": "jane.doe@example.com",
        "timezone": "Europe/Lisbon",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "change, expected_phase, cleared, kept",
    [
        (("select_provider", 8), BookingPhase.CHOOSING_TYPE, ["appointment_type", "date", "time_slot"], ["provider"]),
        (("select_appointment_type", 3), BookingPhase.CHOOSING_DATE, ["date", "time_slot"], ["provider", "appointment_type"]),
        (("select_date", "2024-03-15"), BookingPhase.CHOOSING_TIME, ["time_slot"], ["provider", "appointment_type", "date"]),
    ],
)
async def test_changing_a_selection_clears_everything_after_it(machine, change, expected_phase, cleared, kept):
    await _ready(machine)
    method, value = change

    phase = await getattr(machine, method)(value)

    assert phase is expected_phase
    for name in cleared:
        assert getattr(machine.selection, name) is None, name
    for name in kept:
        assert getattr(machine.selection, name) is not None, name


@pytest.mark.asyncio
async def test_provider_change_clears_calendar_and_cache(machine):
    await _ready(machine)

    await machine.select_provider(8)

    assert machine.calendar.selected_date is None
    assert not machine.cache.has_month("cal_1", "5", "2024-03")
    assert machine.available_dates == []
    assert machine.available_times == []


@pytest.mark.asyncio
async def test_selections_must_follow_the_order(machine):
    await machine.load_providers()

    with pytest.raises(SelectionError):
        await machine.select_appointment_type(5)
    with pytest.raises(SelectionError):
        await machine.select_date("2024-03-10")
    with pytest.raises(SelectionError):
        await machine.select_time("09:00")

    await machine.select_provider(7)
    with pytest.raises(SelectionError):
        await machine.select_date("2024-03-10")

    assert machine.phase is BookingPhase.CHOOSING_TYPE


@pytest.mark.asyncio
async def test_unknown_or_unbookable_provider_is_rejected(machine):
    await machine.load_providers()

    with pytest.raises(SelectionError, match="Unknown"):
        await machine.select_provider(999)
    with pytest.raises(SelectionError, match="online bookings"):
        await machine.select_provider(12)

    assert machine.selection.provider is None
    assert machine.phase is BookingPhase.CHOOSING_PROVIDER


@pytest.mark.asyncio
async def test_unknown_appointment_type_is_rejected(machine):
    await machine.load_providers()
    await machine.select_provider(7)

    with pytest.raises(SelectionError):
        await machine.select_appointment_type(9)


@pytest.mark.asyncio
async def test_late_dates_for_previous_provider_are_ignored(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)
    gate = api.hold("get_available_dates")

    pending = asyncio.create_task(machine.select_appointment_type(5))
    await settle()
    assert machine.dates_loading

    await machine.select_provider(8)
    gate.set()
    await pending

    assert machine.selection.provider.id == "8"
    assert machine.selection.appointment_type is None
    assert not machine.cache.has_month("cal_1", "5", "2024-03")

    api.gates.clear()
    await machine.select_appointment_type(9)
    assert machine.available_dates == ["2024-03-20", "2024-03-21"]


@pytest.mark.asyncio
async def test_late_times_for_previous_date_are_not_shown(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)
    await machine.select_appointment_type(5)
    gate = api.hold("get_available_times")

    first = asyncio.create_task(machine.select_date("2024-03-10"))
    await settle()
    second = asyncio.create_task(machine.select_date("2024-03-15"))
    await settle()
    gate.set()
    await asyncio.gather(first, second)

    assert machine.selection.date == "2024-03-15"
    assert [s.time for s in machine.available_times] == ["10:00", "11:00"]


@pytest.mark.asyncio
async def test_each_month_is_fetched_once(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)
    await machine.select_appointment_type(5)
    assert api.call_count("get_available_dates") == 1

    assert await machine.go_to_next_month() == "2024-04"
    assert machine.available_dates == ["2024-04-02", "2024-04-03"]
    assert api.call_count("get_available_dates") == 2

    await machine.go_to_previous_month()
    await machine.go_to_next_month()
    await machine.go_to_previous_month()

    assert machine.calendar.displayed_month == "2024-03"
    assert api.call_count("get_available_dates") == 2


@pytest.mark.asyncio
async def test_cannot_navigate_before_current_month(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)
    await machine.select_appointment_type(5)

    assert await machine.go_to_previous_month() is None
    assert api.call_count("get_available_dates") == 1


@pytest.mark.asyncio
async def test_retry_after_failed_dates_and_times(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)
    api.fail("get_available_dates")

    await machine.select_appointment_type(5)
    assert machine.cache.dates_error == "Service unavailable"
    assert machine.available_dates == []

    await machine.retry_dates()
    assert machine.cache.dates_error is None
    assert machine.available_dates == ["2024-03-10", "2024-03-15"]

    api.fail("get_available_times")
    await machine.select_date("2024-03-10")
    assert machine.cache.times_error == "Service unavailable"
    assert machine.cache.dates_error is None
    assert machine.available_times == []

    await machine.retry_times()
    assert machine.cache.times_error is None
    assert len(machine.available_times) == 2


@pytest.mark.asyncio
async def test_unavailable_slot_cannot_be_selected(machine):
    await machine.load_providers()
    await machine.select_provider(7)
    await machine.select_appointment_type(5)
    await machine.select_date("2024-03-15")

    with pytest.raises(SelectionError, match="no longer available"):
        await machine.select_time("11:00")
    with pytest.raises(SelectionError):
        await machine.select_time("12:00")

    assert await machine.select_time("10:00") is BookingPhase.READY_TO_SUBMIT


@pytest.mark.asyncio
async def test_selection_is_locked_while_submitting(machine, api):
    await _ready(machine)
    gate = api.hold("create_appointment")

    pending = asyncio.create_task(machine.submit())
    await settle()

    assert machine.submitting
    assert machine.phase is BookingPhase.SUBMITTING
    with pytest.raises(SelectionLockedError):
        await machine.select_provider(8)
    with pytest.raises(SelectionLockedError):
        machine.set_notes("late")
    with pytest.raises(SubmissionInProgressError):
        await machine.submit()

    gate.set()
    appointment = await pending

    assert appointment.id == "101"
    assert not machine.submitting
    assert api.call_count("create_appointment") == 1


@pytest.mark.asyncio
async def test_rejected_submission_keeps_the_selection(machine, api):
    await _ready(machine)
    api.fail("create_appointment", "Slot already taken")

    with pytest.raises(SubmissionError, match="Slot already taken"):
        await machine.submit()

    assert machine.submit_error == "Slot already taken"
    assert machine.selection.time_slot.time == "14:30"
    assert machine.phase is BookingPhase.READY_TO_SUBMIT
    assert not machine.completed


@pytest.mark.asyncio
async def test_incomplete_selection_is_not_submitted(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)

    with pytest.raises(BookingValidationError) as excinfo:
        await machine.submit()

    assert excinfo.value.code == "appointment_type_required"
    assert api.call_count("get_current_user") == 0
    assert api.call_count("create_appointment") == 0


@pytest.mark.asyncio
async def test_reschedule_seeds_provider_and_type(api, settings):
    target = RescheduleTarget(
        appointment_id="99", provider_id="7", appointment_type_id="3", date="2024-04-01", notes="Bring results"
    )
    machine = BookingStateMachine(api, reschedule=target, settings=settings, today=TODAY)

    await machine.load_providers()

    assert machine.mode == "reschedule"
    assert machine.phase is BookingPhase.CHOOSING_DATE
    assert machine.selection.provider.id == "7"
    assert machine.selection.appointment_type.id == "3"
    assert machine.selection.date is None
    assert machine.selection.notes == "Bring results"
    assert machine.calendar.displayed_month == "2024-04"
    assert ("get_available_dates", ("cal_1", "3", "2024-04")) in api.calls

    await machine.go_to_previous_month()
    await machine.select_date("2024-03-11")
    await machine.select_time("16:00")

    with pytest.raises(BookingValidationError) as excinfo:
        await machine.submit()
    assert excinfo.value.code == "phone_required"

    machine.set_phone("555 0100")
    appointment = await machine.submit()

    assert appointment.id == "99"
    assert appointment.appointment_date == "2024-03-11T16:00:00"
    assert api.call_count("create_appointment") == 0
    (_, (appointment_id, request)) = next(c for c in api.calls if c[0] == "reschedule_appointment")
    assert appointment_id == "99"
    assert request.to_payload() == {
        "appointment_date": "2024-03-11T16:00:00",
        "appointment_type_id": 3,
        "notes": "Bring results",
    }


@pytest.mark.asyncio
async def test_reschedule_with_unknown_type_waits_for_type(api, settings):
    target = RescheduleTarget(appointment_id="99", provider_id="7", appointment_type_id="42")
    machine = BookingStateMachine(api, reschedule=target, settings=settings, today=TODAY)

    await machine.load_providers()

    assert machine.phase is BookingPhase.CHOOSING_TYPE
    assert machine.selection.provider.id == "7"
    assert api.call_count("get_available_dates") == 0


@pytest.mark.asyncio
async def test_closed_session_ignores_late_responses(machine, api):
    await machine.load_providers()
    await machine.select_provider(7)
    gate = api.hold("get_available_dates")
    pending = asyncio.create_task(machine.select_appointment_type(5))
    await settle()

    machine.close()
    gate.set()
    await pending

    assert machine.closed
    assert machine.available_dates == []
    with pytest.raises(SelectionError):
        await machine.select_provider(8)


@pytest.mark.asyncio
async def test_snapshot_is_json_ready(machine):
    await _ready(machine)

    snapshot = json.loads(json.dumps(machine.snapshot()))

    assert snapshot["phase"] == "ready_to_submit"
    assert snapshot["mode"] == "book"
    assert snapshot["selection"]["datetime"] == "2024-03-10T14:30:00"
    assert snapshot["selection"]["time"] == "14:30"
    assert snapshot["calendar"]["month"] == "2024-03"
    assert snapshot["calendar"]["weeks"][0][:5] == [None] * 5
    first = snapshot["calendar"]["weeks"][0][5]
    assert first["date"] == "2024-03-01"
    assert first["today"] is True
    assert [t["time"] for t in snapshot["times"]] == ["09:00", "14:30"]
    assert [p["bookable"] for p in snapshot["providers"]] == [True, True, False]


@pytest.mark.asyncio
async def test_unreadable_dates_response_is_recorded_and_retryable(settings):
    served = []

    def handler(request):
        if request.url.path.endswith("/appointments/doctors"):
            return httpx.Response(200, json=DEFAULT_PROVIDERS)
        served.append(request.url.path)
        if len(served) == 1:
            return httpx.Response(200, text="<html>maintenance</html>")
        return httpx.Response(200, json={"dates": ["2024-03-10"]})

    api = HttpApiClient("http://api.test", token="tok", transport=httpx.MockTransport(handler))
    machine = BookingStateMachine(api, settings=settings, today=TODAY)
    await machine.load_providers()
    await machine.select_provider(7)

    await machine.select_appointment_type(5)

    assert machine.cache.dates_error == "The server sent an unreadable response"
    assert machine.available_dates == []
    assert not machine.dates_loading

    await machine.retry_dates()
    await api.aclose()

    assert machine.cache.dates_error is None
    assert machine.available_dates == ["2024-03-10"]


@pytest.mark.asyncio
async def test_reschedule_from_a_past_month_opens_on_current_month(api, settings):
    target = RescheduleTarget(appointment_id="99", provider_id="7", appointment_type_id="3", date="2023-12-05")
    machine = BookingStateMachine(api, reschedule=target, settings=settings, today=TODAY)

    await machine.load_providers()

    assert machine.calendar.displayed_month == "2024-03"
    assert ("get_available_dates", ("cal_1", "3", "2024-03")) in api.calls
    assert api.call_count("get_available_dates") == 1
    assert machine.available_dates == ["2024-03-11"]


@pytest.mark.asyncio
async def test_free_form_fields_are_stored_as_text(machine):
    await _ready(machine, type_id=3, day="2024-03-11", time="16:00")

    machine.set_phone(5550100)
    machine.set_notes(None)

    assert machine.selection.phone == "5550100"
    assert machine.selection.notes == ""
    appointment = await machine.submit()
    assert appointment.phone == "5550100"
