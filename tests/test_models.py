import pytest

from appointment_booking.appointments import summarize
from appointment_booking.models import (
    Appointment,
    AppointmentType,
    CurrentUser,
    Provider,
    RescheduleTarget,
    normalize_category,
)


def test_provider_from_wire_payload():
    provider = Provider.model_validate(
        {
            "id": 7,
            "name": "Dr. Garcia",
            "acuityCalendarId": "cal_1",
            "appointmentTypes": [{"id": 5, "name": "First consultation", "type": "presencial", "price": 60}],
        }
    )

    assert provider.id == "7"
    assert provider.calendar_id == "cal_1"
    assert provider.find_type(5).category == "in-person"
    assert provider.find_type("5").price == 60
    assert provider.find_type(None) is None


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("video", "virtual"),
        ("Telephone", "phone"),
        ("in_person", "in-person"),
        ("group", "in-person"),
        (None, "in-person"),
    ],
)
def test_category_spellings(raw, expected):
    assert normalize_category(raw) == expected


def test_explicit_category_wins_over_type():
    assert AppointmentType(id="1", category="phone", type="video").category == "phone"


@pytest.mark.parametrize(
    "full_name, first, last",
    [
        ("Jane Doe", "Jane", "Doe"),
        ("María de la Cruz", "María", "de la Cruz"),
        ("Cher", "Cher", ""),
        (None, "", ""),
    ],
)
def test_user_name_split(full_name, first, last):
    user = CurrentUser(email="x@example.com", full_name=full_name)

    assert (user.first_name, user.last_name) == (first, last)


def test_reschedule_target_accepts_navigation_params():
    target = RescheduleTarget.model_validate(
        {"appointmentId": 99, "providerId": 7, "appointmentTypeId": 3, "date": "2024-04-01"}
    )

    assert (target.appointment_id, target.provider_id, target.appointment_type_id) == ("99", "7", "3")
    assert target.notes == ""


@pytest.mark.parametrize(
    "fields, expected",
    [
        ({"status": "scheduled"}, "upcoming"),
        ({"status": "CANCELLED_BY_PATIENT"}, "cancelled"),
        ({"status": "canceled"}, "cancelled"),
        ({"status": "completed"}, "completed"),
        ({"status": "completed", "frontend_status": "upcoming"}, "upcoming"),
    ],
)
def test_summary_status(fields, expected):
    assert summarize(Appointment(id="1", **fields)).status == expected


def test_summary_fields():
    summary = summarize(
        Appointment(
            id="101",
            professional_id="7",
            scheduled_at="2024-03-10T14:30:00",
            consultation_type="in_person",
            appointment_type_price=60,
        )
    )

    assert summary.doctor == "Dr. 7"
    assert summary.date == "2024-03-10T14:30:00"
    assert summary.type == "in-person"
    assert summary.cost == 60
    assert summary.notes == ""
