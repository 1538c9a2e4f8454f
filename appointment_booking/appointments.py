"""List-view shape of server appointments."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel

from appointment_booking.models import Appointment, normalize_category

Status = Literal["upcoming", "completed", "cancelled"]


class AppointmentSummary(BaseModel):
    id: str
    doctor: str
    doctor_id: str | None = None
    specialty: str = ""
    date: str | None = None
    status: Status = "upcoming"
    type: Literal["in-person", "virtual", "phone"] = "in-person"
    cost: float | None = None
    amount_paid: float | None = None
    timezone: str | None = None
    notes: str = ""
    appointment_type_id: str | None = None
    appointment_type_name: str | None = None
    phone: str | None = None
    location: str | None = None


def summary_status(appointment: Appointment) -> Status:
    if appointment.frontend_status in ("upcoming", "completed", "cancelled"):
        return appointment.frontend_status
    status = appointment.status.upper()
    if "CANCELLED" in status or "CANCELED" in status:
        return "cancelled"
    if status == "COMPLETED":
        return "completed"
    return "upcoming"


def summarize(appointment: Appointment) -> AppointmentSummary:
    cost = appointment.cost if appointment.cost is not None else appointment.appointment_type_price
    return AppointmentSummary(
        id=appointment.id,
        doctor=appointment.doctor_name or f"Dr. {appointment.professional_id}",
        doctor_id=appointment.professional_id,
        specialty=appointment.doctor_specialty or "",
        date=appointment.appointment_date or appointment.scheduled_at or appointment.created_at,
        status=summary_status(appointment),
        type=normalize_category(appointment.consultation_type),
        cost=cost,
        amount_paid=appointment.amount_paid,
        timezone=appointment.timezone,
        notes=appointment.notes or "",
        appointment_type_id=appointment.appointment_type_id,
        appointment_type_name=appointment.appointment_type_name,
        phone=appointment.phone,
        location=appointment.location,
    )
