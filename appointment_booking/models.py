"""Records exchanged with the remote API and held by a booking session."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator

Category = Literal["in-person", "virtual", "phone"]

_CATEGORY_ALIASES: dict[str, Category] = {
    "in-person": "in-person",
    "in_person": "in-person",
    "inperson": "in-person",
    "presencial": "in-person",
    "virtual": "virtual",
    "video": "virtual",
    "phone": "phone",
    "telephone": "phone",
    "telefone": "phone",
}


def normalize_category(value: Any) -> Category:
    """Map the server's category spellings onto the three known ones."""
    if not isinstance(value, str):
        return "in-person"
    return _CATEGORY_ALIASES.get(value.strip().lower(), "in-person")


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


class AppointmentType(_WireModel):
    id: str
    name: str = ""
    category: Category = "in-person"
    duration: int | None = None
    price: float | None = None

    @model_validator(mode="before")
    @classmethod
    def _fold_category(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            data["category"] = normalize_category(data.get("category") or data.get("type"))
        return data


class Provider(_WireModel):
    id: str
    name: str
    calendar_id: str | None = Field(
        default=None, validation_alias=AliasChoices("calendar_id", "acuityCalendarId")
    )
    timezone: str | None = None
    appointment_types: list[AppointmentType] = Field(
        default_factory=list,
        validation_alias=AliasChoices("appointment_types", "appointmentTypes"),
    )
    address: str | None = None
    specialty: str | None = None

    def find_type(self, type_id: str | int | None) -> AppointmentType | None:
        if type_id is None:
            return None
        wanted = str(type_id)
        return next((t for t in self.appointment_types if t.id == wanted), None)


class TimeSlot(BaseModel):
    """One bookable instant on a given date."""

    model_config = ConfigDict(frozen=True)

    time: str = ""
    iso_time: str | None = None
    raw_time: str | None = None
    available: bool = True


class Selection(BaseModel):
    """The four dependent selections plus the free-form fields."""

    provider: Provider | None = None
    appointment_type: AppointmentType | None = None
    date: str | None = None
    time_slot: TimeSlot | None = None
    notes: str = ""
    phone: str = ""

    @property
    def requires_phone(self) -> bool:
        return self.appointment_type is not None and self.appointment_type.category == "phone"


class RescheduleTarget(_WireModel):
    """Navigation parameters of the reschedule entry point."""

    appointment_id: str = Field(validation_alias=AliasChoices("appointment_id", "appointmentId"))
    provider_id: str | None = Field(
        default=None, validation_alias=AliasChoices("provider_id", "providerId")
    )
    appointment_type_id: str | None = Field(
        default=None, validation_alias=AliasChoices("appointment_type_id", "appointmentTypeId")
    )
    date: str | None = None
    notes: str = ""


class CurrentUser(_WireModel):
    email: str | None = None
    full_name: str | None = Field(
        default=None, validation_alias=AliasChoices("full_name", "fullName")
    )

    def _name_parts(self) -> list[str]:
        return (self.full_name or "").split(maxsplit=1)

    @property
    def first_name(self) -> str:
        parts = self._name_parts()
        return parts[0] if parts else ""

    @property
    def last_name(self) -> str:
        parts = self._name_parts()
        return parts[1] if len(parts) > 1 else ""


class BookingRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    calendar_id: str
    appointment_type_id: int | None = None
    datetime_iso: str = Field(alias="datetime")
    first_name: str
    last_name: str
    email: str
    phone: str | None = None
    note: str | None = None
    timezone: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class RescheduleRequest(BaseModel):
    appointment_id: str
    appointment_date: str
    appointment_type_id: int | None = None
    notes: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(exclude={"appointment_id"}, exclude_none=True)


class Appointment(_WireModel):
    """Appointment record as returned by the server."""

    id: str
    professional_id: str | None = None
    appointment_date: str | None = None
    scheduled_at: str | None = None
    created_at: str | None = None
    status: str = ""
    frontend_status: str | None = None
    consultation_type: str | None = None
    appointment_type_id: str | None = None
    appointment_type_name: str | None = None
    appointment_type_price: float | None = None
    cost: float | None = None
    amount_paid: float | None = None
    doctor_name: str | None = None
    doctor_specialty: str | None = None
    notes: str | None = None
    timezone: str | None = None
    phone: str | None = None
    location: str | None = None


class DoctorPage(BaseModel):
    doctors: list[Provider] = Field(default_factory=list)
    has_more: bool = False
