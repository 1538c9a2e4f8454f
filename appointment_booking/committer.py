"""Turns a completed selection into a booking or a reschedule."""

from __future__ import annotations

import logging
from typing import Any

from langgraph.graph import END, StateGraph
from pydantic import BaseModel, Field

from appointment_booking.api_client import ApiClient
from appointment_booking.errors import ApiError, BookingValidationError, SubmissionError
from appointment_booking.models import (
    Appointment,
    BookingRequest,
    CurrentUser,
    RescheduleRequest,
    RescheduleTarget,
    Selection,
)
from appointment_booking.normalizer import DEFAULT_FALLBACK_TIME, slot_to_iso

logger = logging.getLogger(__name__)

MESSAGES = {
    "provider_required": "Please select a doctor.",
    "appointment_type_required": "Please select an appointment type.",
    "date_required": "Please select a date.",
    "time_required": "Please select a time.",
    "phone_required": "A phone number is required for phone appointments.",
    "email_required": "Your profile has no email address. Add one before booking.",
    "last_name_required": "Your profile needs a first and last name before booking.",
}


def selection_error(selection: Selection) -> str | None:
    """Code of the first missing selection field, in booking order."""
    if selection.provider is None or not selection.provider.calendar_id:
        return "provider_required"
    if selection.appointment_type is None:
        return "appointment_type_required"
    if not selection.date:
        return "date_required"
    if selection.time_slot is None:
        return "time_required"
    if selection.requires_phone and not selection.phone.strip():
        return "phone_required"
    return None


def user_error(user: CurrentUser) -> str | None:
    if not (user.email or "").strip():
        return "email_required"
    if not user.last_name:
        return "last_name_required"
    return None


def numeric_id(value: str | None) -> int | None:
    if value is None or not value.strip().isdigit():
        return None
    return int(value)


class CommitState(BaseModel):
    """State carried through the commit graph."""

    selection: Selection
    reschedule: RescheduleTarget | None = None
    fallback_time: str = DEFAULT_FALLBACK_TIME
    user: CurrentUser | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    appointment: Appointment | None = None
    error_code: str | None = None
    error_message: str | None = None

    model_config = {"arbitrary_types_allowed": True}


class BookingCommitter:
    """Validates and submits a selection through a small LangGraph pipeline.

    validate_selection → load_user → validate_user → create | reschedule
    """

    def __init__(self, api: ApiClient, fallback_time: str = DEFAULT_FALLBACK_TIME) -> None:
        self.api = api
        self.fallback_time = fallback_time
        self.graph = self._build_graph()
        self.executor = self.graph.compile()

    def _build_graph(self) -> StateGraph:
        g = StateGraph(CommitState)

        g.add_node("validate_selection", self._validate_selection)
        g.add_node("load_user", self._load_user)
        g.add_node("validate_user", self._validate_user)
        g.add_node("create", self._create)
        g.add_node("reschedule", self._reschedule)

        g.set_entry_point("validate_selection")

        g.add_conditional_edges(
            "validate_selection", self._route_on_error, {"ok": "load_user", "error": END}
        )
        g.add_conditional_edges(
            "load_user", self._route_on_error, {"ok": "validate_user", "error": END}
        )
        g.add_conditional_edges(
            "validate_user",
            self._route_by_mode,
            {"create": "create", "reschedule": "reschedule", "error": END},
        )

        g.add_edge("create", END)
        g.add_edge("reschedule", END)
        return g

    # ------------------------------------------------------------------ #
    #  Graph nodes
    # ------------------------------------------------------------------ #
    @staticmethod
    def _validation_failure(code: str) -> dict[str, Any]:
        return {"error_code": code, "error_message": MESSAGES[code]}

    def _validate_selection(self, state: CommitState) -> dict[str, Any]:
        if code := selection_error(state.selection):
            return self._validation_failure(code)
        return {}

    async def _load_user(self, state: CommitState) -> dict[str, Any]:
        try:
            user = await self.api.get_current_user()
        except ApiError as exc:
            return {"error_code": "user_unavailable", "error_message": exc.message}
        return {"user": user}

    def _validate_user(self, state: CommitState) -> dict[str, Any]:
        if code := user_error(state.user or CurrentUser()):
            return self._validation_failure(code)
        return {}

    def _datetime(self, state: CommitState) -> str:
        return slot_to_iso(state.selection.time_slot, state.selection.date, state.fallback_time)

    async def _create(self, state: CommitState) -> dict[str, Any]:
        selection = state.selection
        provider = selection.provider
        user = state.user
        request = BookingRequest(
            calendar_id=provider.calendar_id,
            appointment_type_id=numeric_id(selection.appointment_type.id),
            datetime_iso=self._datetime(state),
            first_name=user.first_name,
            last_name=user.last_name,
            email=user.email.strip(),
            phone=selection.phone.strip() if selection.requires_phone else None,
            note=selection.notes.strip() or None,
            timezone=provider.timezone or None,
        )
        logger.info("Booking %s at %s", provider.calendar_id, request.datetime_iso)
        try:
            appointment = await self.api.create_appointment(request)
        except ApiError as exc:
            logger.warning("Booking rejected: %s", exc.message)
            return {"payload": request.to_payload(), "error_code": "submission_failed", "error_message": exc.message}
        return {"payload": request.to_payload(), "appointment": appointment}

    async def _reschedule(self, state: CommitState) -> dict[str, Any]:
        selection = state.selection
        request = RescheduleRequest(
            appointment_id=state.reschedule.appointment_id,
            appointment_date=self._datetime(state),
            appointment_type_id=numeric_id(selection.appointment_type.id),
            notes=selection.notes.strip() or None,
        )
        logger.info("Rescheduling appointment %s to %s", request.appointment_id, request.appointment_date)
        try:
            appointment = await self.api.reschedule_appointment(request.appointment_id, request)
        except ApiError as exc:
            logger.warning("Reschedule rejected: %s", exc.message)
            return {"payload": request.to_payload(), "error_code": "submission_failed", "error_message": exc.message}
        return {"payload": request.to_payload(), "appointment": appointment}

    # ------------------------------------------------------------------ #
    #  Routing
    # ------------------------------------------------------------------ #
    @staticmethod
    def _route_on_error(state: CommitState) -> str:
        return "error" if state.error_code else "ok"

    @staticmethod
    def _route_by_mode(state: CommitState) -> str:
        if state.error_code:
            return "error"
        return "reschedule" if state.reschedule else "create"

    # ------------------------------------------------------------------ #
    #  Entry point
    # ------------------------------------------------------------------ #
    def validate_selection(self, selection: Selection) -> None:
        """Raise for the first missing selection field without touching the network."""
        if code := selection_error(selection):
            raise BookingValidationError(MESSAGES[code], code=code)

    async def commit(self, selection: Selection, reschedule: RescheduleTarget | None = None) -> Appointment:
        """Validate and submit; the selection is never modified."""
        state = CommitState(
            selection=selection.model_copy(deep=True),
            reschedule=reschedule,
            fallback_time=self.fallback_time,
        )
        raw = await self.executor.ainvoke(state)
        result = raw if isinstance(raw, CommitState) else CommitState.model_validate(raw)

        if result.error_code in MESSAGES:
            raise BookingValidationError(result.error_message, code=result.error_code)
        if result.error_code:
            raise SubmissionError(result.error_message or "Could not save the appointment", code=result.error_code)
        if result.appointment is None:
            raise SubmissionError("The server returned no appointment")
        return result.appointment
