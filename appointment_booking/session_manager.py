from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from typing import Any

from pydantic import ValidationError

from appointment_booking.api_client import ApiClient, HttpApiClient
from appointment_booking.config import Settings, get_settings
from appointment_booking.errors import BookingError
from appointment_booking.mock_client import MockApiClient
from appointment_booking.models import RescheduleTarget
from appointment_booking.state_machine import BookingStateMachine

logger = logging.getLogger(__name__)

ApiFactory = Callable[[str | None], ApiClient]
Handler = Callable[[BookingStateMachine, dict[str, Any]], Awaitable[dict[str, Any] | None]]


def default_api_factory(settings: Settings) -> ApiFactory:
    def factory(token: str | None) -> ApiClient:
        if settings.api_enabled:
            return HttpApiClient.from_settings(settings, token=token)
        return MockApiClient()

    return factory


class SessionManager:
    """Keeps one booking session per session id and dispatches actions to it."""

    def __init__(
        self,
        api_factory: ApiFactory | None = None,
        settings: Settings | None = None,
        today: date | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.api_factory = api_factory or default_api_factory(self.settings)
        self.today = today

        # in-memory sessions (guarded by an asyncio.Lock)
        self._sessions: dict[str, BookingStateMachine] = {}
        self._lock = asyncio.Lock()

        self._handlers: dict[str, Handler] = {
            "load_providers": self._load_providers,
            "load_more_providers": self._load_more_providers,
            "select_provider": self._select_provider,
            "select_appointment_type": self._select_appointment_type,
            "select_date": self._select_date,
            "select_time": self._select_time,
            "previous_month": self._previous_month,
            "next_month": self._next_month,
            "set_notes": self._set_notes,
            "set_phone": self._set_phone,
            "retry_dates": self._retry_dates,
            "retry_times": self._retry_times,
            "submit": self._submit,
            "state": self._state,
        }

    # ------------------------------------------------------------------ #
    #  Session bookkeeping
    # ------------------------------------------------------------------ #
    async def get_session(self, session_id: str) -> BookingStateMachine | None:
        async with self._lock:
            return self._sessions.get(session_id)

    async def open_session(
        self, session_id: str, token: str | None, reschedule: dict[str, Any] | None = None
    ) -> BookingStateMachine:
        """Start a fresh booking (or reschedule) session, replacing any previous one."""
        target = RescheduleTarget.model_validate(reschedule) if reschedule else None
        machine = BookingStateMachine(
            self.api_factory(token), reschedule=target, settings=self.settings, today=self.today
        )
        async with self._lock:
            previous = self._sessions.pop(session_id, None)
            self._sessions[session_id] = machine
        if previous is not None:
            await self._dispose(previous)
        logger.info("Opened %s session %s", machine.mode, session_id)
        await machine.load_providers()
        return machine

    async def close_session(self, session_id: str) -> None:
        async with self._lock:
            machine = self._sessions.pop(session_id, None)
        if machine is not None:
            await self._dispose(machine)
            logger.info("Closed session %s", session_id)

    @staticmethod
    async def _dispose(machine: BookingStateMachine) -> None:
        machine.close()
        aclose = getattr(machine.api, "aclose", None)
        if aclose is not None:
            await aclose()

    # ------------------------------------------------------------------ #
    #  Dispatch
    # ------------------------------------------------------------------ #
    async def process_event(
        self, session_id: str, token: str | None, action: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Apply one action to a session and return the reply message."""
        params = params or {}
        if not isinstance(params, dict):
            return {"error": "params must be a JSON object", "code": "bad_request"}
        try:
            if action == "open":
                machine = await self.open_session(session_id, token, params.get("reschedule"))
                return self._reply(session_id, machine)
            if action == "close":
                await self.close_session(session_id)
                return {"session_id": session_id, "closed": True}

            handler = self._handlers.get(action)
            if handler is None:
                return {"error": f"Unknown action '{action}'", "code": "unknown_action"}

            machine = await self.get_session(session_id)
            if machine is None:
                machine = await self.open_session(session_id, token)
            extra = await handler(machine, params)
            return self._reply(session_id, machine, extra)
        except BookingError as exc:
            machine = await self.get_session(session_id)
            reply = {"error": exc.message, "code": exc.code}
            if machine is not None:
                reply.update(self._reply(session_id, machine))
            return reply
        except ValidationError as exc:
            return {"error": f"Invalid parameters: {exc.errors()[0]['msg']}", "code": "invalid_params"}

    @staticmethod
    def _reply(
        session_id: str, machine: BookingStateMachine, extra: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        return {"session_id": session_id, "state": machine.snapshot(), **(extra or {})}

    # ------------------------------------------------------------------ #
    #  Action handlers
    # ------------------------------------------------------------------ #
    async def _load_providers(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.load_providers(search=params.get("search"), location=params.get("location"))

    async def _load_more_providers(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.load_more_providers()

    async def _select_provider(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.select_provider(params.get("provider_id"))

    async def _select_appointment_type(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.select_appointment_type(params.get("appointment_type_id"))

    async def _select_date(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.select_date(params.get("date"))

    async def _select_time(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.select_time(params.get("time"))

    async def _previous_month(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.go_to_previous_month()

    async def _next_month(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.go_to_next_month()

    async def _set_notes(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        machine.set_notes(params.get("notes", ""))

    async def _set_phone(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        machine.set_phone(params.get("phone", ""))

    async def _retry_dates(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.retry_dates()

    async def _retry_times(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        await machine.retry_times()

    async def _submit(self, machine: BookingStateMachine, params: dict[str, Any]) -> dict[str, Any]:
        appointment = await machine.submit()
        return {
            "appointment": appointment.model_dump(),
            "appointments": [a.model_dump() for a in machine.appointments],
        }

    async def _state(self, machine: BookingStateMachine, params: dict[str, Any]) -> None:
        return None
