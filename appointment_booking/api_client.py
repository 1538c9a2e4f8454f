"""Clients for the remote appointments API."""

from __future__ import annotations

import logging
from typing import Any, Protocol, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from appointment_booking.config import Settings
from appointment_booking.errors import ApiError
from appointment_booking.models import (
    Appointment,
    BookingRequest,
    CurrentUser,
    DoctorPage,
    Provider,
    RescheduleRequest,
)

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class ApiClient(Protocol):
    """What a booking session needs from the backend."""

    async def list_doctors(
        self,
        search: str | None = None,
        location: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> DoctorPage: ...

    async def get_available_dates(
        self, calendar_id: str, appointment_type_id: str | None, year_month: str
    ) -> list[Any]: ...

    async def get_available_times(
        self, calendar_id: str, date_key: str, appointment_type_id: str | None
    ) -> list[Any]: ...

    async def create_appointment(self, request: BookingRequest) -> Appointment: ...

    async def reschedule_appointment(
        self, appointment_id: str, request: RescheduleRequest
    ) -> Appointment: ...

    async def get_current_user(self) -> CurrentUser: ...

    async def list_appointments(self) -> list[Appointment]: ...


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        for key in ("detail", "message", "error"):
            if isinstance(body.get(key), str):
                return body[key]
    return f"Request failed with status {response.status_code}"


def _listed(data: Any, key: str) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, dict) or not isinstance(data.get(key) or [], list):
        raise ApiError(f"Unexpected {key} response from the server")
    return list(data.get(key) or [])


def _parsed(model: type[M], data: Any) -> M:
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Malformed %s from the server: %s", model.__name__, exc)
        raise ApiError(f"Unexpected {model.__name__} response from the server") from exc


def _items(data: Any) -> list[Any]:
    if data is None:
        return []
    if not isinstance(data, list):
        raise ApiError("Expected a list from the server")
    return data


def _type_param(appointment_type_id: str | None) -> dict[str, str]:
    if appointment_type_id is None or appointment_type_id == "":
        return {}
    return {"appointment_type_id": str(appointment_type_id)}


class HttpApiClient:
    """httpx-backed client for the ``/api/v1`` REST API."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json", "Accept-Language": "en"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=f"{base_url.rstrip('/')}/api/v1",
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, settings: Settings, token: str | None = None) -> HttpApiClient:
        return cls(
            settings.api_base_url,
            token=token or settings.api_token or None,
            timeout=settings.api_timeout_seconds,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, url)
            raise ApiError("The server took too long to respond") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise ApiError(f"Network error: {exc}") from exc

        if response.is_error:
            message = _error_message(response)
            logger.warning("%s %s -> %s: %s", method, url, response.status_code, message)
            raise ApiError(message, status_code=response.status_code)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("%s %s returned a non-JSON body", method, url)
            raise ApiError("The server sent an unreadable response", status_code=response.status_code) from exc

    async def list_doctors(
        self,
        search: str | None = None,
        location: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> DoctorPage:
        params: dict[str, Any] = {"offset": offset, "limit": limit}
        if search:
            params["search"] = search
        if location:
            params["location"] = location
        data = await self._request("GET", "/appointments/doctors", params=params)
        doctors = [_parsed(Provider, item) for item in _items(data)]
        # A full page means there may be more.
        return DoctorPage(doctors=doctors, has_more=len(doctors) == limit)

    async def get_available_dates(
        self, calendar_id: str, appointment_type_id: str | None, year_month: str
    ) -> list[Any]:
        params = {"calendar_id": calendar_id, "month": year_month, **_type_param(appointment_type_id)}
        data = await self._request("GET", "/appointments/availability/dates", params=params)
        return _listed(data, "dates")

    async def get_available_times(
        self, calendar_id: str, date_key: str, appointment_type_id: str | None
    ) -> list[Any]:
        params = {"calendar_id": calendar_id, "date": date_key, **_type_param(appointment_type_id)}
        data = await self._request("GET", "/appointments/availability/times", params=params)
        return _listed(data, "times")

    async def create_appointment(self, request: BookingRequest) -> Appointment:
        data = await self._request("POST", "/appointments/", json=request.to_payload())
        return _parsed(Appointment, data)

    async def reschedule_appointment(
        self, appointment_id: str, request: RescheduleRequest
    ) -> Appointment:
        data = await self._request(
            "PUT", f"/appointments/{appointment_id}", json=request.to_payload()
        )
        if isinstance(data, dict) and isinstance(data.get("appointment"), dict):
            data = data["appointment"]
        return _parsed(Appointment, data)

    async def get_current_user(self) -> CurrentUser:
        data = await self._request("GET", "/auth/me")
        return _parsed(CurrentUser, data or {})

    async def list_appointments(self) -> list[Appointment]:
        data = await self._request("GET", "/appointments/")
        return [_parsed(Appointment, item) for item in _items(data)]
