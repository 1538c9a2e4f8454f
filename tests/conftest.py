import asyncio
from datetime import date

import pytest

from appointment_booking.config import Settings
from appointment_booking.mock_client import MockApiClient
from appointment_booking.state_machine import BookingStateMachine

TODAY = date(2024, 3, 1)


class GatedApiClient(MockApiClient):
    """MockApiClient whose calls can be held until the test releases them."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gates: dict[str, asyncio.Event] = {}

    def hold(self, method: str) -> asyncio.Event:
        event = asyncio.Event()
        self.gates[method] = event
        return event

    async def _wait(self, method: str) -> None:
        gate = self.gates.get(method)
        if gate is not None:
            await gate.wait()

    async def get_available_dates(self, *args):
        result = await super().get_available_dates(*args)
        await self._wait("get_available_dates")
        return result

    async def get_available_times(self, *args):
        result = await super().get_available_times(*args)
        await self._wait("get_available_times")
        return result

    async def create_appointment(self, request):
        await self._wait("create_appointment")
        return await super().create_appointment(request)


async def settle(rounds: int = 10) -> None:
    """Let pending tasks run up to their next await."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def settings():
    """Settings pinned to the in-memory API."""
    return Settings(api_base_url="", fallback_slot_time="12:00", doctors_page_size=20)


@pytest.fixture
def api():
    """A GatedApiClient with the default seed data."""
    return GatedApiClient()


@pytest.fixture
def machine(api, settings):
    """A fresh booking session whose calendar believes it is 1 March 2024."""
    return BookingStateMachine(api, settings=settings, today=TODAY)
