"""Selection slot definitions for the booking flow.

Each slot knows
    • its public name
    • which earlier slots it depends on
    • how to list its options, given the current selection
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, TypeAlias

from appointment_booking.models import Selection

if TYPE_CHECKING:
    from appointment_booking.availability import AvailabilityCache
    from appointment_booking.calendar_widget import CalendarWidget
    from appointment_booking.directory import ProviderDirectory

Context: TypeAlias = Selection


@dataclass(frozen=True, slots=True)
class Slot:
    name: str
    dependencies: Sequence[str]
    options_fn: Callable[[Context], list[Any]]

    def options(self, ctx: Context) -> list[Any]:
        """Return the options for this slot given the current selection."""
        return self.options_fn(ctx)


def downstream_of(slots: Sequence[Slot], name: str) -> list[str]:
    """Names of every slot that depends on ``name``."""
    return [slot.name for slot in slots if name in slot.dependencies]


def build_default_slots(
    directory: ProviderDirectory, cache: AvailabilityCache, calendar: CalendarWidget
) -> list[Slot]:
    """Return the canonical provider → appointment type → date → time chain."""

    def provider_options(_: Context) -> list[Any]:
        """Return the providers loaded so far."""
        return list(directory.providers)

    def appointment_type_options(ctx: Context) -> list[Any]:
        """Return the appointment types offered by the selected provider."""
        if ctx.provider:
            return list(ctx.provider.appointment_types)
        return []

    def date_options(ctx: Context) -> list[Any]:
        """Return the available dates of the displayed month for the selected provider and type."""
        if ctx.provider and ctx.provider.calendar_id and ctx.appointment_type:
            return sorted(
                cache.dates_for(ctx.provider.calendar_id, ctx.appointment_type.id, calendar.displayed_month)
            )
        return []

    def time_options(ctx: Context) -> list[Any]:
        """Return the time slots of the selected date for the selected provider and type."""
        if ctx.provider and ctx.provider.calendar_id and ctx.appointment_type and ctx.date:
            return list(cache.times_for(ctx.provider.calendar_id, ctx.date, ctx.appointment_type.id))
        return []

    return [
        Slot("provider", [], provider_options),
        Slot("appointment_type", ["provider"], appointment_type_options),
        Slot("date", ["provider", "appointment_type"], date_options),
        Slot("time_slot", ["provider", "appointment_type", "date"], time_options),
    ]
