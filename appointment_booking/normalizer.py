"""Date and time-slot normalization.

Availability payloads come in several shapes (plain strings, ``{"date": ...}``
objects, ISO datetimes with or without offsets, bare ``HH:MM`` times). These
helpers turn all of them into one canonical form so callers never branch on
payload shape. None of them raise on bad input.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Mapping
from datetime import date, datetime
from typing import Any

from dateutil import parser as date_parser

from appointment_booking.models import TimeSlot

logger = logging.getLogger(__name__)

DEFAULT_FALLBACK_TIME = "12:00"

_DATE_PREFIX = re.compile(r"^\s*(\d{4})-(\d{2})-(\d{2})")
_YEAR = re.compile(r"\d{4}")
_CLOCK = re.compile(r"^\s*(\d{1,2}):(\d{2})\s*$")
_CLOCK_ANYWHERE = re.compile(r"(\d{1,2}):(\d{2})")
_ISO_CLOCK = re.compile(r"T(\d{2}):(\d{2})")
_COMPACT_OFFSET = re.compile(r"([+-])(\d{2})(\d{2})$")
_FULL_DATETIME = re.compile(r"^\s*\d{4}-\d{2}-\d{2}T\d{1,2}:\d{2}")

_SLOT_TIME_FIELDS = ("time", "datetime", "start_time", "startTime")


def _field(value: Any, name: str) -> Any:
    if isinstance(value, Mapping):
        return value.get(name)
    return getattr(value, name, None)


def normalize_date_key(value: Any) -> str | None:
    """Return ``YYYY-MM-DD`` for any date-like value, or ``None``."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if not isinstance(value, str):
        nested = _field(value, "date")
        if nested is None or nested is value:
            return None
        return normalize_date_key(nested)

    text = value.strip()
    if not text:
        return None

    # Keep the calendar date as written, even when an offset follows.
    if match := _DATE_PREFIX.match(text):
        try:
            return date(*(int(part) for part in match.groups())).isoformat()
        except ValueError:
            return None

    # Bare clock times would otherwise parse as "today".
    if not _YEAR.search(text):
        return None
    try:
        return date_parser.parse(text).date().isoformat()
    except (ValueError, OverflowError):
        return None


def normalize_date_keys(values: Iterable[Any] | None) -> list[str]:
    """Normalize a ``string[] | {date}[]`` payload, dropping what cannot be parsed."""
    keys: list[str] = []
    for item in values or ():
        key = normalize_date_key(item)
        if key is None:
            logger.debug("Dropping unparseable availability date %r", item)
            continue
        if key not in keys:
            keys.append(key)
    return keys


def month_key(value: Any) -> str | None:
    """``YYYY-MM`` for a date-like value."""
    if isinstance(value, str) and re.fullmatch(r"\d{4}-(0[1-9]|1[0-2])", value.strip()):
        return value.strip()
    key = normalize_date_key(value)
    return key[:7] if key else None


def fix_offset(value: str) -> str:
    """Rewrite a compact ``+0100`` offset as ``+01:00``."""
    return _COMPACT_OFFSET.sub(r"\1\2:\3", value.strip())


def _parses_as_iso(value: str) -> bool:
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True


def _clock(text: str | None, *, anywhere: bool = False) -> str | None:
    if not text:
        return None
    match = (_CLOCK_ANYWHERE.search if anywhere else _CLOCK.match)(text)
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return f"{hours:02d}:{minutes:02d}"


def normalize_time_slot(raw: Any) -> TimeSlot:
    """Build a :class:`TimeSlot` from a string or object slot payload."""
    if isinstance(raw, TimeSlot):
        return raw

    raw_value = ""
    iso_candidate = ""
    available = True
    if isinstance(raw, str):
        raw_value = raw.strip()
        if "T" in raw_value:
            iso_candidate = raw_value
    elif raw is not None:
        candidate = next(
            (c for c in (_field(raw, name) for name in _SLOT_TIME_FIELDS) if c is not None),
            None,
        )
        if candidate is not None:
            raw_value = str(candidate).strip()
            explicit = _field(raw, "datetime")
            if explicit or "T" in raw_value:
                iso_candidate = str(explicit or raw_value)
        flag = _field(raw, "available")
        if flag is not None:
            available = bool(flag)

    iso_time = None
    if iso_candidate:
        fixed = fix_offset(iso_candidate)
        if _parses_as_iso(fixed):
            iso_time = fixed

    display = None
    if iso_time:
        display = _clock(_iso_clock(iso_time))
    if display is None:
        display = _clock(raw_value, anywhere=True)

    return TimeSlot(
        time=display or raw_value,
        iso_time=iso_time,
        raw_time=raw_value or None,
        available=available,
    )


def _iso_clock(value: str) -> str | None:
    match = _ISO_CLOCK.search(value)
    return f"{match.group(1)}:{match.group(2)}" if match else None


def normalize_time_slots(values: Iterable[Any] | None) -> list[TimeSlot]:
    return [normalize_time_slot(item) for item in values or ()]


def slot_to_iso(slot: Any, date_key: str, fallback_time: str = DEFAULT_FALLBACK_TIME) -> str:
    """Canonical ISO datetime for a slot on ``date_key``.

    Precedence: explicit ISO time, raw full datetime, raw ``H:MM`` combined
    with the date, then the date at ``fallback_time``.
    """
    iso_time = _field(slot, "iso_time") or _field(slot, "isoTime")
    if iso_time:
        return str(iso_time)

    raw_values = [_field(slot, "raw_time"), _field(slot, "rawTime"), _field(slot, "time")]
    if isinstance(slot, str):
        raw_values.insert(0, slot)
    raw_values = [str(v).strip() for v in raw_values if v]

    for raw in raw_values:
        if _FULL_DATETIME.match(raw):
            return raw
    for raw in raw_values:
        if clock := _clock(raw):
            return f"{date_key}T{clock}:00"

    logger.warning("Slot %r has no usable time; booking %s at %s", slot, date_key, fallback_time)
    return f"{date_key}T{_clock(fallback_time) or DEFAULT_FALLBACK_TIME}:00"


def format_slot_time(slot: Any) -> str:
    """Display text for a slot, ``—`` when nothing usable is present."""
    display = _field(slot, "time")
    if display and "T" not in str(display):
        return _clock(str(display), anywhere=True) or str(display)

    candidate = str(_field(slot, "iso_time") or display or _field(slot, "raw_time") or "")
    if "T" in candidate:
        if clock := _iso_clock(fix_offset(candidate)):
            return clock
    return _clock(candidate, anywhere=True) or "—"
