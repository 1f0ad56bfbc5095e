"""Dealership business hours and test-drive slot selection."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any

from ..leads.dates import WEEKDAYS

APPOINTMENT_MINUTES = 30
SLOT_MINUTES = 30
# Earliest a same-day test drive can start after the request.
SAME_DAY_LEAD = timedelta(hours=1)
THIS_WEEK_HOUR = time(10, 0)


def _parse_clock(value: str) -> time:
    hour, minute = value.split(":", 1)
    return time(int(hour), int(minute))


@dataclass(frozen=True)
class BusinessHours:
    """Opening hours per weekday (Monday is 0); ``None`` means closed."""

    days: tuple[tuple[time, time] | None, ...]

    @classmethod
    def default(cls) -> "BusinessHours":
        weekday = (time(9, 0), time(18, 0))
        return cls(days=(weekday,) * 5 + ((time(9, 0), time(17, 0)), None))

    @classmethod
    def from_config(cls, config: Mapping[str, Any] | None) -> "BusinessHours":
        """Build from ``{"monday": {"open": "09:00", "close": "18:00"}, "sunday": null}``.

        Days missing from ``config`` keep the default hours.
        """

        if not config:
            return cls.default()
        days = list(cls.default().days)
        for index, name in enumerate(WEEKDAYS):
            if name not in config:
                continue
            entry = config[name]
            if not entry:
                days[index] = None
            else:
                days[index] = (_parse_clock(entry["open"]), _parse_clock(entry["close"]))
        return cls(days=tuple(days))

    def hours_for(self, moment: datetime) -> tuple[time, time] | None:
        return self.days[moment.weekday()]

    def is_within_business_hours(
        self, moment: datetime, duration: timedelta = timedelta(minutes=APPOINTMENT_MINUTES)
    ) -> bool:
        hours = self.hours_for(moment)
        if hours is None:
            return False
        opens, closes = hours
        start = moment.replace(tzinfo=None).time()
        end = (moment + duration).replace(tzinfo=None)
        return opens <= start and end.date() == moment.date() and end.time() <= closes

    def next_business_window(
        self, moment: datetime, duration: timedelta = timedelta(minutes=APPOINTMENT_MINUTES)
    ) -> datetime:
        """Return the first slot boundary at or after ``moment`` that fits ``duration``."""

        candidate = _round_up(moment)
        for _ in range(8):
            hours = self.hours_for(candidate)
            if hours is not None:
                opens, closes = hours
                day_open = candidate.replace(hour=opens.hour, minute=opens.minute, second=0, microsecond=0)
                if candidate < day_open:
                    candidate = day_open
                if self.is_within_business_hours(candidate, duration):
                    return candidate
            next_day = candidate + timedelta(days=1)
            candidate = next_day.replace(hour=0, minute=0, second=0, microsecond=0)
        raise ValueError("Dealership has no business hours configured")


def _round_up(moment: datetime) -> datetime:
    moment = moment.replace(second=0, microsecond=0)
    remainder = moment.minute % SLOT_MINUTES
    if remainder:
        moment += timedelta(minutes=SLOT_MINUTES - remainder)
    return moment


def resolve_preferred_slot(preferred: str, now: datetime, hours: BusinessHours) -> datetime:
    """Turn a job's preferred date into a concrete appointment start.

    ``today`` means the first open slot at least an hour out, ``this_week``
    the first open slot from tomorrow morning, and an ISO datetime is kept
    when it falls inside business hours (otherwise moved forward).
    """

    if preferred == "today":
        return hours.next_business_window(now + SAME_DAY_LEAD)
    if preferred == "this_week":
        tomorrow = (now + timedelta(days=1)).replace(
            hour=THIS_WEEK_HOUR.hour, minute=THIS_WEEK_HOUR.minute, second=0, microsecond=0
        )
        return hours.next_business_window(tomorrow)

    requested = datetime.fromisoformat(preferred)
    if requested.tzinfo is None:
        requested = requested.replace(tzinfo=now.tzinfo)
    else:
        requested = requested.astimezone(now.tzinfo)
    if requested < now:
        requested = now + SAME_DAY_LEAD
    if requested.second == 0 and requested.microsecond == 0 and hours.is_within_business_hours(requested):
        return requested
    return hours.next_business_window(requested)


def format_slot(slot: datetime) -> str:
    """``Friday, March 14 at 3:00 PM``"""

    hour = slot.strftime("%I").lstrip("0")
    return f"{slot.strftime('%A, %B')} {slot.day} at {hour}:{slot.strftime('%M %p')}"
