"""Forward-biased date/time parsing for booking requests.

Date and time phrases are located in the message and each phrase is read
with :func:`dateutil.parser.parse`; relative phrases ("tomorrow", "next
friday", "in 2 hours") and forward rolling use
:class:`~dateutil.relativedelta.relativedelta`. Ambiguous dates resolve to the
future: a weekday means its next occurrence, a month/day without a year that
has already passed means next year, and a bare time that has already passed
today means tomorrow.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time

from dateutil import parser as date_parser
from dateutil.relativedelta import MO, SA, relativedelta

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_DAY_OFFSETS = {"today": 0, "tonight": 0, "tomorrow": 1, "day after tomorrow": 2}

# Implied hours for loose times of day.
_DAY_PARTS = {
    "morning": time(10, 0),
    "afternoon": time(14, 0),
    "evening": time(18, 0),
    "tonight": time(18, 0),
}
_NAMED_TIMES = {"noon": time(12, 0), "midday": time(12, 0), "midnight": time(0, 0)}
_COUNT_WORDS = {"a": 1, "an": 1, "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6}

_RELATIVE_DAY = re.compile(r"\b(day after tomorrow|tomorrow|tonight|today)\b")
_RELATIVE_OFFSET = re.compile(
    r"\bin\s+(\d{1,3}|an?|one|two|three|four|five|six)\s+(minute|hour|day|week)s?\b"
)
_WEEKDAY = re.compile(rf"\b(?:(this|next)\s+)?({'|'.join(WEEKDAYS)})\b")
_MONTH_DAY = re.compile(
    r"\b(?:jan(?:uary)?|feb(?:ruary)?|mar(?:ch)?|apr(?:il)?|may|june?|july?|aug(?:ust)?"
    r"|sep(?:t(?:ember)?)?|oct(?:ober)?|nov(?:ember)?|dec(?:ember)?)\.?\s+"
    r"\d{1,2}(?:st|nd|rd|th)?(,?\s+\d{4})?\b"
)
_NUMERIC_DATE = re.compile(r"\b\d{1,2}/\d{1,2}(/\d{2}|/\d{4})?\b")
_ORDINAL_DAY = re.compile(r"\bthe\s+(\d{1,2})(?:st|nd|rd|th)\b")
_WEEK_PHRASE = re.compile(r"\b(next week|this weekend|next weekend)\b")

_MERIDIEM_TIME = re.compile(r"\b\d{1,2}(?::[0-5]\d)?\s*(?:a\.?m\.?|p\.?m\.?)(?![a-z])")
_CLOCK_TIME = re.compile(r"\b(?:[01]?\d|2[0-3]):[0-5]\d\b")
_NAMED_TIME = re.compile(r"\b(noon|midday|midnight)\b")
_AT_HOUR = re.compile(r"\bat\s+(\d{1,2})\b(?![:/\d%])(?!\s*(?:miles|k\b|percent))")
_DAY_PART = re.compile(r"\b(morning|afternoon|evening|tonight)\b")


@dataclass(frozen=True)
class ParsedDateTime:
    """A resolved date/time and the text it was read from."""

    value: datetime
    text: str
    start: int
    end: int
    has_time: bool


@dataclass(frozen=True)
class _DateSpan:
    start: int
    end: int
    day: datetime
    # Applied when the resolved value lands in the past.
    roll: relativedelta | None = None
    # Weekdays roll as soon as the time has passed; other dates only once the day has.
    roll_same_day: bool = False


@dataclass(frozen=True)
class _TimeSpan:
    start: int
    end: int
    at: time


def _afternoon_bias(hour: int) -> int:
    """Treat bare 1-7 o'clock as afternoon; showrooms are closed before 8am."""

    if 1 <= hour <= 7:
        return hour + 12
    return hour


def _read(fragment: str, default: datetime) -> datetime | None:
    try:
        return date_parser.parse(fragment.replace(".", ""), default=default, ignoretz=True)
    except (ValueError, OverflowError):
        return None


def _find_date(text: str, base: datetime) -> _DateSpan | None:
    candidates: list[_DateSpan] = []

    match = _RELATIVE_DAY.search(text)
    if match:
        day = base + relativedelta(days=_DAY_OFFSETS[match.group(1)])
        candidates.append(_DateSpan(match.start(), match.end(), day))

    match = _RELATIVE_OFFSET.search(text)
    if match and match.group(2) in ("day", "week"):
        amount = _COUNT_WORDS.get(match.group(1)) or int(match.group(1))
        shift = relativedelta(days=amount) if match.group(2) == "day" else relativedelta(weeks=amount)
        candidates.append(_DateSpan(match.start(), match.end(), base + shift))

    match = _WEEKDAY.search(text)
    if match:
        modifier, name = match.groups()
        if modifier == "next":
            week_start = base + relativedelta(days=+1, weekday=MO(+1))
            day = _read(name, week_start)
            if day is not None:
                candidates.append(_DateSpan(match.start(), match.end(), day))
        else:
            day = _read(name, base)
            if day is not None:
                candidates.append(
                    _DateSpan(
                        match.start(),
                        match.end(),
                        day,
                        roll=relativedelta(weeks=+1),
                        roll_same_day=True,
                    )
                )

    match = _MONTH_DAY.search(text)
    if match:
        day = _read(match.group(0), base)
        if day is not None:
            roll = None if match.group(1) else relativedelta(years=+1)
            candidates.append(_DateSpan(match.start(), match.end(), day, roll=roll))

    match = _NUMERIC_DATE.search(text)
    if match:
        day = _read(match.group(0), base)
        if day is not None:
            roll = None if match.group(1) else relativedelta(years=+1)
            candidates.append(_DateSpan(match.start(), match.end(), day, roll=roll))

    match = _ORDINAL_DAY.search(text)
    if match:
        day = _read(match.group(1), base)
        if day is not None:
            candidates.append(
                _DateSpan(match.start(), match.end(), day, roll=relativedelta(months=+1))
            )

    match = _WEEK_PHRASE.search(text)
    if match:
        phrase = match.group(1)
        if phrase == "next week":
            day = base + relativedelta(days=+1, weekday=MO(+1))
        else:
            day = base + relativedelta(weekday=SA(+1))
            if phrase == "next weekend":
                day += relativedelta(weeks=+1)
        candidates.append(_DateSpan(match.start(), match.end(), day))

    if not candidates:
        return None
    return min(candidates, key=lambda c: c.start)


def _find_time(text: str, base: datetime) -> _TimeSpan | None:
    match = _MERIDIEM_TIME.search(text)
    if match:
        parsed = _read(match.group(0), base)
        if parsed is not None:
            return _TimeSpan(match.start(), match.end(), parsed.time())

    match = _CLOCK_TIME.search(text)
    if match:
        parsed = _read(match.group(0), base)
        if parsed is not None:
            at = parsed.time().replace(hour=_afternoon_bias(parsed.hour))
            return _TimeSpan(match.start(), match.end(), at)

    match = _NAMED_TIME.search(text)
    if match:
        return _TimeSpan(match.start(), match.end(), _NAMED_TIMES[match.group(1)])

    match = _AT_HOUR.search(text)
    if match:
        hour = int(match.group(1))
        if 1 <= hour <= 12:
            return _TimeSpan(match.start(), match.end(), time(_afternoon_bias(hour), 0))

    match = _DAY_PART.search(text)
    if match:
        return _TimeSpan(match.start(), match.end(), _DAY_PARTS[match.group(1)])
    return None


def _find_clock_offset(text: str, now: datetime) -> ParsedDateTime | None:
    match = _RELATIVE_OFFSET.search(text.lower())
    if not match or match.group(2) not in ("minute", "hour"):
        return None
    amount = _COUNT_WORDS.get(match.group(1)) or int(match.group(1))
    if match.group(2) == "hour":
        shift = relativedelta(hours=amount)
    else:
        shift = relativedelta(minutes=amount)
    value = (now + shift).replace(second=0, microsecond=0)
    return ParsedDateTime(
        value=value,
        text=text[match.start() : match.end()],
        start=match.start(),
        end=match.end(),
        has_time=True,
    )


def parse_datetime(text: str, now: datetime) -> ParsedDateTime | None:
    """Parse the first date/time expression in ``text`` relative to ``now``.

    ``now`` should be timezone aware; the result carries the same tzinfo.
    Returns ``None`` when neither a date nor a time phrase is present.
    """

    offset = _find_clock_offset(text, now)
    if offset is not None:
        return offset

    lowered = text.lower()
    local_now = now.replace(tzinfo=None)
    base = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    found_date = _find_date(lowered, base)
    found_time = _find_time(lowered, base)
    if found_date is None and found_time is None:
        return None

    value = found_date.day if found_date else base
    if found_time is not None:
        value = value.replace(hour=found_time.at.hour, minute=found_time.at.minute)

    if found_date is None:
        if value < local_now:
            value += relativedelta(days=+1)
    elif found_date.roll is not None:
        if found_date.roll_same_day and found_time is not None:
            passed = value < local_now
        else:
            passed = value < base
        if passed:
            value += found_date.roll

    spans = [m for m in (found_date, found_time) if m is not None]
    start = min(m.start for m in spans)
    end = max(m.end for m in spans)
    return ParsedDateTime(
        value=value.replace(tzinfo=now.tzinfo),
        text=text[start:end],
        start=start,
        end=end,
        has_time=found_time is not None,
    )
