"""Detect test-drive requests that name a concrete date and time."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from zoneinfo import ZoneInfo

from .dates import parse_datetime

logger = logging.getLogger(__name__)

BOOKING_KEYWORDS = ("test drive", "schedule", "appointment", "book", "come in", "visit")

_BOOKING_KEYWORD = re.compile(
    r"\b(?:test[\s-]?drive|schedul|appointment|book|come in|visit)"
)


@dataclass(frozen=True)
class BookingIntent:
    """A customer request for a specific slot."""

    requested_at: datetime
    source_text: str

    def as_payload(self) -> dict[str, str]:
        return {
            "preferred_date": self.requested_at.isoformat(),
            "source_text": self.source_text,
        }


class BookingIntentDetector:
    """Advisory detector; it never books anything itself."""

    def __init__(self, timezone: str = "UTC") -> None:
        self._tz = ZoneInfo(timezone)

    def has_booking_keyword(self, text: str) -> bool:
        return bool(_BOOKING_KEYWORD.search(text.lower()))

    def detect(self, text: str, now: datetime | None = None) -> BookingIntent | None:
        if not text or not self.has_booking_keyword(text):
            return None

        reference = now or datetime.now(self._tz)
        if reference.tzinfo is None:
            reference = reference.replace(tzinfo=self._tz)
        parsed = parse_datetime(text, reference)
        if parsed is None or not parsed.has_time:
            return None

        logger.info("Booking intent detected", extra={"requested_at": parsed.value.isoformat()})
        return BookingIntent(requested_at=parsed.value, source_text=parsed.text)
