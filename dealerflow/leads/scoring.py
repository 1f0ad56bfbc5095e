"""Lead qualification scoring.

The score is a plain sum of five capped sub-scores computed from the customer
side of a conversation, clamped to ``[0, 100]``. Keyword lists are matched as
substrings of the lowercased text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass

from .text import contains_any, customer_texts

logger = logging.getLogger(__name__)

VEHICLE_KEYWORDS = (
    "sedan", "suv", "truck", "coupe", "van", "minivan", "convertible", "hatchback",
    "camry", "corolla", "civic", "accord", "f-150", "f150", "silverado", "ram",
    "rav4", "cr-v", "crv", "highlander", "pilot", "tacoma", "tundra", "mustang",
    "tesla", "model 3", "model y", "bmw", "mercedes", "audi", "lexus", "honda",
    "toyota", "ford", "chevrolet", "chevy", "nissan", "hyundai", "kia", "subaru",
    "new car", "used car", "pre-owned", "certified", "vehicle", "car", "auto",
)

BUDGET_KEYWORDS = (
    "budget", "price", "cost", "afford", "payment", "monthly", "down payment",
    "finance", "financing", "lease", "leasing", "loan", "apr", "interest rate",
    "$", "thousand", "per month", "/mo", "a month",
)

TIMELINE_URGENT_KEYWORDS = ("today", "tomorrow", "asap", "right now", "this week", "urgent", "immediately")
TIMELINE_SOON_KEYWORDS = ("this month", "next week", "soon", "couple weeks", "few days")
TIMELINE_BROWSING_KEYWORDS = ("just looking", "browsing", "maybe later", "not sure when", "no rush", "someday")

TRADE_IN_KEYWORDS = (
    "trade-in", "trade in", "trading in", "current car", "my car", "selling my",
    "what can i get", "worth", "value of my",
)

_DOLLAR_AMOUNT = re.compile(r"\$\s*\d[\d,]*|\b\d{2,}\s?k\b")


@dataclass(frozen=True)
class QualificationFactors:
    vehicle_interest: int
    budget: int
    timeline: int
    trade_in: int
    engagement: int

    @property
    def total(self) -> int:
        raw = self.vehicle_interest + self.budget + self.timeline + self.trade_in + self.engagement
        return max(0, min(100, raw))

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def score_vehicle_interest(text: str) -> int:
    matches = len(contains_any(text, VEHICLE_KEYWORDS))
    if matches == 0:
        return 0
    if matches == 1:
        return 10
    if matches == 2:
        return 18
    return 25


def score_budget(text: str) -> int:
    if _DOLLAR_AMOUNT.search(text):
        return 25
    matches = len(contains_any(text, BUDGET_KEYWORDS))
    if matches >= 2:
        return 20
    if matches == 1:
        return 12
    return 0


def score_timeline(text: str) -> int:
    if contains_any(text, TIMELINE_URGENT_KEYWORDS):
        return 25
    if contains_any(text, TIMELINE_SOON_KEYWORDS):
        return 18
    if contains_any(text, TIMELINE_BROWSING_KEYWORDS):
        return 5
    return 0


def score_trade_in(text: str) -> int:
    matches = len(contains_any(text, TRADE_IN_KEYWORDS))
    if matches == 0:
        return 0
    return 15 if matches >= 2 else 10


def score_engagement(message_count: int) -> int:
    if message_count >= 10:
        return 10
    if message_count >= 5:
        return 7
    if message_count >= 3:
        return 5
    if message_count >= 1:
        return 2
    return 0


class QualificationScorer:
    """Compute a 0-100 lead score from a message history."""

    def factors(self, messages) -> QualificationFactors | None:
        texts = customer_texts(messages)
        if not texts:
            return None
        text = " ".join(texts).lower()
        return QualificationFactors(
            vehicle_interest=score_vehicle_interest(text),
            budget=score_budget(text),
            timeline=score_timeline(text),
            trade_in=score_trade_in(text),
            engagement=score_engagement(len(texts)),
        )

    def score(self, messages) -> int:
        factors = self.factors(messages)
        if factors is None:
            return 0
        logger.debug("Qualification factors", extra=factors.as_dict())
        return factors.total
