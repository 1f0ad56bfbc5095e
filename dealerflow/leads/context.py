"""Rule-based extraction of buying signals from customer messages.

The extractor joins every customer message of a conversation into a single
lowercase blob and runs four independent pattern families over it: vehicle
interest, budget, timeline and trade-in. The result is recomputed from scratch
for each inbound message. Each pattern keeps its first match, so earlier
statements take precedence over later ones.
"""

from __future__ import annotations

import logging
import re
from dataclasses import asdict, dataclass, fields
from enum import Enum
from typing import Any, Iterator

from .text import customer_blob

logger = logging.getLogger(__name__)


class Urgency(str, Enum):
    IMMEDIATE = "immediate"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    NEXT_FEW_MONTHS = "next_few_months"
    BROWSING = "browsing"


# Ordered from most to least urgent; the first tier with a hit wins.
TIMELINE_TIERS: tuple[tuple[Urgency, tuple[str, ...]], ...] = (
    (Urgency.IMMEDIATE, ("today", "tonight", "right now", "asap", "immediately", "urgent")),
    (Urgency.THIS_WEEK, ("tomorrow", "this week", "next few days", "couple days")),
    (Urgency.THIS_MONTH, ("this month", "next week", "couple weeks", "few weeks", "soon")),
    (Urgency.NEXT_FEW_MONTHS, ("next month", "couple months", "few months")),
    (
        Urgency.BROWSING,
        ("just looking", "browsing", "no rush", "not sure when", "maybe later", "someday", "next year"),
    ),
)

_MAKE_DISPLAY = {
    "toyota": "Toyota",
    "honda": "Honda",
    "ford": "Ford",
    "chevrolet": "Chevrolet",
    "chevy": "Chevy",
    "nissan": "Nissan",
    "hyundai": "Hyundai",
    "kia": "Kia",
    "subaru": "Subaru",
    "bmw": "BMW",
    "mercedes": "Mercedes",
    "audi": "Audi",
    "lexus": "Lexus",
    "tesla": "Tesla",
    "ram": "Ram",
    "dodge": "Dodge",
    "jeep": "Jeep",
    "gmc": "GMC",
    "volkswagen": "Volkswagen",
    "vw": "VW",
    "mazda": "Mazda",
    "volvo": "Volvo",
}

_MODEL_DISPLAY = {
    "camry": "Camry",
    "corolla": "Corolla",
    "civic": "Civic",
    "accord": "Accord",
    "f150": "F-150",
    "f-150": "F-150",
    "silverado": "Silverado",
    "rav4": "RAV4",
    "crv": "CR-V",
    "cr-v": "CR-V",
    "highlander": "Highlander",
    "pilot": "Pilot",
    "tacoma": "Tacoma",
    "tundra": "Tundra",
    "mustang": "Mustang",
    "altima": "Altima",
    "elantra": "Elantra",
    "sportage": "Sportage",
    "outback": "Outback",
    "wrangler": "Wrangler",
}

_MAKES = "|".join(_MAKE_DISPLAY)
_MODELS = r"camry|corolla|civic|accord|f-?150|silverado|rav4|cr-?v|highlander|pilot|tacoma|tundra|mustang|model\s*[3ys]|altima|elantra|sportage|outback|wrangler"
_YEAR = r"(?:19|20)\d{2}"
_MONTHLY_MARKER = r"(?:/\s*mo(?:nth)?\b|per\s+month|a\s+month|monthly)"
_AMOUNT = r"(\d[\d,]*)(?![\d,])"

_SPECIFIC_VEHICLE = re.compile(
    rf"(?:looking for|interested in|want|need|like)\s+(?:an?\s+)?(?:({_YEAR})\s+)?([\w-]+)\s+([\w-]+)"
)
_BODY_TYPE = re.compile(r"\b(sedan|suv|truck|coupe|van|minivan|convertible|hatchback|crossover)\b")
_CONDITION = re.compile(r"\b(new|used|pre-owned|certified|cpo)\b")
_MAKE = re.compile(rf"\b({_MAKES})\b")
_MODEL = re.compile(rf"\b({_MODELS})\b")
_YEAR_MAKE = re.compile(rf"\b({_YEAR})\s+({_MAKES})\b")

_DOLLAR_TOTAL = re.compile(
    rf"\$\s*{_AMOUNT}\s*(k\b|thousand\b)?(?!\s*{_MONTHLY_MARKER})"
)
_BARE_THOUSANDS = re.compile(r"\b(\d{1,3})\s*k\b(?!\s*(?:miles|mi\b))")
_STATED_BUDGET = re.compile(
    rf"(?:budget|spend|afford|pay)\s+(?:is\s+)?(?:around|about|up to|max|under|less than)?\s*\$?\s*{_AMOUNT}\s*(k\b|thousand\b)?(?!\s*{_MONTHLY_MARKER})"
)
_MONTHLY = re.compile(rf"\$?\s*{_AMOUNT}\s*{_MONTHLY_MARKER}")
_DOWN_PAYMENT = re.compile(
    rf"(?:down payment|put down)\s+(?:of\s+)?(?:around\s+|about\s+)?\$?\s*{_AMOUNT}\s*(k\b|thousand\b)?"
)
_PAYMENT_METHOD = re.compile(r"\b(finance|financing|lease|leasing|cash|loan)\b")

_TRADE_PHRASE = re.compile(r"trade-in|trade in|trading in|value of my")
_TRADE_VEHICLE = re.compile(
    rf"(?:\b({_YEAR})\s+)?\b({_MAKES})\b(?:\s+([\w-]+))?"
)
_CURRENT_VEHICLE = re.compile(
    rf"\b(?:driving|drive|have|own)\s+(?:an?\s+)?(?:({_YEAR})\s+)?({_MAKES})\b(?:\s+([\w-]+))?"
)
_MILEAGE = re.compile(r"(\d{1,3}(?:[,.]\d{3})+|\d{4,7}|\d{1,3}\s*k)\s*miles")
_NOT_A_MODEL = {"with", "and", "that", "for", "to", "it", "which", "has", "is", "in", "on", "my", "a", "the"}

_TIMELINE_PATTERNS = [
    (urgency, re.compile(r"\b(" + "|".join(re.escape(k) for k in keywords) + r")\b"))
    for urgency, keywords in TIMELINE_TIERS
]


def _amount(raw: str, suffix: str | None = None) -> int:
    value = int(raw.replace(",", ""))
    if suffix:
        value *= 1000
    return value


def _display_make(raw: str) -> str:
    return _MAKE_DISPLAY.get(raw.lower(), raw.title())


def _display_model(raw: str) -> str:
    key = re.sub(r"\s+", "", raw.lower())
    if key.startswith("model") and len(key) == 6:
        return f"Model {key[-1].upper()}"
    return _MODEL_DISPLAY.get(key, raw.title())


def _confidence(field_count: int) -> float:
    if field_count >= 3:
        return 0.9
    if field_count == 2:
        return 0.7
    return 0.5


class _Category:
    """Mixin giving the context dataclasses a uniform dict view."""

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)  # type: ignore[call-overload]
        return {
            key: (value.value if isinstance(value, Enum) else value)
            for key, value in data.items()
            if value is not None
        }

    def field_count(self) -> int:
        return len(self.as_dict())

    @property
    def confidence(self) -> float:
        return _confidence(self.field_count())

    def is_empty(self) -> bool:
        return self.field_count() == 0


@dataclass
class VehicleInterest(_Category):
    make: str | None = None
    model: str | None = None
    year: str | None = None
    type: str | None = None
    condition: str | None = None


@dataclass
class Budget(_Category):
    total: int | None = None
    monthly_payment: int | None = None
    down_payment: int | None = None
    payment_method: str | None = None


@dataclass
class Timeline(_Category):
    urgency: Urgency
    keyword: str


@dataclass
class TradeIn(_Category):
    has_trade_in: bool = True
    year: str | None = None
    make: str | None = None
    model: str | None = None
    mileage: int | None = None


@dataclass
class ExtractedContext:
    """Structured facts found in a conversation. Absent categories are ``None``."""

    vehicle_interest: VehicleInterest | None = None
    budget: Budget | None = None
    timeline: Timeline | None = None
    trade_in: TradeIn | None = None

    def categories(self) -> Iterator[tuple[str, _Category]]:
        """Yield ``(category_name, data)`` for every populated category."""

        for item in fields(self):
            value = getattr(self, item.name)
            if value is not None:
                yield item.name, value

    def as_dict(self) -> dict[str, dict[str, Any]]:
        return {name: data.as_dict() for name, data in self.categories()}

    @property
    def urgency(self) -> Urgency | None:
        return self.timeline.urgency if self.timeline else None

    def is_empty(self) -> bool:
        return not any(True for _ in self.categories())

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, Any]]) -> "ExtractedContext":
        """Rebuild a context from its :meth:`as_dict` form (e.g. a stored row)."""

        context = cls()
        if data.get("vehicle_interest"):
            context.vehicle_interest = VehicleInterest(**data["vehicle_interest"])
        if data.get("budget"):
            context.budget = Budget(**data["budget"])
        timeline = data.get("timeline")
        if timeline and timeline.get("urgency"):
            context.timeline = Timeline(
                urgency=Urgency(timeline["urgency"]), keyword=timeline.get("keyword", "")
            )
        if data.get("trade_in"):
            context.trade_in = TradeIn(**data["trade_in"])
        return context


class ContextExtractor:
    """Derive an :class:`ExtractedContext` from a message history."""

    def extract(self, messages) -> ExtractedContext:
        text = customer_blob(messages)
        if not text:
            return ExtractedContext()

        context = ExtractedContext(
            vehicle_interest=self.extract_vehicle_interest(text),
            budget=self.extract_budget(text),
            timeline=self.extract_timeline(text),
            trade_in=self.extract_trade_in(text),
        )
        logger.debug(
            "Context extracted",
            extra={"categories": [name for name, _ in context.categories()]},
        )
        return context

    # Vehicle -------------------------------------------------------------------
    def extract_vehicle_interest(self, text: str) -> VehicleInterest | None:
        text = text.lower()
        result = VehicleInterest()

        specific = _SPECIFIC_VEHICLE.search(text)
        if specific:
            year, make, model = specific.groups()
            if year:
                result.year = year
            if make in _MAKE_DISPLAY:
                result.make = _display_make(make)
                if model not in _NOT_A_MODEL:
                    result.model = _display_model(model)

        if result.year is None:
            year_make = _YEAR_MAKE.search(text)
            if year_make:
                result.year = year_make.group(1)

        match = _BODY_TYPE.search(text)
        if match:
            result.type = match.group(1)
        match = _CONDITION.search(text)
        if match:
            result.condition = match.group(1)
        match = _MAKE.search(text)
        if match and result.make is None:
            result.make = _display_make(match.group(1))
        match = _MODEL.search(text)
        if match:
            result.model = _display_model(match.group(1))

        return None if result.is_empty() else result

    # Budget --------------------------------------------------------------------
    def extract_budget(self, text: str) -> Budget | None:
        text = text.lower()
        result = Budget()

        match = _DOLLAR_TOTAL.search(text)
        if match:
            result.total = _amount(match.group(1), match.group(2))
        if result.total is None:
            match = _BARE_THOUSANDS.search(text)
            if match:
                result.total = _amount(match.group(1), "k")
        if result.total is None:
            match = _STATED_BUDGET.search(text)
            if match:
                result.total = _amount(match.group(1), match.group(2))

        match = _MONTHLY.search(text)
        if match:
            result.monthly_payment = _amount(match.group(1))
        match = _DOWN_PAYMENT.search(text)
        if match:
            result.down_payment = _amount(match.group(1), match.group(2))
        match = _PAYMENT_METHOD.search(text)
        if match:
            result.payment_method = match.group(1)

        return None if result.is_empty() else result

    # Timeline ------------------------------------------------------------------
    def extract_timeline(self, text: str) -> Timeline | None:
        text = text.lower()
        for urgency, pattern in _TIMELINE_PATTERNS:
            match = pattern.search(text)
            if match:
                return Timeline(urgency=urgency, keyword=match.group(1))
        return None

    # Trade-in ------------------------------------------------------------------
    def extract_trade_in(self, text: str) -> TradeIn | None:
        text = text.lower()
        phrase = _TRADE_PHRASE.search(text)
        if not phrase:
            return None

        result = TradeIn(has_trade_in=True)
        clause = re.split(r"[.!?]", text[phrase.end():], maxsplit=1)[0]
        vehicle = _TRADE_VEHICLE.search(clause)
        if vehicle is None:
            # "my 2015 honda civic ... to trade in" puts the car before the phrase
            vehicle = re.search(
                rf"\bmy\s+(?:({_YEAR})\s+)?({_MAKES})(?:\s+([\w-]+))?", text
            )
        if vehicle is None:
            vehicle = _CURRENT_VEHICLE.search(text)
        if vehicle:
            year, make, model = vehicle.groups()
            result.year = year
            result.make = _display_make(make)
            if model and model not in _NOT_A_MODEL:
                result.model = _display_model(model)

        mileage = _MILEAGE.search(text)
        if mileage:
            raw = mileage.group(1).replace(" ", "")
            if raw.endswith("k"):
                result.mileage = int(raw[:-1]) * 1000
            else:
                result.mileage = int(raw.replace(",", "").replace(".", ""))
        return result
