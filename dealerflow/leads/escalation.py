"""Decide when a conversation must be handed to a human.

Rules are kept in :data:`ESCALATION_RULES` and evaluated top-down; the first
rule that fires wins. Evaluation only looks at customer messages and must run
before any model call is made for the turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Sequence

from .text import contains_any, customer_texts, normalize, similarity

logger = logging.getLogger(__name__)

RECENT_WINDOW = 5
REPEAT_SIMILARITY = 0.8
LONG_CONVERSATION_MESSAGES = 15

FRUSTRATION_KEYWORDS = (
    "speak to a person",
    "speak to someone",
    "talk to a person",
    "talk to someone",
    "real person",
    "real human",
    "human agent",
    "human being",
    "not a bot",
    "stop texting me",
    "stop messaging",
    "leave me alone",
    "this is ridiculous",
    "this is stupid",
    "waste of time",
    "terrible",
    "worst experience",
    "never coming back",
    "horrible",
    "awful",
    "you suck",
    "useless",
    "incompetent",
    "manager",
    "supervisor",
    "complaint",
    "complain",
    "lawyer",
    "attorney",
    "better business bureau",
    "bbb",
)

EXPLICIT_ESCALATION_KEYWORDS = (
    "speak to a human",
    "talk to a human",
    "transfer me",
    "connect me",
    "real person",
    "live person",
    "live agent",
    "human please",
    "get me someone",
    "let me speak",
    "operator",
    "representative",
)

COMPLEX_TOPIC_KEYWORDS = (
    "warranty claim",
    "recall",
    "lemon law",
    "accident",
    "insurance claim",
    "legal",
    "lawsuit",
    "refund",
    "return the car",
    "dispute",
    "mechanical issue",
    "defect",
    "broke down",
    "not working",
)


@dataclass(frozen=True)
class EscalationResult:
    should_escalate: bool
    reason: str | None = None
    confidence: float = 0.0


NO_ESCALATION = EscalationResult(should_escalate=False)


@dataclass(frozen=True)
class _Signals:
    """Pre-computed view of the customer side of a conversation."""

    recent: tuple[str, ...]
    recent_text: str
    total_customer_messages: int

    @property
    def frustration(self) -> list[str]:
        return contains_any(self.recent_text, FRUSTRATION_KEYWORDS)

    @property
    def repeated(self) -> bool:
        return has_repeated_messages(self.recent)


@dataclass(frozen=True)
class EscalationRule:
    name: str
    confidence: float
    check: Callable[[_Signals], str | None]


def has_repeated_messages(contents: Sequence[str]) -> bool:
    """True when two adjacent messages are identical or nearly so."""

    normalized = [normalize(c) for c in contents]
    for previous, current in zip(normalized, normalized[1:]):
        if previous == current or similarity(previous, current) >= REPEAT_SIMILARITY:
            return True
    return False


def _explicit_request(signals: _Signals) -> str | None:
    matches = contains_any(signals.recent_text, EXPLICIT_ESCALATION_KEYWORDS)
    if matches:
        return f'Customer explicitly requested human agent: "{matches[0]}"'
    return None


def _multiple_frustration(signals: _Signals) -> str | None:
    matches = signals.frustration
    if len(matches) >= 2:
        return f"Customer showing frustration: {', '.join(matches)}"
    return None


def _frustration_and_repetition(signals: _Signals) -> str | None:
    if len(signals.frustration) == 1 and signals.repeated:
        return "Customer frustrated and repeating themselves"
    return None


def _complex_topic(signals: _Signals) -> str | None:
    matches = contains_any(signals.recent_text, COMPLEX_TOPIC_KEYWORDS)
    if matches:
        return f'Complex topic requiring human: "{matches[0]}"'
    return None


def _repetition(signals: _Signals) -> str | None:
    if len(signals.recent) >= 3 and signals.repeated:
        return "Customer repeating themselves and may need human assistance"
    return None


def _long_conversation(signals: _Signals) -> str | None:
    if signals.total_customer_messages >= LONG_CONVERSATION_MESSAGES:
        return "Long conversation that may benefit from human follow-up"
    return None


ESCALATION_RULES: tuple[EscalationRule, ...] = (
    EscalationRule("explicit_request", 0.95, _explicit_request),
    EscalationRule("multiple_frustration", 0.85, _multiple_frustration),
    EscalationRule("frustration_with_repetition", 0.80, _frustration_and_repetition),
    EscalationRule("complex_topic", 0.75, _complex_topic),
    EscalationRule("repetition", 0.70, _repetition),
    EscalationRule("long_conversation", 0.55, _long_conversation),
)


class EscalationEvaluator:
    """Evaluate :data:`ESCALATION_RULES` against a message history."""

    def __init__(self, rules: Sequence[EscalationRule] = ESCALATION_RULES) -> None:
        self._rules = tuple(rules)

    def evaluate(self, messages) -> EscalationResult:
        texts = customer_texts(messages)
        if not texts:
            return NO_ESCALATION

        recent = tuple(texts[-RECENT_WINDOW:])
        signals = _Signals(
            recent=recent,
            recent_text=" ".join(recent).lower(),
            total_customer_messages=len(texts),
        )
        for rule in self._rules:
            reason = rule.check(signals)
            if reason:
                logger.info(
                    "Escalation triggered: %s", rule.name, extra={"reason": reason}
                )
                return EscalationResult(
                    should_escalate=True, reason=reason, confidence=rule.confidence
                )
        return NO_ESCALATION
