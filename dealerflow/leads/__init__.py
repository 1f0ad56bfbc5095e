"""Pattern-based analysis of customer messages: context, escalation, booking and scoring."""

from .booking import BookingIntent, BookingIntentDetector
from .context import ContextExtractor, ExtractedContext, Urgency
from .escalation import EscalationEvaluator, EscalationResult
from .scoring import QualificationScorer

__all__ = [
    "BookingIntent",
    "BookingIntentDetector",
    "ContextExtractor",
    "EscalationEvaluator",
    "EscalationResult",
    "ExtractedContext",
    "QualificationScorer",
    "Urgency",
]
