"""System prompt composition for the dealership reply agent."""

from __future__ import annotations

from dataclasses import dataclass, field

from ..leads.context import ExtractedContext

BASE_PROMPT = """You are a friendly, professional car dealership assistant. You help customers find the right vehicle and schedule test drives.

RULES:
- Keep responses under 160 characters (SMS length)
- Ask one question at a time
- Be warm and helpful but concise
- Never give exact prices. Say "I can get you exact pricing" and offer to connect them
- Never make up vehicle availability or specs
- If the customer is frustrated, offer to connect them with a human
- Extract: vehicle interest, budget range, timeline, trade-in info
- When the customer is ready, offer to schedule a test drive

TONE: Friendly, helpful, not pushy. Like a knowledgeable friend at the dealership."""


@dataclass(frozen=True)
class DealershipProfile:
    name: str | None = None
    hours: str | None = None
    personality: str | None = None
    phone: str | None = None


@dataclass
class PromptContext:
    """Conversation facts the reply agent may use to personalise its answer."""

    qualification_score: int | None = None
    extracted: ExtractedContext = field(default_factory=ExtractedContext)


class PromptComposer:
    """Layer the base rules, dealership info and customer context."""

    def __init__(
        self,
        base_prompt: str = BASE_PROMPT,
        custom_prefix: str | None = None,
        hot_lead_score: int = 60,
    ):
        self._base_prompt = (
            f"{custom_prefix} {base_prompt}" if custom_prefix else base_prompt
        )
        self._hot_lead_score = hot_lead_score

    @property
    def base_prompt(self) -> str:
        return self._base_prompt

    def compose(
        self,
        dealership: DealershipProfile | None = None,
        context: PromptContext | None = None,
    ) -> str:
        parts = [self._base_prompt]

        dealership_lines = self._dealership_lines(dealership) if dealership else []
        if dealership_lines:
            parts.append("\nDEALERSHIP INFO:\n" + "\n".join(dealership_lines))

        context_lines = self._context_lines(context) if context else []
        if context_lines:
            parts.append(
                "\nCUSTOMER CONTEXT (use this to personalize your response):\n"
                + "\n".join(context_lines)
            )
        return "\n".join(parts)

    # ------------------------------------------------------------------
    @staticmethod
    def _dealership_lines(dealership: DealershipProfile) -> list[str]:
        lines: list[str] = []
        if dealership.name:
            lines.append(f"You work at {dealership.name}.")
        if dealership.hours:
            lines.append(f"Business hours: {dealership.hours}.")
        if dealership.personality:
            lines.append(f"Dealership personality: {dealership.personality}")
        if dealership.phone:
            lines.append(f"Dealership phone: {dealership.phone}")
        return lines

    def _context_lines(self, context: PromptContext) -> list[str]:
        lines: list[str] = []
        score = context.qualification_score
        if score is not None and score > 0:
            lines.append(f"Lead score: {score}/100")
            if score >= self._hot_lead_score:
                lines.append("This is a HOT lead. Be attentive and move toward booking.")

        extracted = context.extracted
        vehicle = extracted.vehicle_interest
        if vehicle:
            described = [
                v for v in (vehicle.make, vehicle.model, vehicle.type, vehicle.condition) if v
            ]
            if described:
                lines.append(f"Customer interested in: {' '.join(described)}")

        budget = extracted.budget
        if budget:
            if budget.total:
                lines.append(f"Budget: ${budget.total:,}")
            if budget.monthly_payment:
                lines.append(f"Monthly budget: ${budget.monthly_payment:,}/mo")
            if budget.payment_method:
                lines.append(f"Payment: {budget.payment_method}")

        if extracted.timeline:
            lines.append(f"Timeline: {extracted.timeline.urgency.value}")

        if extracted.trade_in:
            lines.append("Customer has a trade-in.")
        return lines
