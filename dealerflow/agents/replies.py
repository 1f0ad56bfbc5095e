"""Reply generation with bounded retries and a deterministic fallback."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from .providers import ChatMessage, CompletionProvider, ProviderError, RateLimitedError

logger = logging.getLogger(__name__)

REPLY_WINDOW = 10
MAX_ATTEMPTS = 3

FALLBACK_PRICING = "I'd love to help with pricing! What vehicle are you interested in? I can get you exact numbers."
FALLBACK_TEST_DRIVE = "I can help schedule a test drive! What day works best for you this week?"
FALLBACK_TRADE_IN = "We'd be happy to look at your trade-in! What are you currently driving?"
FALLBACK_GREETING = "Thanks for reaching out! I'm here to help you find the perfect vehicle. What are you looking for?"


@dataclass(frozen=True)
class GeneratedReply:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None
    used_fallback: bool = False

    def as_metadata(self) -> dict[str, object]:
        return {
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "model": self.model,
            "fallback": self.used_fallback,
        }


def fallback_reply(messages) -> str:
    """Pick a canned reply from keywords in the last message."""

    last = messages[-1].content.lower() if messages else ""
    if "price" in last or "cost" in last:
        return FALLBACK_PRICING
    if "test drive" in last or "appointment" in last:
        return FALLBACK_TEST_DRIVE
    if "trade" in last:
        return FALLBACK_TRADE_IN
    return FALLBACK_GREETING


def to_chat_messages(messages) -> list[ChatMessage]:
    """Map stored messages to provider roles (customer is the user)."""

    return [
        ChatMessage(role="user" if m.role == "customer" else "assistant", content=m.content)
        for m in messages
    ]


class ReplyGenerator:
    """Ask the completion provider for a reply, never raising on provider failure."""

    def __init__(
        self,
        provider: CompletionProvider | None,
        *,
        window: int = REPLY_WINDOW,
        max_attempts: int = MAX_ATTEMPTS,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._provider = provider
        self._window = window
        self._max_attempts = max_attempts
        self._sleep = sleep

    def generate(self, messages: Sequence, system_prompt: str) -> GeneratedReply:
        recent = list(messages)[-self._window:]
        if self._provider is None:
            logger.warning("No completion provider configured, using fallback reply")
            return GeneratedReply(content=fallback_reply(recent), used_fallback=True)

        chat = to_chat_messages(recent)
        last_error: Exception | None = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                completion = self._provider.complete(chat, system_prompt)
            except RateLimitedError as exc:
                last_error = exc
                if attempt < self._max_attempts:
                    delay = 2**attempt
                    logger.warning(
                        "Completion provider rate limited, backing off %ss (attempt %s)",
                        delay,
                        attempt,
                    )
                    self._sleep(delay)
                continue
            except ProviderError as exc:
                last_error = exc
                if not exc.retryable:
                    logger.error("Non-retryable completion error: %s", exc)
                    break
                logger.error("Completion provider error on attempt %s: %s", attempt, exc)
                continue
            except Exception as exc:
                last_error = exc
                logger.exception("Unexpected completion failure on attempt %s", attempt)
                continue

            if not completion.text:
                last_error = ProviderError("completion", "generate", "empty reply")
                logger.error("Completion provider returned an empty reply on attempt %s", attempt)
                continue
            logger.debug(
                "Reply generated",
                extra={
                    "attempt": attempt,
                    "input_tokens": completion.input_tokens,
                    "output_tokens": completion.output_tokens,
                },
            )
            return GeneratedReply(
                content=completion.text,
                input_tokens=completion.input_tokens,
                output_tokens=completion.output_tokens,
                model=completion.model,
            )

        logger.error("Reply generation failed, using fallback: %s", last_error)
        return GeneratedReply(content=fallback_reply(recent), used_fallback=True)
