"""Reply agent: prompt composition, completion providers and reply generation."""

from .prompts import DealershipProfile, PromptComposer, PromptContext
from .providers import (
    CompletionProvider,
    InvalidRequestError,
    OpenAICompletionProvider,
    ProviderError,
    RateLimitedError,
)
from .replies import GeneratedReply, ReplyGenerator

__all__ = [
    "CompletionProvider",
    "DealershipProfile",
    "GeneratedReply",
    "InvalidRequestError",
    "OpenAICompletionProvider",
    "PromptComposer",
    "PromptContext",
    "ProviderError",
    "RateLimitedError",
    "ReplyGenerator",
]
