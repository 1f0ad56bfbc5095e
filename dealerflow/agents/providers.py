"""Completion provider abstraction and the OpenAI implementation."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from .responses import ResponseParameterStore

logger = logging.getLogger(__name__)


class ProviderError(RuntimeError):
    """Failure reported by an external provider."""

    def __init__(
        self,
        service: str,
        operation: str,
        message: str,
        *,
        retryable: bool = True,
    ) -> None:
        super().__init__(f"{service}.{operation}: {message}")
        self.service = service
        self.operation = operation
        self.retryable = retryable


class RateLimitedError(ProviderError):
    def __init__(self, service: str, operation: str, message: str = "rate limited"):
        super().__init__(service, operation, message, retryable=True)


class InvalidRequestError(ProviderError):
    """Bad credentials or a malformed request; retrying will not help."""

    def __init__(self, service: str, operation: str, message: str = "invalid request"):
        super().__init__(service, operation, message, retryable=False)


@dataclass(frozen=True)
class ChatMessage:
    role: str
    content: str


@dataclass(frozen=True)
class Completion:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str | None = None


class CompletionProvider(Protocol):
    """Anything able to turn a chat history into a reply."""

    def complete(
        self, messages: Sequence[ChatMessage], system_prompt: str
    ) -> Completion: ...


@dataclass(frozen=True)
class ProviderCredentials:
    """Container for credentials resolved for a provider."""

    provider: str
    api_key: str | None
    extras: dict[str, str] = field(default_factory=dict)


class ProviderRegistry:
    """Resolve provider credentials from environment or explicit overrides."""

    _DEFAULT_ENV_MAP: Mapping[str, str] = {
        "openai": "OPENAI_API_KEY",
        "twilio": "TWILIO_AUTH_TOKEN",
        "sendgrid": "SENDGRID_API_KEY",
        "gohighlevel": "GHL_API_KEY",
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, str]] | None = None):
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}

    def get_credentials(self, provider: str) -> ProviderCredentials:
        """Return credentials for ``provider``.

        Explicit overrides win over environment variables.
        """

        key = provider.lower()
        if key in self._overrides:
            override = self._overrides[key]
            return ProviderCredentials(
                provider=provider,
                api_key=override.get("api_key"),
                extras={k: v for k, v in override.items() if k != "api_key"},
            )
        env_var = self._DEFAULT_ENV_MAP.get(key)
        api_key = os.getenv(env_var) if env_var else None
        return ProviderCredentials(provider=provider, api_key=api_key)


class OpenAICompletionProvider:
    """Chat completions through the official ``openai`` client.

    SDK exceptions are translated into :class:`RateLimitedError` and
    :class:`InvalidRequestError` so callers never depend on the SDK directly.
    """

    provider_name = "openai"

    def __init__(
        self,
        *,
        model: str,
        client: Any | None = None,
        api_key: str | None = None,
        timeout: float = 20.0,
        parameters: ResponseParameterStore | None = None,
    ) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client
        self.model = model
        self._parameters = parameters or ResponseParameterStore()

    def complete(
        self, messages: Sequence[ChatMessage], system_prompt: str
    ) -> Completion:
        import openai

        payload: list[dict[str, str]] = [{"role": "system", "content": system_prompt}]
        payload.extend({"role": m.role, "content": m.content} for m in messages)
        params = self._parameters.defaults_for_provider(self.provider_name)
        try:
            response = self._client.chat.completions.create(
                model=self.model, messages=payload, **params
            )
        except openai.RateLimitError as exc:
            raise RateLimitedError("openai", "complete", str(exc)) from exc
        except (
            openai.AuthenticationError,
            openai.BadRequestError,
            openai.PermissionDeniedError,
        ) as exc:
            raise InvalidRequestError("openai", "complete", str(exc)) from exc
        except openai.OpenAIError as exc:
            raise ProviderError("openai", "complete", str(exc)) from exc

        text = (response.choices[0].message.content or "").strip()
        usage = getattr(response, "usage", None)
        return Completion(
            text=text,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            model=getattr(response, "model", None) or self.model,
        )
