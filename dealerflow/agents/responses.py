"""Response parameter defaults for reply generation."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any


class ResponseParameterStore:
    """Maintain provider specific response parameter defaults.

    Replies are sent as SMS, so token budgets are kept small.
    """

    _DEFAULTS: Mapping[str, dict[str, Any]] = {
        "openai": {"temperature": 0.7, "max_tokens": 200},
    }

    def __init__(self, overrides: Mapping[str, Mapping[str, Any]] | None = None):
        self._defaults: dict[str, dict[str, Any]] = {
            provider: dict(params) for provider, params in self._DEFAULTS.items()
        }
        if overrides:
            for provider, params in overrides.items():
                merged = self._defaults.setdefault(provider.lower(), {})
                merged.update(params)

    def defaults_for_provider(self, provider: str) -> dict[str, Any]:
        """Return defaults for ``provider``."""

        return dict(
            self._defaults.get(provider.lower(), {"temperature": 0.7, "max_tokens": 200})
        )
