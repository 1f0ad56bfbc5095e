"""Base abstractions for customer messaging channels."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

import requests

from ..conversations.models import InboundMessage


class DeliveryError(RuntimeError):
    """Raised when an outbound message cannot be handed to the channel provider."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(f"{channel}: {message}")
        self.channel = channel


class ChannelAdapter(ABC):
    """Abstract base class encapsulating channel-specific behaviour."""

    #: Lowercase channel identifier used in routes and message metadata.
    channel_name: str

    def __init__(
        self,
        *,
        session: requests.Session | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.session = session or requests.Session()
        self.timeout = timeout

    @abstractmethod
    def parse_incoming(self, payload: Mapping[str, Any]) -> InboundMessage | None:
        """Convert a webhook payload into an :class:`InboundMessage`.

        Returns ``None`` when the payload carries nothing to process.
        """

    @abstractmethod
    def send(self, destination: str, text: str, **options: Any) -> None:
        """Hand ``text`` to the provider for delivery to ``destination``."""

    def _post(self, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.post(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise DeliveryError(self.channel_name, str(exc)) from exc
        return response
