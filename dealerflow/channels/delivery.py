"""Outbound reply delivery across channels."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from .base import ChannelAdapter, DeliveryError

logger = logging.getLogger(__name__)


def channel_name(channel: Any) -> str:
    """Normalise a channel given as a string or a :class:`Channel` member."""

    return str(getattr(channel, "value", channel)).lower()


class ReplyDelivery(Protocol):
    def deliver(self, channel: str, destination: str, text: str, **options: Any) -> bool: ...

    def send(self, channel: str, destination: str, text: str, **options: Any) -> None: ...


class ChannelReplyDelivery:
    """Route replies to the adapter registered for the channel.

    :meth:`deliver` is used on the customer-facing path and never raises;
    :meth:`send` raises :class:`DeliveryError` so background jobs can retry.
    """

    def __init__(self, adapters: Mapping[str, ChannelAdapter]) -> None:
        self._adapters = dict(adapters)

    def send(self, channel: str, destination: str, text: str, **options: Any) -> None:
        name = channel_name(channel)
        adapter = self._adapters.get(name)
        if adapter is None:
            raise DeliveryError(name, "no adapter configured")
        adapter.send(destination, text, **options)

    def deliver(self, channel: str, destination: str, text: str, **options: Any) -> bool:
        try:
            self.send(channel, destination, text, **options)
        except DeliveryError as exc:
            logger.error("Reply delivery failed: %s", exc, extra={"channel": channel_name(channel)})
            return False
        except Exception:
            logger.exception("Unexpected reply delivery failure on %s", channel)
            return False
        return True
