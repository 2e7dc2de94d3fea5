"""
Base channel interface.

All channels must implement this interface.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from enum import Enum

from ..models import InboundMessage, OutboundMessage


class ChannelHealth(str, Enum):
    """Health of a channel connection."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


class Channel(ABC):
    """
    Base class for channels.

    Channels receive user messages and deliver replies. ``listen`` yields
    messages until the channel is closed; it may raise ChannelError when
    the connection drops, after which the gateway calls it again.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """
        Get the channel name.

        Returns:
            Channel name used in subjects and logs.
        """

    @abstractmethod
    def listen(self) -> AsyncIterator[InboundMessage]:
        """
        Yield inbound messages.

        Raises:
            ChannelError: If the connection fails.
        """

    @abstractmethod
    async def send(self, message: OutboundMessage) -> None:
        """
        Deliver a reply.

        Args:
            message: Reply to deliver.

        Raises:
            ChannelError: If delivery fails.
        """

    async def health_check(self) -> ChannelHealth:
        """
        Check channel health.

        Returns:
            HEALTHY unless overridden.
        """
        return ChannelHealth.HEALTHY

    async def close(self) -> None:
        """
        Close any resources held by the channel.

        Override if channel needs cleanup.
        """
