"""
In-process queue channel.

Used for embedding the runtime in another program and for tests:
callers ``submit`` messages and read replies from ``replies``.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Mapping
from typing import Any

from ..exceptions import ChannelError
from ..models import InboundMessage, OutboundMessage
from .base import Channel, ChannelHealth

logger = logging.getLogger(__name__)

_CLOSED = object()


class QueueChannel(Channel):
    """Channel backed by asyncio queues."""

    def __init__(self, name: str = "queue", maxsize: int = 0) -> None:
        self._name = name
        self._inbound: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.replies: asyncio.Queue[OutboundMessage] = asyncio.Queue()
        self.sent: list[OutboundMessage] = []
        self._closed = False

    @property
    def name(self) -> str:
        return self._name

    async def submit(
        self,
        user_id: str,
        content: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> InboundMessage:
        """
        Queue an inbound message.

        Raises:
            ChannelError: If the channel is closed.
        """
        if self._closed:
            raise ChannelError(self._name, "channel is closed")
        message = InboundMessage(
            channel=self._name, user_id=user_id, content=content, metadata=metadata or {}
        )
        await self._inbound.put(message)
        return message

    async def listen(self) -> AsyncIterator[InboundMessage]:
        while True:
            item = await self._inbound.get()
            if item is _CLOSED:
                return
            logger.debug(f"📥 {self._name} <- {item.user_id}")
            yield item

    async def send(self, message: OutboundMessage) -> None:
        if self._closed:
            raise ChannelError(self._name, "channel is closed")
        self.sent.append(message)
        await self.replies.put(message)
        logger.debug(f"📤 {self._name} -> {message.user_id}")

    async def next_reply(self, timeout: float = 5.0) -> OutboundMessage:
        """Wait for the next delivered reply."""
        return await asyncio.wait_for(self.replies.get(), timeout=timeout)

    async def health_check(self) -> ChannelHealth:
        return ChannelHealth.UNHEALTHY if self._closed else ChannelHealth.HEALTHY

    async def close(self) -> None:
        if not self._closed:
            self._closed = True
            await self._inbound.put(_CLOSED)

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "QueueChannel":
        return cls(name=config.get("name", "queue"), maxsize=int(config.get("maxsize", 0)))
