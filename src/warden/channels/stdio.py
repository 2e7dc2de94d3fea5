"""Console channel reading lines from stdin and printing replies."""

import asyncio
import logging
import sys
from collections.abc import AsyncIterator, Mapping
from typing import Any, TextIO

from ..exceptions import ChannelError
from ..models import InboundMessage, OutboundMessage
from .base import Channel, ChannelHealth

logger = logging.getLogger(__name__)


class StdioChannel(Channel):
    """
    Single-user console channel.

    Every non-empty input line becomes one inbound message from
    ``user_id``. End of input ends ``listen``.
    """

    def __init__(
        self,
        name: str = "stdio",
        user_id: str = "console",
        stdin: TextIO | None = None,
        stdout: TextIO | None = None,
    ) -> None:
        self._name = name
        self._user_id = user_id
        self._stdin = stdin or sys.stdin
        self._stdout = stdout or sys.stdout
        self._eof = False

    @property
    def name(self) -> str:
        return self._name

    async def listen(self) -> AsyncIterator[InboundMessage]:
        while True:
            try:
                line = await asyncio.to_thread(self._stdin.readline)
            except (OSError, ValueError) as e:
                raise ChannelError(self._name, f"read failed: {e}") from e
            if not line:
                self._eof = True
                logger.info(f"📥 {self._name} reached end of input")
                return
            content = line.strip()
            if content:
                yield InboundMessage(channel=self._name, user_id=self._user_id, content=content)

    async def send(self, message: OutboundMessage) -> None:
        try:
            await asyncio.to_thread(self._write, message.content)
        except (OSError, ValueError) as e:
            raise ChannelError(self._name, f"write failed: {e}") from e

    def _write(self, content: str) -> None:
        self._stdout.write(f"{content}\n")
        self._stdout.flush()

    async def health_check(self) -> ChannelHealth:
        return ChannelHealth.UNHEALTHY if self._eof else ChannelHealth.HEALTHY

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "StdioChannel":
        return cls(name=config.get("name", "stdio"), user_id=config.get("user_id", "console"))
