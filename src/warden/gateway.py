"""
Channel gateway.

Supervises one listener task per channel and dispatches every inbound
message to the orchestrator in its own task. A listener that fails with
ChannelError is restarted with exponential backoff. A listener that ends
normally (end of input, closed queue) is not restarted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable

from .channels.base import Channel, ChannelHealth
from .exceptions import ChannelError, WardenError
from .models import InboundMessage
from .orchestrator.loop import Orchestrator

logger = logging.getLogger(__name__)


class ChannelGateway:
    """
    Connects channels to the orchestrator.

    Usage:
        gateway = ChannelGateway(orchestrator, [QueueChannel()])
        await gateway.start()
        ...
        await gateway.stop(grace_seconds=10)
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        channels: Iterable[Channel],
        restart_backoff_base: float = 1.0,
        restart_backoff_max: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """
        Initialize the gateway.

        Args:
            orchestrator: Orchestrator that handles messages.
            channels: Channels to supervise; names must be unique.
            restart_backoff_base: First restart delay after a channel failure.
            restart_backoff_max: Upper bound for restart delays.
            sleep: Awaitable sleep, injectable for tests.

        Raises:
            ValueError: If two channels share a name.
        """
        self._orchestrator = orchestrator
        self._channels: dict[str, Channel] = {}
        for channel in channels:
            if channel.name in self._channels:
                raise ValueError(f"Duplicate channel name: {channel.name}")
            self._channels[channel.name] = channel
        self._backoff_base = restart_backoff_base
        self._backoff_max = restart_backoff_max
        self._sleep = sleep
        self._supervisors: dict[str, asyncio.Task] = {}
        self._in_flight: set[asyncio.Task] = set()
        self._running = False

    @property
    def channels(self) -> dict[str, Channel]:
        return dict(self._channels)

    @property
    def running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def start(self) -> None:
        """Start one supervisor task per channel."""
        if self._running:
            return
        self._running = True
        for name, channel in self._channels.items():
            self._supervisors[name] = asyncio.create_task(
                self._supervise(channel), name=f"channel-{name}"
            )
            logger.info(f"📡 Channel '{name}' listening")

    def restart_delay(self, failures: int) -> float:
        return min(self._backoff_base * (2 ** (failures - 1)), self._backoff_max)

    async def _supervise(self, channel: Channel) -> None:
        failures = 0
        while self._running:
            try:
                async for message in channel.listen():
                    failures = 0
                    self._dispatch(channel, message)
                logger.info(f"📡 Channel '{channel.name}' finished listening")
                return
            except ChannelError as e:
                failures += 1
                delay = self.restart_delay(failures)
                logger.warning(
                    f"🔄 Channel '{channel.name}' failed ({e}), restarting in {delay:.1f}s"
                )
                await self._sleep(delay)
            except Exception as e:
                # Not a transport failure; restarting would repeat the bug.
                logger.exception(f"❌ Channel '{channel.name}' stopped on unexpected error: {e}")
                return

    def _dispatch(self, channel: Channel, message: InboundMessage) -> None:
        logger.info(f"📥 {channel.name}:{message.user_id} message {message.message_id}")
        task = asyncio.create_task(self._handle(channel, message))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _handle(self, channel: Channel, message: InboundMessage) -> None:
        try:
            reply = await self._orchestrator.handle_message(message)
        except WardenError as e:
            logger.error(f"❌ Failed to handle message {message.message_id}: {e}")
            return
        except Exception as e:
            logger.exception(f"❌ Unexpected error handling message {message.message_id}: {e}")
            return

        try:
            await channel.send(reply)
            logger.info(f"📤 {channel.name}:{reply.user_id} reply to {message.message_id}")
        except ChannelError as e:
            logger.error(f"❌ Failed to deliver reply on '{channel.name}': {e}")

    async def wait_closed(self) -> None:
        """Wait until every listener has ended and in-flight messages are handled."""
        if self._supervisors:
            await asyncio.gather(*self._supervisors.values(), return_exceptions=True)
        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def stop(self, grace_seconds: float = 10.0) -> None:
        """
        Stop listening and close channels.

        In-flight messages get ``grace_seconds`` to finish before they
        are cancelled.

        Args:
            grace_seconds: Time allowed for in-flight messages.
        """
        logger.info("🛑 Gateway shutting down...")
        self._running = False

        for task in self._supervisors.values():
            task.cancel()
        await asyncio.gather(*self._supervisors.values(), return_exceptions=True)
        self._supervisors.clear()

        if self._in_flight:
            pending = list(self._in_flight)
            _, still_running = await asyncio.wait(pending, timeout=grace_seconds)
            for task in still_running:
                task.cancel()
            if still_running:
                logger.warning(f"⚠️ Cancelled {len(still_running)} in-flight messages")
                await asyncio.gather(*still_running, return_exceptions=True)

        for channel in self._channels.values():
            try:
                await channel.close()
            except ChannelError as e:
                logger.warning(f"⚠️ Failed to close channel '{channel.name}': {e}")

        logger.info("👋 Gateway stopped")

    async def health_check(self) -> dict[str, ChannelHealth]:
        """
        Check every channel.

        Returns:
            Health per channel name. A failing check counts as UNHEALTHY.
        """
        health: dict[str, ChannelHealth] = {}
        for name, channel in self._channels.items():
            try:
                health[name] = await channel.health_check()
            except ChannelError as e:
                logger.warning(f"⚠️ Health check failed for '{name}': {e}")
                health[name] = ChannelHealth.UNHEALTHY
        return health
