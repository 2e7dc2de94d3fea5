"""
Warden Entry Point.

Loads the runtime configuration, bootstraps the capability graph and
serves the configured channels until interrupted.

Usage:
    warden

Environment Variables:
    WARDEN_CONFIG_PATH: Path to the YAML configuration (default: config/warden.yaml)
    WARDEN_LOG_LEVEL: Logging level (default: INFO)
    WARDEN_DEFAULT_CHANNEL: Channel served when none is configured (default: stdio)
    WARDEN_REAP_INTERVAL_SECONDS: Idle-session sweep interval (default: 60)
    WARDEN_SHUTDOWN_GRACE_SECONDS: Grace period for in-flight turns (default: 10)
"""

import asyncio
import logging
import signal

from dotenv import load_dotenv

from .bootstrap import Runtime, bootstrap
from .config.parser import ConfigParser
from .config.settings import WardenSettings, get_settings
from .gateway import ChannelGateway
from .registry import CapabilityKind

logger = logging.getLogger("warden")


class WardenApp:
    """
    Main application.

    Manages the lifecycle of the runtime, the channel gateway and the
    idle-session reaper.
    """

    def __init__(self, settings: WardenSettings | None = None) -> None:
        """Initialize the application."""
        self._settings = settings or get_settings()
        self._runtime: Runtime | None = None
        self._gateway: ChannelGateway | None = None
        self._reaper: asyncio.Task | None = None

    @property
    def runtime(self) -> Runtime | None:
        return self._runtime

    @property
    def gateway(self) -> ChannelGateway | None:
        return self._gateway

    async def start(self) -> None:
        """
        Start the application.

        Raises:
            FileNotFoundError: If the configuration file is missing.
            ConfigError: If the configuration is invalid.
            StartupError: If a mandatory capability fails.
        """
        logger.info("🚀 Warden starting...")
        logger.info("📋 Configuration:")
        logger.info(f"   📄 Config: {self._settings.config_path}")
        logger.info(f"   📡 Default channel: {self._settings.default_channel}")
        logger.info(f"   🧹 Reap interval: {self._settings.reap_interval_seconds}s")

        config = ConfigParser(self._settings.config_path).load()
        self._runtime = await bootstrap(config)

        channels = list(self._runtime.channels)
        if not channels:
            logger.info(
                f"📡 No channels configured, using '{self._settings.default_channel}'"
            )
            channels.append(
                self._runtime.registry.resolve(
                    CapabilityKind.CHANNEL,
                    self._settings.default_channel,
                    {"name": self._settings.default_channel},
                )
            )

        self._gateway = ChannelGateway(self._runtime.orchestrator, channels)
        await self._gateway.start()
        self._reaper = asyncio.create_task(self._reap_loop())
        logger.info("✅ Warden ready")

    async def _reap_loop(self) -> None:
        """Background task closing idle sessions."""
        while True:
            await asyncio.sleep(self._settings.reap_interval_seconds)
            if self._runtime is not None:
                self._runtime.sessions.reap_idle()

    async def wait_closed(self) -> None:
        """Wait until every channel has stopped listening."""
        if self._gateway is not None:
            await self._gateway.wait_closed()

    async def stop(self) -> None:
        """Stop the gateway, then release runtime resources."""
        logger.info("🛑 Warden shutting down...")

        if self._reaper is not None:
            self._reaper.cancel()
            await asyncio.gather(self._reaper, return_exceptions=True)
            self._reaper = None

        if self._gateway is not None:
            await self._gateway.stop(self._settings.shutdown_grace_seconds)
            self._gateway = None

        if self._runtime is not None:
            await self._runtime.close()
            self._runtime = None

        logger.info("👋 Warden stopped")


async def main() -> None:
    """Main entry point."""
    app = WardenApp()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler() -> None:
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()

        stop_waiter = asyncio.create_task(stop_event.wait())
        channels_done = asyncio.create_task(app.wait_closed())
        await asyncio.wait({stop_waiter, channels_done}, return_when=asyncio.FIRST_COMPLETED)
        for task in (stop_waiter, channels_done):
            task.cancel()

    except KeyboardInterrupt:
        logger.info("🛑 Received keyboard interrupt")
    finally:
        await app.stop()


def run() -> None:
    """Console script entry point."""
    load_dotenv()
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
