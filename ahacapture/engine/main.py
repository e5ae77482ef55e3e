"""Daemon process: serves the capture engine over HTTP."""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Optional

from aiohttp import web
from loguru import logger

from .api import create_api_app
from .config import Config
from .context import EngineContext


LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def setup_logging(log_dir: Optional[Path] = None, level: str = "INFO") -> None:
    """Colored stderr sink plus a rotating debug log file."""
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "ahacapture.log",
            rotation="1 day",
            retention="7 days",
            level="DEBUG"
        )


class CaptureDaemon:
    """Runs the engine and its HTTP API until stopped."""

    def __init__(self, config: Config):
        self.config = config
        self.engine = EngineContext(config)
        self.api_runner: Optional[web.AppRunner] = None
        self.api_site: Optional[web.TCPSite] = None
        self._stopped = asyncio.Event()

    async def start(self) -> None:
        logger.info("Starting capture daemon...")
        # Subscribe first so the startup degraded-mode report is not missed
        self.engine.bus.subscribe("*.failed", self._on_failure)
        await self.engine.start()

        app = create_api_app(self.engine)
        self.api_runner = web.AppRunner(app)
        await self.api_runner.setup()
        self.api_site = web.TCPSite(self.api_runner, self.config.api.host, self.config.api.port)
        await self.api_site.start()

        logger.info(f"API server started on http://{self.config.api.host}:{self.config.api.port}")

    async def stop(self) -> None:
        logger.info("Stopping capture daemon...")
        if self.api_site:
            await self.api_site.stop()
        if self.api_runner:
            await self.api_runner.cleanup()
        await self.engine.close()
        self._stopped.set()
        logger.info("Capture daemon stopped")

    async def wait(self) -> None:
        await self._stopped.wait()

    async def _on_failure(self, event) -> None:
        logger.warning(f"{event.type}: {event.data.get('message')}")


async def main(config_path: Optional[str] = None) -> None:
    """Main entry point for the daemon."""
    try:
        config = Config.load(Path(config_path) if config_path else None)
    except (OSError, ValueError) as e:
        setup_logging()
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.log_dir)
    daemon = CaptureDaemon(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(_shutdown(daemon, s)))

    try:
        await daemon.start()
        await daemon.wait()
    except OSError as e:
        logger.error(f"Daemon error: {e}")
        await daemon.stop()


async def _shutdown(daemon: CaptureDaemon, sig: signal.Signals) -> None:
    logger.info(f"Received signal {sig.name}, shutting down...")
    await daemon.stop()


if __name__ == "__main__":
    asyncio.run(main())
