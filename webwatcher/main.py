"""Main entry point for the WebWatcher risk service."""

import asyncio
import logging
import signal
import sys

from .api import SecurityApiServer
from .config import Config, load_config, validate_config
from .pipeline import EventSink, ScanPipeline
from .storage import Database

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


class WebWatcherService:
    """Owns the database, event sink, pipeline and API server lifecycle."""

    def __init__(self, config: Config):
        self.config = config
        self._stopped = asyncio.Event()
        self._stop_lock = asyncio.Lock()

        self.database = Database(config.db_path)
        self.sink = EventSink(max_queue=config.event_sink_queue_size, enabled=config.event_sink_enabled)
        self.pipeline = ScanPipeline(config=config, database=self.database, sink=self.sink)
        self.server = SecurityApiServer(config=config, pipeline=self.pipeline, database=self.database)

    async def start(self):
        """Start all components and block until stop() is called."""
        self.config.ensure_dirs()
        await self.database.connect()
        await self.sink.start()
        await self.server.start()
        logger.info("WebWatcher started (heuristics %s)", self.config.heuristics_version)
        await self._stopped.wait()

    async def stop(self):
        """Stop components in reverse start order."""
        async with self._stop_lock:
            if self._stopped.is_set():
                return
            logger.info("Stopping WebWatcher...")
            await self.server.stop()
            await self.sink.stop()
            await self.database.close()
            self._stopped.set()
            logger.info("WebWatcher stopped")


async def run_service():
    """Run the WebWatcher service."""
    config = load_config()

    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        sys.exit(1)

    service = WebWatcherService(config)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))

    try:
        await service.start()
    except KeyboardInterrupt:
        pass
    finally:
        await service.stop()


def main():
    """Entry point."""
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
