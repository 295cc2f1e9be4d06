"""Main application object."""
import asyncio
import logging
import signal
from typing import Optional

from flipsync.config import settings
from flipsync.models.base import SessionLocal, init_db
from flipsync.monitoring import start_monitoring
from flipsync.services.hybrid_storage import HybridStorage
from flipsync.services.persistence_service import LocalPersistenceAdapter
from flipsync.services.remote_client import HttpRemoteClient, RemoteClient


class FlipSync:
    """Main application class.

    Owns the database session, the remote client and the storage engine,
    and drives their lifecycle.
    """

    def __init__(self, remote: Optional[RemoteClient] = None):
        """Initialize the application."""
        self.remote = remote
        self._owns_remote = remote is None
        self.storage: Optional[HybridStorage] = None
        self.running = False
        self.db = None
        self.logger = logging.getLogger(__name__)

    async def start(self) -> None:
        """Start the application."""
        if self.running:
            return

        try:
            # Initialize database
            init_db()
            self.db = SessionLocal()
            self.logger.info("Database initialized")

            if self._owns_remote:
                self.remote = HttpRemoteClient(
                    settings.remote.api_url,
                    token=settings.remote.api_token,
                    timeout=settings.remote.timeout,
                )
            self.logger.info("Remote client ready for %s", settings.remote.api_url)

            if settings.monitoring.enabled:
                start_monitoring(settings.monitoring.port)
                self.logger.info("Metrics exposed on port %d", settings.monitoring.port)

            self.storage = HybridStorage(
                LocalPersistenceAdapter(self.db),
                self.remote,
                settings.sync,
                settings.remote,
            )
            await self.storage.init()
            self.logger.info("Storage engine started")

            self.running = True

        except Exception as e:
            self.logger.error("Failed to start application: %s", str(e))
            await self.stop()
            raise

    async def stop(self) -> None:
        """Stop the application."""
        if not self.running and self.db is None:
            return

        try:
            if self.storage:
                await self.storage.destroy()
                self.storage = None
                self.logger.info("Storage engine stopped")

            if self._owns_remote and self.remote:
                await self.remote.aclose()
                self.remote = None
                self.logger.info("Remote client closed")

            # Close database session
            if self.db:
                self.db.close()
                self.db = None
                self.logger.info("Database session closed")

        finally:
            self.running = False

    def run(self) -> None:
        """Run the application until SIGINT or SIGTERM."""
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, loop.stop)

        try:
            loop.run_until_complete(self.start())
            loop.run_forever()
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
        finally:
            self.logger.info("Shutting down...")
            loop.run_until_complete(self.stop())
            loop.close()


def main() -> None:
    """Main entry point."""
    app = FlipSync()
    app.run()


if __name__ == "__main__":
    main()
