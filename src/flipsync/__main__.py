"""Main entry point for the sync engine."""
import asyncio
import logging
import signal

from flipsync.app import FlipSync
from flipsync.config import ensure_directories
from flipsync.logging_config import setup_logging

logger = logging.getLogger(__name__)


async def shutdown(sig, loop) -> None:
    """Cleanup tasks tied to the service's shutdown."""
    logger.info("Received exit signal %s...", sig.name)

    tasks = [t for t in asyncio.all_tasks() if t is not asyncio.current_task()]
    for task in tasks:
        task.cancel()

    logger.info("Cancelling %d outstanding tasks", len(tasks))
    await asyncio.gather(*tasks, return_exceptions=True)


def handle_exception(loop, context) -> None:
    """Log exceptions that escaped a task."""
    msg = context.get("exception", context["message"])
    logger.error("Caught exception: %s", msg)


async def main() -> None:
    """Run the sync engine."""
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, lambda s=sig: asyncio.create_task(shutdown(s, loop)))

    loop.set_exception_handler(handle_exception)

    logger.info("Starting sync engine...")
    app = FlipSync()
    await app.start()
    try:
        # Keep the application running
        while True:
            try:
                await asyncio.sleep(1)
            except asyncio.CancelledError:
                break
    finally:
        logger.info("Cleaning up...")
        await app.stop()


if __name__ == "__main__":
    ensure_directories()
    setup_logging("Starting FlipSync ...")

    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, shutting down...")
