"""Service for managing periodic background tasks."""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict

logger = logging.getLogger(__name__)


class SchedulerService:
    """Service for managing periodic background tasks.

    The sync task runs ``sync`` every ``sync_interval`` seconds, skipping
    the tick while ``is_online`` reports offline.
    """

    def __init__(
        self,
        sync: Callable[[], Awaitable[Any]],
        is_online: Callable[[], bool],
        sync_interval: float = 300.0,
        enable_background_sync: bool = True,
    ):
        """Initialize the service with the sync callable and connectivity check."""
        self.sync = sync
        self.is_online = is_online
        self.sync_interval = sync_interval
        self.enable_background_sync = enable_background_sync
        self.tasks: Dict[str, asyncio.Task] = {}
        self.running = False

    async def start(self) -> None:
        """Start the scheduler service."""
        if self.running:
            return

        self.running = True
        logger.info("Starting scheduler service...")

        if self.enable_background_sync:
            # First tick one full interval after start
            self.schedule_task(
                "periodic_sync",
                self._sync_if_online,
                self.sync_interval,
                initial_delay=self.sync_interval,
            )
        else:
            logger.info("Background sync disabled")

    async def stop(self) -> None:
        """Stop the scheduler service."""
        if not self.running:
            return

        self.running = False
        logger.info("Stopping scheduler service...")

        # Cancel all tasks
        for task in self.tasks.values():
            task.cancel()

        # Wait for tasks to complete
        await asyncio.gather(*self.tasks.values(), return_exceptions=True)
        self.tasks.clear()

    async def _sync_if_online(self) -> None:
        if not self.is_online():
            logger.debug("Offline; skipping periodic sync")
            return
        await self.sync()

    def schedule_task(
        self,
        name: str,
        coro: Callable[..., Awaitable[Any]],
        interval: float,
        *args: Any,
        initial_delay: float = 0.0,
        **kwargs: Any,
    ) -> None:
        """Run ``coro(*args, **kwargs)`` every ``interval`` seconds while running."""
        if name in self.tasks:
            logger.warning("Task %s already exists", name)
            return

        async def run_task() -> None:
            delay = initial_delay
            while self.running:
                try:
                    await asyncio.sleep(delay)
                    delay = interval
                    await coro(*args, **kwargs)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("Error in task %s: %s", name, str(e))

        self.tasks[name] = asyncio.create_task(run_task())
        logger.info("Scheduled task %s every %.1fs", name, interval)

    def cancel_task(self, name: str) -> None:
        """Cancel a scheduled task."""
        task = self.tasks.pop(name, None)
        if task is None:
            logger.warning("Task %s does not exist", name)
            return

        task.cancel()
        logger.info("Cancelled task: %s", name)
