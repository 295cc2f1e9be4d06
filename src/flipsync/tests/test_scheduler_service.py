"""Tests for scheduler service."""
import asyncio
from unittest.mock import AsyncMock

import pytest

from flipsync.services.scheduler_service import SchedulerService


@pytest.fixture
def sync() -> AsyncMock:
    return AsyncMock()


@pytest.mark.asyncio
async def test_start_stop(sync: AsyncMock) -> None:
    """Test starting and stopping the scheduler service."""
    scheduler_service = SchedulerService(sync, lambda: True, sync_interval=60)

    # Start service
    await scheduler_service.start()
    assert scheduler_service.running is True
    assert list(scheduler_service.tasks) == ["periodic_sync"]

    # Stop service
    await scheduler_service.stop()
    assert scheduler_service.running is False
    assert len(scheduler_service.tasks) == 0
    sync.assert_not_awaited()


@pytest.mark.asyncio
async def test_background_sync_disabled(sync: AsyncMock) -> None:
    """Test that no periodic task runs when background sync is off."""
    scheduler_service = SchedulerService(sync, lambda: True, enable_background_sync=False)

    await scheduler_service.start()
    assert scheduler_service.running is True
    assert scheduler_service.tasks == {}

    await scheduler_service.stop()


@pytest.mark.asyncio
async def test_periodic_sync(sync: AsyncMock) -> None:
    """Test that sync runs on every tick."""
    scheduler_service = SchedulerService(sync, lambda: True, sync_interval=0.01)

    await scheduler_service.start()
    await asyncio.sleep(0.1)
    await scheduler_service.stop()

    assert sync.await_count >= 2


@pytest.mark.asyncio
async def test_periodic_sync_skipped_offline(sync: AsyncMock) -> None:
    """Test that ticks are skipped while offline."""
    online = False
    scheduler_service = SchedulerService(sync, lambda: online, sync_interval=0.01)

    await scheduler_service.start()
    await asyncio.sleep(0.05)
    sync.assert_not_awaited()

    online = True
    await asyncio.sleep(0.05)
    await scheduler_service.stop()

    assert sync.await_count >= 1


@pytest.mark.asyncio
async def test_periodic_sync_survives_errors() -> None:
    """Test that a failing sync does not stop the loop."""
    sync = AsyncMock(side_effect=RuntimeError("remote down"))
    scheduler_service = SchedulerService(sync, lambda: True, sync_interval=0.01)

    await scheduler_service.start()
    await asyncio.sleep(0.1)
    assert not scheduler_service.tasks["periodic_sync"].done()
    await scheduler_service.stop()

    assert sync.await_count >= 2


@pytest.mark.asyncio
async def test_schedule_task(sync: AsyncMock) -> None:
    """Test that custom tasks run immediately and then on their interval."""
    scheduler_service = SchedulerService(sync, lambda: True, enable_background_sync=False)
    await scheduler_service.start()

    job = AsyncMock()
    scheduler_service.schedule_task("cleanup", job, 0.01, "stale")
    scheduler_service.schedule_task("cleanup", AsyncMock(), 0.01)
    assert list(scheduler_service.tasks) == ["cleanup"]

    await asyncio.sleep(0.05)
    await scheduler_service.stop()

    job.assert_awaited_with("stale")
    assert job.await_count >= 2
    assert scheduler_service.tasks == {}


@pytest.mark.asyncio
async def test_cancel_task(sync: AsyncMock) -> None:
    """Test cancelling a named task."""
    scheduler_service = SchedulerService(sync, lambda: True, sync_interval=60)
    await scheduler_service.start()

    task = scheduler_service.tasks["periodic_sync"]
    scheduler_service.cancel_task("periodic_sync")
    scheduler_service.cancel_task("periodic_sync")  # unknown names are ignored

    assert scheduler_service.tasks == {}
    await asyncio.sleep(0.01)
    assert task.done()

    await scheduler_service.stop()


if __name__ == "__main__":
    pytest.main([__file__])
