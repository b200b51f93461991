"""Tests for tracked background tasks."""

import asyncio

import pytest

from peek.core.tasks import TaskManager


@pytest.fixture(autouse=True)
def fresh_task_manager():
    TaskManager.reset_instance()
    yield
    TaskManager.reset_instance()


def test_singleton_is_shared_until_reset():
    first = TaskManager.get_instance()
    assert TaskManager.get_instance() is first
    TaskManager.reset_instance()
    assert TaskManager.get_instance() is not first


def test_named_task_is_forgotten_once_done():
    async def scenario():
        tasks = TaskManager()
        release = asyncio.Event()

        async def work():
            await release.wait()
            return "done"

        task = tasks.create_task(work(), name="recompute_user_1")
        await asyncio.sleep(0)
        assert tasks.get_task("recompute_user_1") is task
        assert tasks.get_task_stats()["named_tasks"] == ["recompute_user_1"]

        release.set()
        assert await task == "done"
        await asyncio.sleep(0)
        assert tasks.get_task("recompute_user_1") is None
        assert tasks.get_running_tasks() == []

    asyncio.run(scenario())


def test_failed_task_reraises_and_is_counted():
    async def scenario():
        tasks = TaskManager()

        async def boom():
            raise RuntimeError("nope")

        task = tasks.create_task(boom())
        with pytest.raises(RuntimeError):
            await task

        stats = tasks.get_task_stats()
        assert stats["failed"] == 1
        assert stats["running"] == 0

    asyncio.run(scenario())


def test_cancel_all_stops_running_tasks():
    async def scenario():
        tasks = TaskManager()
        started = asyncio.Event()

        async def forever():
            started.set()
            await asyncio.sleep(3600)

        task = tasks.create_task(forever(), name="forever")
        await started.wait()

        assert await tasks.cancel_all(timeout=1.0) == {"cancelled": 1, "timed_out": 0}
        assert task.cancelled()
        assert await tasks.cancel_all() == {"cancelled": 0, "timed_out": 0}

    asyncio.run(scenario())
