"""Tracked background tasks.

Detached work (such as the recompute that follows an unhide) must never fail
silently and must be cancellable at shutdown, so it goes through TaskManager
instead of a bare asyncio.create_task().
"""

import asyncio
import logging
from typing import Awaitable, Any
from weakref import WeakSet

logger = logging.getLogger(__name__)


class TaskManager:
    """
    Process-wide registry of background tasks.

    Usage:
        tasks = TaskManager.get_instance()
        tasks.create_task(recompute(), name="exclusion_recompute_user_7")

        # On shutdown
        await tasks.cancel_all(timeout=settings.task_shutdown_timeout)
    """

    _instance: "TaskManager | None" = None

    def __init__(self):
        self._tasks: WeakSet[asyncio.Task] = WeakSet()
        self._named_tasks: dict[str, asyncio.Task] = {}

    @classmethod
    def get_instance(cls) -> "TaskManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Drop the singleton (tests run each scenario on a fresh event loop)."""
        cls._instance = None

    def create_task(self, coro: Awaitable[Any], name: str | None = None) -> asyncio.Task:
        """Schedule `coro` on the running loop; failures are logged with traceback."""

        async def tracked():
            task_name = name or "unnamed"
            try:
                logger.debug(f"Starting background task: {task_name}")
                result = await coro
                logger.debug(f"Background task completed: {task_name}")
                return result
            except asyncio.CancelledError:
                logger.info(f"Background task cancelled: {task_name}")
                raise
            except Exception as e:
                logger.error(f"Background task failed: {task_name} - {type(e).__name__}: {e}", exc_info=True)
                raise

        task = asyncio.create_task(tracked(), name=name)
        self._tasks.add(task)

        if name:
            # A later task with the same name supersedes the earlier handle
            self._named_tasks[name] = task
            task.add_done_callback(lambda done: self._forget(name, done))

        return task

    def _forget(self, name: str, task: asyncio.Task) -> None:
        if self._named_tasks.get(name) is task:
            del self._named_tasks[name]

    def get_task(self, name: str) -> asyncio.Task | None:
        return self._named_tasks.get(name)

    def get_running_tasks(self) -> list[asyncio.Task]:
        return [t for t in self._tasks if not t.done()]

    def get_task_stats(self) -> dict:
        """Counts of tracked tasks by state, plus names of pending named tasks."""
        all_tasks = list(self._tasks)
        running = [t for t in all_tasks if not t.done()]
        done = [t for t in all_tasks if t.done()]
        cancelled = [t for t in done if t.cancelled()]
        failed = [t for t in done if not t.cancelled() and t.exception() is not None]

        return {
            "total_tracked": len(all_tasks),
            "running": len(running),
            "completed": len(done) - len(failed) - len(cancelled),
            "failed": len(failed),
            "cancelled": len(cancelled),
            "named_tasks": sorted(self._named_tasks),
        }

    async def cancel_all(self, timeout: float = 5.0) -> dict:
        """Cancel every running task and wait up to `timeout` seconds for them."""
        running = self.get_running_tasks()
        if not running:
            return {"cancelled": 0, "timed_out": 0}

        logger.info(f"Cancelling {len(running)} background tasks...")
        for task in running:
            task.cancel()

        done, pending = await asyncio.wait(running, timeout=timeout)
        if pending:
            logger.warning(f"{len(pending)} tasks did not finish within {timeout}s timeout")

        return {"cancelled": len(done), "timed_out": len(pending)}
