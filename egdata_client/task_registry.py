"""
Task Registry for background work started by the store and synchronizers.

Settings persistence, async write-through hooks, progress timers and delayed
progress resets all run as asyncio tasks. Each StoreContext owns one
TaskRegistry, so closing a client cancels that client's tasks and nothing
else.
"""

import asyncio
import threading
from typing import Any, Coroutine

from egdata_client.logger import setup_logger

logger = setup_logger()


class TaskRegistry:
    """
    Usage:
        tasks = TaskRegistry("client")
        tasks.spawn(persist(settings), name="persist-settings")
        ...
        await tasks.cancel_all()
    """

    def __init__(self, name: str = "tasks"):
        self.name = name
        self._lock = threading.Lock()
        self._tasks: list[asyncio.Task] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def register(self, task: asyncio.Task, name: str = "") -> asyncio.Task:
        """
        Track `task` until it finishes.

        The closed check and the append happen under one lock acquisition, so
        a task cannot slip in after cancel_all() took its snapshot. Tasks
        registered after close are cancelled immediately.
        """
        with self._lock:
            if self._closed:
                logger.warning(f"[{self.name}] Task '{name}' created after close - cancelling immediately")
                task.cancel()
                return task

            # Drop finished tasks so the list does not grow unbounded
            self._tasks[:] = [t for t in self._tasks if not t.done()]
            self._tasks.append(task)
        logger.debug(f"[{self.name}] Registered background task: {name or task.get_name()}")
        return task

    def spawn(self, coro: Coroutine[Any, Any, Any], name: str) -> asyncio.Task:
        """Create a task on the running loop, register it and log it if it dies with an error."""
        task = asyncio.get_running_loop().create_task(coro, name=name)
        task.add_done_callback(self._log_failure)
        return self.register(task, name)

    def reopen(self) -> None:
        """Accept new tasks again after cancel_all()."""
        with self._lock:
            self._closed = False
            self._tasks.clear()

    def active_count(self) -> int:
        with self._lock:
            return sum(1 for t in self._tasks if not t.done())

    def task_names(self) -> list[str]:
        with self._lock:
            return [t.get_name() for t in self._tasks if not t.done()]

    async def cancel_all(self, timeout: float = 3.0) -> int:
        """
        Close the registry and cancel every task still running.

        Args:
            timeout: Maximum time to wait for the cancelled tasks to finish

        Returns:
            Number of tasks cancelled
        """
        with self._lock:
            self._closed = True
            tasks = [t for t in self._tasks if not t.done()]
            self._tasks.clear()

        if not tasks:
            logger.debug(f"[{self.name}] No background tasks to cancel")
            return 0

        logger.info(f"[{self.name}] Cancelling {len(tasks)} background tasks...")
        for task in tasks:
            task.cancel()

        try:
            await asyncio.wait_for(asyncio.gather(*tasks, return_exceptions=True), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[{self.name}] Some tasks did not complete within {timeout}s timeout")

        cancelled = sum(1 for t in tasks if t.cancelled())
        logger.info(f"[{self.name}] Cancelled {cancelled}/{len(tasks)} background tasks")
        return cancelled

    def _log_failure(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"[{self.name}] Background task '{task.get_name()}' failed: {error}", exc_info=error)
