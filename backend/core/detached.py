"""
Detached Tasks
Fire-and-forget side effects (view counters, analytics writes) that must
never block or fail the request that triggered them.
"""
import asyncio
import logging
from typing import Any, Callable, Optional, Set

logger = logging.getLogger(__name__)


class DetachedTaskSupervisor:
    """
    Runs blocking callables on a worker thread.

    Holds a strong reference to each task until it finishes so it cannot be
    garbage collected mid-flight, and logs any exception it raises.
    """

    def __init__(self):
        self._tasks: Set[asyncio.Task] = set()

    def spawn(self, fn: Callable[..., Any], *args: Any, name: Optional[str] = None) -> asyncio.Task:
        task_name = name or getattr(fn, "__name__", "detached")
        task = asyncio.get_running_loop().create_task(asyncio.to_thread(fn, *args), name=task_name)
        self._tasks.add(task)
        task.add_done_callback(self._finished)
        return task

    def _finished(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning(f"Detached task {task.get_name()} failed: {exc!r}")

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for in-flight tasks at shutdown"""
        if not self._tasks:
            return
        done, not_done = await asyncio.wait(set(self._tasks), timeout=timeout)
        if not_done:
            logger.warning(f"{len(not_done)} detached task(s) still running at shutdown")
