"""Task tracking service for the bundle builder.

The long running loops of the sidecar (watch consumer, rebuild coordinator,
HTTP server, bundle writer) are background tasks owned by this service so
they can be cancelled together on shutdown.
"""

import asyncio
from functools import partial
import logging
from typing import Any, Coroutine
from abc import ABC, abstractmethod

_LOGGER = logging.getLogger(__name__)

__all__: list[str] = []


class TaskService(ABC):
    """Service for tracking asynchronous tasks."""

    @abstractmethod
    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new long running background task."""

    @abstractmethod
    async def wait_first_exit(self) -> asyncio.Task[Any] | None:
        """Wait until any tracked task exits and return it."""

    @abstractmethod
    async def cancel(self, task: asyncio.Task[Any]) -> None:
        """Cancel a single tracked task and wait for it to finish."""

    @abstractmethod
    async def cancel_all(self) -> None:
        """Cancel all tracked tasks and wait for them to finish."""

    @abstractmethod
    def get_num_tasks(self) -> int:
        """Get the number of running tasks."""


class TaskServiceImpl(TaskService):
    """Service for tracking asynchronous tasks."""

    def __init__(self) -> None:
        """Initialize the task service."""
        self._tasks: set[asyncio.Task[Any]] = set()

    def create_background_task(
        self, coro: Coroutine[None, None, Any], name: str | None = None
    ) -> asyncio.Task[Any]:
        """Create and track a new background task.

        Args:
            coro: The coroutine to run as a task
            name: Optional name of the task, used in logs

        Returns:
            The created task
        """
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(partial(self._task_done, self._tasks))
        return task

    def _task_done(
        self, task_set: set[asyncio.Task[Any]], task: asyncio.Task[Any]
    ) -> None:
        """Callback when a task is done, logging any failure."""
        try:
            # This will raise any exception that occurred in the task
            task.result()
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _LOGGER.error("Task %s failed: %s", task.get_name(), e)
        finally:
            task_set.discard(task)

    async def wait_first_exit(self) -> asyncio.Task[Any] | None:
        """Wait until any tracked task exits.

        Returns:
            The task that exited, or None if there are no tasks.
        """
        if not self._tasks:
            return None
        done, _ = await asyncio.wait(
            list(self._tasks), return_when=asyncio.FIRST_COMPLETED
        )
        return next(iter(done))

    async def cancel(self, task: asyncio.Task[Any]) -> None:
        """Cancel a single task and wait for it to finish.

        Args:
            task: The task to cancel
        """
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        except Exception as e:
            _LOGGER.debug("Task %s exited with error: %s", task.get_name(), e)
        self._tasks.discard(task)

    async def cancel_all(self) -> None:
        """Cancel all tracked tasks and wait for them to finish."""
        tasks = list(self._tasks)
        if not tasks:
            return
        _LOGGER.debug("Cancelling %d tasks", len(tasks))
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def get_num_tasks(self) -> int:
        """Get the number of running tasks."""
        return len(self._tasks)
