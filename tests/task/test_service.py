"""Tests for the TaskServiceImpl."""

import asyncio
import logging
from typing import Any

import pytest

from opa_bundle_builder.task import TaskServiceImpl


@pytest.fixture
def task_service() -> TaskServiceImpl:
    """Fixture for creating a TaskServiceImpl instance."""
    return TaskServiceImpl()


async def test_create_and_complete_task(task_service: TaskServiceImpl) -> None:
    """Test creating and completing a background task."""

    async def test_task() -> Any:
        await asyncio.sleep(0.01)
        return "done"

    task = task_service.create_background_task(test_task(), name="test-task")
    assert task.get_name() == "test-task"
    assert task_service.get_num_tasks() == 1

    assert await task == "done"
    await asyncio.sleep(0)
    assert task_service.get_num_tasks() == 0


async def test_task_failure_logged(
    task_service: TaskServiceImpl, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a failing task is logged and no longer tracked."""

    async def failing_task() -> Any:
        raise ValueError("Test error")

    task = task_service.create_background_task(failing_task(), name="failing")
    with caplog.at_level(logging.ERROR), pytest.raises(ValueError, match="Test error"):
        await task
    await asyncio.sleep(0)

    assert task_service.get_num_tasks() == 0
    assert "Task failing failed: Test error" in caplog.text


async def test_wait_first_exit(task_service: TaskServiceImpl) -> None:
    """Test waiting for the first of several tasks to exit."""
    assert await task_service.wait_first_exit() is None

    forever = task_service.create_background_task(asyncio.sleep(10))
    quick = task_service.create_background_task(asyncio.sleep(0.01))

    assert await asyncio.wait_for(task_service.wait_first_exit(), 5) is quick
    assert not forever.done()
    await task_service.cancel_all()


async def test_cancel(task_service: TaskServiceImpl) -> None:
    """Test cancelling a single task leaves the others running."""
    first = task_service.create_background_task(asyncio.sleep(10))
    second = task_service.create_background_task(asyncio.sleep(10))

    await task_service.cancel(first)
    assert first.cancelled()
    assert not second.done()
    assert task_service.get_num_tasks() == 1

    await task_service.cancel_all()


async def test_cancel_failed_task(task_service: TaskServiceImpl) -> None:
    """Test cancelling a task that already failed does not raise."""

    async def failing_task() -> Any:
        raise ValueError("Test error")

    task = task_service.create_background_task(failing_task())
    await asyncio.sleep(0.01)
    assert task.done()

    await task_service.cancel(task)
    assert task_service.get_num_tasks() == 0


async def test_cancel_all(task_service: TaskServiceImpl) -> None:
    """Test cancelling all tasks."""
    tasks = [
        task_service.create_background_task(asyncio.sleep(10)) for _ in range(3)
    ]
    assert task_service.get_num_tasks() == 3

    await task_service.cancel_all()

    assert task_service.get_num_tasks() == 0
    assert all(task.cancelled() for task in tasks)
    # No tasks is a no-op
    await task_service.cancel_all()
