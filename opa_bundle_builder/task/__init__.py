"""Task tracking module for the bundle builder.

This module provides a simple task tracking service that owns the
asynchronous loops of the sidecar.
"""

from .service import TaskService, TaskServiceImpl

__all__ = ["TaskService", "TaskServiceImpl"]
