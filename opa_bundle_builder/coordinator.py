"""Rebuild Coordinator.

The coordinator decouples the bursty arrival of watch events from the
comparatively expensive assembly of the bundle. It is a small state machine:

    IDLE      -> SCHEDULED  a change is reported, the debounce timer starts
    SCHEDULED -> SCHEDULED  further changes restart the debounce timer
    SCHEDULED -> BUILDING   the timer fires, the cache is snapshotted and
                            assembled in a worker thread
    BUILDING  -> IDLE       the result is published to the BundleStore
    BUILDING  -> SCHEDULED  changes arrived during the build, one follow-up
                            rebuild is scheduled

At most one build runs at a time, so published bundles are totally ordered.
"""

import asyncio
from enum import StrEnum
import logging
from typing import Any

from .assembler import assemble
from .config import AssemblyConfig, CoordinatorConfig
from .store import Bundle, BundleStore, SourceCache
from .task import TaskService

_LOGGER = logging.getLogger(__name__)


class CoordinatorState(StrEnum):
    """State of the rebuild state machine."""

    IDLE = "Idle"
    SCHEDULED = "Scheduled"
    BUILDING = "Building"


class RebuildCoordinator:
    """Serializes and debounces rebuilds of the bundle."""

    def __init__(
        self,
        cache: SourceCache,
        store: BundleStore,
        task_service: TaskService,
        config: CoordinatorConfig | None = None,
        assembly_config: AssemblyConfig | None = None,
    ) -> None:
        """Initialize the RebuildCoordinator.

        Args:
            cache: The cache snapshotted as input for each build
            store: The store bundles are published to, written only by this object
            task_service: Owner of the coordinator loop task
            config: Debounce and retry settings
            assembly_config: Settings passed to the assembler
        """
        self._cache = cache
        self._store = store
        self._task_service = task_service
        self._config = config or CoordinatorConfig()
        self._assembly_config = assembly_config or AssemblyConfig()
        self._state = CoordinatorState.IDLE
        self._trigger = asyncio.Event()
        self._task: asyncio.Task[Any] | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        self.build_count = 0
        self.failure_count = 0

    @property
    def state(self) -> CoordinatorState:
        """Return the current state of the coordinator."""
        return self._state

    def request_rebuild(self) -> None:
        """Report that the cache changed and a rebuild is warranted.

        This never blocks. Requests made while a rebuild is pending or running
        are coalesced.
        """
        if self._state == CoordinatorState.IDLE:
            self._state = CoordinatorState.SCHEDULED
        self._trigger.set()

    def start(self) -> None:
        """Start the coordinator loop."""
        if self._task is not None:
            raise ValueError("RebuildCoordinator already started")
        self._task = self._task_service.create_background_task(
            self._run(), name="rebuild-coordinator"
        )

    async def close(self) -> None:
        """Stop the coordinator loop, abandoning any pending rebuild."""
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        if self._task is not None:
            await self._task_service.cancel(self._task)
            self._task = None
        self._state = CoordinatorState.IDLE

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        while True:
            await self._trigger.wait()
            await self._debounce(loop)
            await self._rebuild()

    async def _debounce(self, loop: asyncio.AbstractEventLoop) -> None:
        """Wait until no change was reported for the debounce window."""
        self._state = CoordinatorState.SCHEDULED
        deadline = loop.time() + self._config.max_delay_seconds
        while True:
            self._trigger.clear()
            timeout = min(self._config.debounce_seconds, deadline - loop.time())
            if timeout <= 0:
                _LOGGER.debug("Rebuild deferred for maximum delay, building now")
                return
            try:
                await asyncio.wait_for(self._trigger.wait(), timeout)
            except asyncio.TimeoutError:
                return

    async def _rebuild(self) -> Bundle | None:
        """Assemble the current cache contents and publish the result."""
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        self._state = CoordinatorState.BUILDING
        try:
            sources = self._cache.snapshot()
            previous = self._store.current()
            try:
                bundle = await asyncio.to_thread(
                    assemble, sources, previous, self._assembly_config
                )
            except Exception:
                self.failure_count += 1
                _LOGGER.exception(
                    "Failed to assemble bundle from %d sources, keeping %s; retrying in %ss",
                    len(sources),
                    f"bundle #{previous.sequence}" if previous else "no bundle",
                    self._config.retry_seconds,
                )
                self._retry_handle = asyncio.get_running_loop().call_later(
                    self._config.retry_seconds, self.request_rebuild
                )
                return None
            self.build_count += 1
            if previous is not None and bundle.digest == previous.digest:
                _LOGGER.debug(
                    "Bundle content unchanged from #%d, not publishing",
                    previous.sequence,
                )
                return previous
            self._store.publish(bundle)
            return bundle
        finally:
            self._state = (
                CoordinatorState.SCHEDULED
                if self._trigger.is_set()
                else CoordinatorState.IDLE
            )
