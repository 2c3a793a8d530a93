"""Orchestrator for the bundle builder sidecar.

Wires the components together and manages their lifecycle:

    WatchFeed -> SourceWatcher -> SourceCache
                       |
                       v
              RebuildCoordinator -> assemble -> BundleStore -> HTTP server
                                                     |
                                                     v
                                                BundleWriter (optional)
"""

import asyncio
import logging
from pathlib import Path
from typing import Any

from .config import BundleBuilderConfig
from .coordinator import RebuildCoordinator
from .manifest import LabelSelector
from .server import BundleServer, create_app, create_server
from .store import BundleStore, BundleWriter, SourceCache
from .store.writer import remove_stale_files
from .task import TaskService, TaskServiceImpl
from .watch import SourceWatcher, WatchFeed

_LOGGER = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT = 10


class BundleBuilder:
    """Owns the components of the sidecar and the tasks running them."""

    def __init__(
        self,
        feed: WatchFeed,
        config: BundleBuilderConfig | None = None,
        task_service: TaskService | None = None,
    ) -> None:
        """Initialize the BundleBuilder."""
        self.config = config or BundleBuilderConfig()
        self.task_service = task_service or TaskServiceImpl()
        self.cache = SourceCache(
            LabelSelector.parse(self.config.watch.label_selector),
            self.config.admission,
        )
        self.store = BundleStore()
        self.coordinator = RebuildCoordinator(
            self.cache,
            self.store,
            self.task_service,
            self.config.coordinator,
            self.config.assembly,
        )
        self.watcher = SourceWatcher(feed, self.cache, self.coordinator)
        self.app = create_app(self.store, self.config.server)
        self._server: BundleServer | None = None
        self._watch_task: asyncio.Task[Any] | None = None
        self._server_task: asyncio.Task[Any] | None = None

    async def start(self, serve: bool = True) -> None:
        """Start watching, rebuilding and optionally serving bundles."""
        self.coordinator.start()
        self._watch_task = self.task_service.create_background_task(
            self.watcher.run(), name="source-watcher"
        )
        if self.config.output_dir:
            output_dir = Path(self.config.output_dir)
            remove_stale_files(output_dir)
            writer = BundleWriter(
                self.store, output_dir, self.config.coordinator.retry_seconds
            )
            self.task_service.create_background_task(writer.run(), name="bundle-writer")
        if serve:
            self._server = create_server(self.app, self.config.server)
            self._server_task = self.task_service.create_background_task(
                self._server.serve(), name="http-server"
            )
            _LOGGER.info(
                "Serving bundles on %s:%d",
                self.config.server.host,
                self.config.server.port,
            )

    async def run(self, serve: bool = True) -> None:
        """Run until cancelled or until any of the loops exits.

        Raises:
            Exception: The error a loop failed with, after shutting down.
        """
        await self.start(serve=serve)
        try:
            task = await self.task_service.wait_first_exit()
            if task is not None and not task.cancelled():
                if (err := task.exception()) is not None:
                    raise err
                _LOGGER.info("Task %s exited, shutting down", task.get_name())
        finally:
            await self.close()

    async def close(self) -> None:
        """Shut down the sidecar.

        The watch and rebuild loops stop first, then the server stops accepting
        connections and lets in-flight requests complete against the last
        published bundle.
        """
        if self._watch_task is not None:
            await self.task_service.cancel(self._watch_task)
            self._watch_task = None
        await self.coordinator.close()
        if self._server is not None and self._server_task is not None:
            self._server.shutdown_gracefully()
            try:
                await asyncio.wait_for(
                    asyncio.shield(self._server_task), SHUTDOWN_TIMEOUT
                )
            except asyncio.TimeoutError:
                _LOGGER.warning("HTTP server did not stop within %ss", SHUTDOWN_TIMEOUT)
            except Exception as err:
                _LOGGER.debug("HTTP server exited with error: %s", err)
            self._server = None
            self._server_task = None
        await self.task_service.cancel_all()
