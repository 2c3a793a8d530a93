"""Consumer of the watch feed.

Applies events to the SourceCache in delivery order and asks the
RebuildCoordinator for a rebuild whenever the cache content changed.
"""

import logging

from opa_bundle_builder.coordinator import RebuildCoordinator
from opa_bundle_builder.store import SourceCache, Snapshot

from .feed import WatchFeed

_LOGGER = logging.getLogger(__name__)


class SourceWatcher:
    """Single writer of the SourceCache."""

    def __init__(
        self,
        feed: WatchFeed,
        cache: SourceCache,
        coordinator: RebuildCoordinator,
    ) -> None:
        """Initialize the SourceWatcher."""
        self._feed = feed
        self._cache = cache
        self._coordinator = coordinator
        self._synced = False

    @property
    def synced(self) -> bool:
        """Return True once the initial snapshot has been applied."""
        return self._synced

    async def run(self) -> None:
        """Consume the feed until it ends or the task is cancelled."""
        async for event in self._feed.events():
            changed = self._cache.apply(event)
            if isinstance(event, Snapshot):
                _LOGGER.info(
                    "Synchronized %d policy sources (%s)",
                    len(self._cache),
                    "changed" if changed else "unchanged",
                )
                if not self._synced:
                    # The first bundle is built even when there are no sources.
                    self._synced = True
                    changed = True
            else:
                _LOGGER.debug("Applied %s (changed=%s)", event, changed)
            if changed:
                self._coordinator.request_rebuild()
        _LOGGER.info("Watch feed ended")
