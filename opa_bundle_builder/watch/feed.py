"""Contract for the feed of policy source changes."""

from abc import ABC, abstractmethod
import asyncio
from collections.abc import AsyncGenerator, Iterable
import logging
from typing import TYPE_CHECKING

from opa_bundle_builder.manifest import PolicySource
from opa_bundle_builder.store.events import Snapshot, WatchEvent

_LOGGER = logging.getLogger(__name__)


class WatchFeed(ABC):
    """A source of ordered change notifications for policy sources.

    The first event yielded is always a Snapshot of all matching sources,
    followed by Added, Updated and Deleted events in the order they happened.
    After the feed loses and re-establishes its connection it yields a fresh
    Snapshot, which the consumer uses to reconcile.
    """

    @abstractmethod
    async def events(self) -> AsyncGenerator[WatchEvent, None]:
        """Yield watch events until cancelled."""
        if TYPE_CHECKING:
            yield None  # type: ignore[misc]


class InMemoryWatchFeed(WatchFeed):
    """A feed driven by events put on it by the caller.

    Used for running the builder against a fixed set of sources and in tests.
    """

    def __init__(self, sources: Iterable[PolicySource] = ()) -> None:
        """Initialize the feed with the sources of the initial snapshot."""
        self._initial = tuple(sources)
        self._queue: asyncio.Queue[WatchEvent | None] = asyncio.Queue()

    def put(self, event: WatchEvent) -> None:
        """Deliver an event to the consumer."""
        self._queue.put_nowait(event)

    def close(self) -> None:
        """End the feed after all queued events are delivered."""
        self._queue.put_nowait(None)

    async def events(self) -> AsyncGenerator[WatchEvent, None]:
        """Yield the initial snapshot then every queued event."""
        yield Snapshot(sources=self._initial)
        while (event := await self._queue.get()) is not None:
            yield event
        _LOGGER.debug("In-memory watch feed closed")
