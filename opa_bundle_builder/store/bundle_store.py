"""Holder of the current bundle shared between the builder and readers."""

import asyncio
import logging

from .artifact import Bundle

_LOGGER = logging.getLogger(__name__)


class BundleStore:
    """Holds the single current bundle.

    The RebuildCoordinator is the only writer. Readers call `current()` which
    never waits on a publish in progress: publishing is a single reference
    assignment of an immutable Bundle, so a reader either sees the previous
    bundle or the new one in its entirety.
    """

    def __init__(self) -> None:
        """Initialize an empty BundleStore."""
        self._current: Bundle | None = None
        self._published = asyncio.Event()

    @property
    def ready(self) -> bool:
        """Return True once at least one bundle has been published."""
        return self._current is not None

    def current(self) -> Bundle | None:
        """Return the current bundle, or None if no bundle was built yet."""
        return self._current

    def publish(self, bundle: Bundle) -> None:
        """Replace the current bundle.

        Raises:
            ValueError: If the bundle does not have a sequence number greater
                than the current bundle.
        """
        if (current := self._current) is not None and bundle.sequence <= current.sequence:
            raise ValueError(
                f"Bundle sequence {bundle.sequence} is not newer than current {current.sequence}"
            )
        self._current = bundle
        _LOGGER.info(
            "Published bundle #%d (%s, %d files)",
            bundle.sequence,
            bundle.digest[:12],
            len(bundle.files),
        )
        published, self._published = self._published, asyncio.Event()
        published.set()

    async def wait_newer(self, sequence: int = 0) -> Bundle:
        """Wait for a bundle with a sequence number greater than `sequence`.

        If such a bundle is already current, returns it immediately. Bundles
        published in between may be skipped, only the latest is returned.
        """
        while (current := self._current) is None or current.sequence <= sequence:
            await self._published.wait()
        return current
