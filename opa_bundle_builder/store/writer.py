"""Writes the current bundle to the local filesystem.

The bundle is written to a temporary file in the output directory and then
renamed over the active file, so a process reading the file never sees a
partially written archive.
"""

import asyncio
import logging
import os
from pathlib import Path

import aiofiles
import aiofiles.os

from .artifact import Bundle
from .bundle_store import BundleStore

_LOGGER = logging.getLogger(__name__)

BUNDLE_NAME = "bundle.tar.gz"
RETRY_SECONDS = 5.0


async def write_bundle(
    bundle: Bundle, output_dir: Path, name: str = BUNDLE_NAME
) -> Path:
    """Atomically write the bundle archive into the output directory.

    Returns:
        The path of the written bundle.
    """
    await aiofiles.os.makedirs(output_dir, exist_ok=True)
    dest_path = output_dir / name
    tmp_path = output_dir / f".{name}.{bundle.sequence}.tmp"
    async with aiofiles.open(tmp_path, "wb") as tmp_file:
        await tmp_file.write(bundle.archive)
    await aiofiles.os.replace(tmp_path, dest_path)
    _LOGGER.debug("Wrote bundle #%d to %s", bundle.sequence, dest_path)
    return dest_path


class BundleWriter:
    """Mirrors every bundle published to the store into a directory."""

    def __init__(
        self,
        store: BundleStore,
        output_dir: Path,
        retry_seconds: float = RETRY_SECONDS,
    ) -> None:
        """Initialize the BundleWriter."""
        self._store = store
        self._output_dir = output_dir
        self._retry_seconds = retry_seconds
        self._written = 0

    @property
    def written_sequence(self) -> int:
        """Return the sequence number of the last bundle written."""
        return self._written

    async def run(self) -> None:
        """Write bundles as they are published until cancelled.

        A failed write is retried after a delay with the bundle current at
        that time.
        """
        while True:
            bundle = await self._store.wait_newer(self._written)
            try:
                await write_bundle(bundle, self._output_dir)
            except OSError as err:
                _LOGGER.error(
                    "Failed to write bundle #%d to %s, retrying in %ss: %s",
                    bundle.sequence,
                    self._output_dir,
                    self._retry_seconds,
                    err,
                )
                await asyncio.sleep(self._retry_seconds)
                continue
            self._written = bundle.sequence


def remove_stale_files(output_dir: Path) -> None:
    """Remove leftover temporary files from an interrupted write."""
    if not output_dir.is_dir():
        return
    for path in output_dir.glob(f".{BUNDLE_NAME}.*.tmp"):
        _LOGGER.debug("Removing stale temporary bundle %s", path)
        os.remove(path)
