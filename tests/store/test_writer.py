"""Tests for writing bundles to the filesystem."""

import asyncio
from datetime import datetime, timezone
from pathlib import Path

from opa_bundle_builder.store import Bundle, BundleStore, BundleWriter
from opa_bundle_builder.store.writer import remove_stale_files, write_bundle


def make_bundle(sequence: int) -> Bundle:
    return Bundle(
        archive=f"archive-{sequence}".encode(),
        digest=f"digest-{sequence}",
        sequence=sequence,
        built_at=datetime.now(timezone.utc),
    )


async def test_write_bundle(tmp_path: Path) -> None:
    """Test the bundle is written and no temporary file is left behind."""
    output_dir = tmp_path / "active"
    path = await write_bundle(make_bundle(1), output_dir)
    assert path == output_dir / "bundle.tar.gz"
    assert path.read_bytes() == b"archive-1"
    assert [p.name for p in output_dir.iterdir()] == ["bundle.tar.gz"]

    await write_bundle(make_bundle(2), output_dir)
    assert path.read_bytes() == b"archive-2"


async def test_bundle_writer_follows_store(tmp_path: Path) -> None:
    """Test the writer mirrors each bundle published to the store."""
    store = BundleStore()
    writer = BundleWriter(store, tmp_path)
    task = asyncio.create_task(writer.run())
    try:
        store.publish(make_bundle(1))
        while writer.written_sequence < 1:
            await asyncio.sleep(0.01)
        assert (tmp_path / "bundle.tar.gz").read_bytes() == b"archive-1"

        store.publish(make_bundle(2))
        while writer.written_sequence < 2:
            await asyncio.sleep(0.01)
        assert (tmp_path / "bundle.tar.gz").read_bytes() == b"archive-2"
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


async def test_bundle_writer_retries_failed_write(tmp_path: Path) -> None:
    """Test a failed write is retried without a new bundle being published."""
    output_dir = tmp_path / "active"
    # A file in place of the output directory makes the write fail
    output_dir.write_bytes(b"")
    store = BundleStore()
    writer = BundleWriter(store, output_dir, retry_seconds=0.01)
    task = asyncio.create_task(writer.run())
    try:
        store.publish(make_bundle(1))
        await asyncio.sleep(0.05)
        assert writer.written_sequence == 0

        output_dir.unlink()
        async with asyncio.timeout(5):
            while writer.written_sequence < 1:
                await asyncio.sleep(0.01)
        assert (output_dir / "bundle.tar.gz").read_bytes() == b"archive-1"
    finally:
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)


def test_remove_stale_files(tmp_path: Path) -> None:
    """Test temporary files from an interrupted write are removed."""
    (tmp_path / ".bundle.tar.gz.3.tmp").write_bytes(b"partial")
    (tmp_path / "bundle.tar.gz").write_bytes(b"complete")
    remove_stale_files(tmp_path)
    assert [p.name for p in tmp_path.iterdir()] == ["bundle.tar.gz"]
    remove_stale_files(tmp_path / "missing")
