"""Tests for the SourceWatcher consuming a watch feed."""

import asyncio
from unittest.mock import MagicMock

import pytest

from opa_bundle_builder.coordinator import RebuildCoordinator
from opa_bundle_builder.manifest import PolicySource, SourceKey
from opa_bundle_builder.store import Added, Deleted, Snapshot, SourceCache, Updated
from opa_bundle_builder.watch import InMemoryWatchFeed, SourceWatcher


def source(name: str, content: bytes = b"package x") -> PolicySource:
    return PolicySource(name=name, namespace="opa", entries={"rule.rego": content})


@pytest.fixture
def coordinator() -> MagicMock:
    return MagicMock(spec=RebuildCoordinator)


async def test_initial_empty_snapshot_requests_rebuild(coordinator: MagicMock) -> None:
    """Test the first snapshot always triggers a build, even when empty."""
    feed = InMemoryWatchFeed()
    cache = SourceCache()
    watcher = SourceWatcher(feed, cache, coordinator)
    feed.close()
    await watcher.run()
    assert watcher.synced
    assert coordinator.request_rebuild.call_count == 1


async def test_events_applied_in_order(coordinator: MagicMock) -> None:
    """Test events are applied in order and only changes request rebuilds."""
    feed = InMemoryWatchFeed([source("a")])
    cache = SourceCache()
    watcher = SourceWatcher(feed, cache, coordinator)
    task = asyncio.create_task(watcher.run())

    feed.put(Added(source("b")))
    feed.put(Added(source("b")))
    feed.put(Updated(source("b", b"package y")))
    feed.put(Deleted(SourceKey("opa", "a")))
    feed.put(Deleted(SourceKey("opa", "a")))
    # Resynchronization without changes
    feed.put(Snapshot(sources=(source("b", b"package y"),)))
    feed.close()
    await asyncio.wait_for(task, 5)

    assert [s.key for s in cache.snapshot()] == [SourceKey("opa", "b")]
    assert cache.get(SourceKey("opa", "b")).entries == {  # type: ignore[union-attr]
        "rule.rego": b"package y"
    }
    # Initial snapshot, add b, update b, delete a
    assert coordinator.request_rebuild.call_count == 4


async def test_resync_removes_vanished_sources(coordinator: MagicMock) -> None:
    """Test a snapshot after a disruption reconciles deleted sources."""
    feed = InMemoryWatchFeed([source("a"), source("b")])
    cache = SourceCache()
    watcher = SourceWatcher(feed, cache, coordinator)
    feed.put(Snapshot(sources=(source("b"),)))
    feed.close()
    await watcher.run()

    assert [s.key for s in cache.snapshot()] == [SourceKey("opa", "b")]
    assert coordinator.request_rebuild.call_count == 2
