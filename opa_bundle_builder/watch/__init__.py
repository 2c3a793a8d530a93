"""Observing policy sources in the cluster.

- WatchFeed: the contract for an ordered stream of change notifications.
- KubernetesWatchFeed: lists and watches labelled ConfigMaps.
- SourceWatcher: applies the events to the SourceCache.
"""

from .consumer import SourceWatcher
from .feed import InMemoryWatchFeed, WatchFeed
from .kube import KubernetesWatchFeed

__all__ = [
    "SourceWatcher",
    "WatchFeed",
    "InMemoryWatchFeed",
    "KubernetesWatchFeed",
]
