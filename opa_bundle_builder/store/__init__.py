"""
The store module holds the state of the bundle builder.

- SourceCache: latest admitted policy sources, keyed by SourceKey, mutated by
  watch events.
- BundleStore: the single current Bundle, replaced atomically on publish.
- BundleWriter: optional mirror of the current bundle on the filesystem.
"""

from .artifact import Bundle, BundleInfo
from .bundle_store import BundleStore
from .cache import SourceCache
from .events import Added, Deleted, Snapshot, Updated, WatchEvent
from .status import AdmissionInfo, AdmissionStatus
from .writer import BundleWriter

__all__ = [
    "Bundle",
    "BundleInfo",
    "BundleStore",
    "BundleWriter",
    "SourceCache",
    "Added",
    "Updated",
    "Deleted",
    "Snapshot",
    "WatchEvent",
    "AdmissionInfo",
    "AdmissionStatus",
]
