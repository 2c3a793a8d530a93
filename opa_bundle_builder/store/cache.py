"""Module for the in memory cache of policy sources.

The cache holds the latest admitted state of every policy source matching
the selector. It is mutated only by the task consuming the watch feed and
read by taking a snapshot, which is the input to bundle assembly.
"""

import logging
import re

from opa_bundle_builder.config import AdmissionConfig
from opa_bundle_builder.exceptions import EntryRejectedError
from opa_bundle_builder.manifest import MATCH_ALL, LabelSelector, PolicySource, SourceKey

from .events import Added, Deleted, Snapshot, Updated, WatchEvent
from .status import AdmissionInfo, AdmissionStatus

_LOGGER = logging.getLogger(__name__)

# Valid ConfigMap data keys. These are also used as file names in the bundle.
_ENTRY_NAME_RE = re.compile(r"[-._a-zA-Z0-9]+")


def _check_entry_name(name: str) -> None:
    if not _ENTRY_NAME_RE.fullmatch(name) or name in (".", ".."):
        raise EntryRejectedError(name, "not a valid file name")


class SourceCache:
    """In-memory mapping of policy source key to admitted policy source."""

    def __init__(
        self,
        selector: LabelSelector = MATCH_ALL,
        config: AdmissionConfig | None = None,
    ) -> None:
        """Initialize the SourceCache."""
        self._selector = selector
        self._config = config or AdmissionConfig()
        self._sources: dict[SourceKey, PolicySource] = {}
        self._admission: dict[SourceKey, AdmissionInfo] = {}

    def __len__(self) -> int:
        return len(self._sources)

    def __contains__(self, key: SourceKey) -> bool:
        return key in self._sources

    def get(self, key: SourceKey) -> PolicySource | None:
        """Return the admitted policy source for the key, if cached."""
        return self._sources.get(key)

    def admission(self, key: SourceKey) -> AdmissionInfo | None:
        """Return the last admission decision recorded for the key."""
        return self._admission.get(key)

    def snapshot(self) -> tuple[PolicySource, ...]:
        """Return an immutable copy of all cached sources sorted by key."""
        return tuple(self._sources[key] for key in sorted(self._sources))

    def apply(self, event: WatchEvent) -> bool:
        """Apply a watch event to the cache.

        Returns:
            True if the observable content of the cache changed and a rebuild
            of the bundle is warranted.
        """
        if isinstance(event, (Added, Updated)):
            return self._upsert(event.source)
        if isinstance(event, Deleted):
            return self._remove(event.key)
        if isinstance(event, Snapshot):
            return self._replace(event.sources)
        raise ValueError(f"Unsupported watch event: {event!r}")

    def _upsert(self, source: PolicySource) -> bool:
        if not self._selector.matches(source.labels):
            _LOGGER.debug("Source %s does not match selector %s", source.key, self._selector)
            return self._remove(source.key)
        admitted = self._admit(source)
        if admitted is None:
            return self._evict(source.key)
        existing = self._sources.get(source.key)
        self._sources[source.key] = admitted
        if existing is not None and existing.entries == admitted.entries:
            _LOGGER.debug("Source %s content unchanged, skipping", source.key)
            return False
        _LOGGER.debug(
            "%s source %s", "Updated" if existing else "Added", source.key
        )
        return True

    def _remove(self, key: SourceKey) -> bool:
        self._admission.pop(key, None)
        return self._evict(key)

    def _evict(self, key: SourceKey) -> bool:
        """Drop the cached source, keeping its admission record."""
        if self._sources.pop(key, None) is None:
            return False
        _LOGGER.debug("Removed source %s", key)
        return True

    def _replace(self, sources: tuple[PolicySource, ...]) -> bool:
        previous = {key: source.entries for key, source in self._sources.items()}
        self._sources = {}
        for source in sources:
            if not self._selector.matches(source.labels):
                continue
            if (admitted := self._admit(source)) is not None:
                self._sources[source.key] = admitted
        current = {key: source.entries for key, source in self._sources.items()}
        for key in previous.keys() - current.keys():
            _LOGGER.debug("Source %s no longer present, removed", key)
        present = {
            source.key for source in sources if self._selector.matches(source.labels)
        }
        self._admission = {
            key: info for key, info in self._admission.items() if key in present
        }
        return previous != current

    def _admit(self, source: PolicySource) -> PolicySource | None:
        """Return the source restricted to its admissible entries.

        Rejected entries are recorded and logged, they never fail the source
        as a whole. Returns None if no entry could be admitted.
        """
        rejected: dict[str, str] = dict(source.invalid_entries)
        entries: dict[str, bytes] = {}
        total = 0
        for name in sorted(source.entries):
            content = source.entries[name]
            try:
                _check_entry_name(name)
                if len(content) > self._config.max_entry_bytes:
                    raise EntryRejectedError(
                        name,
                        f"size {len(content)} exceeds limit of {self._config.max_entry_bytes} bytes",
                    )
                if total + len(content) > self._config.max_source_bytes:
                    raise EntryRejectedError(
                        name,
                        f"aggregate size exceeds limit of {self._config.max_source_bytes} bytes",
                    )
            except EntryRejectedError as err:
                rejected[err.entry_name] = err.reason
                continue
            entries[name] = content
            total += len(content)

        if not entries:
            status = AdmissionStatus.EXCLUDED
        elif rejected:
            status = AdmissionStatus.PARTIAL
        else:
            status = AdmissionStatus.ADMITTED
        info = AdmissionInfo(status=status, rejected=rejected)
        self._admission[source.key] = info
        if status == AdmissionStatus.EXCLUDED:
            _LOGGER.warning("Source %s excluded from bundle: %s", source.key, info)
            return None
        if status == AdmissionStatus.PARTIAL:
            _LOGGER.warning("Source %s partially admitted: %s", source.key, info)
        return PolicySource(
            name=source.name,
            namespace=source.namespace,
            entries=entries,
            labels=source.labels,
            resource_version=source.resource_version,
        )
