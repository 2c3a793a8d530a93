"""Change notifications delivered by the watch feed."""

from dataclasses import dataclass

from opa_bundle_builder.manifest import PolicySource, SourceKey


@dataclass(frozen=True)
class Added:
    """A policy source was created or started matching the selector."""

    source: PolicySource


@dataclass(frozen=True)
class Updated:
    """A policy source was modified."""

    source: PolicySource


@dataclass(frozen=True)
class Deleted:
    """A policy source was deleted or stopped matching the selector."""

    key: SourceKey


@dataclass(frozen=True)
class Snapshot:
    """The full set of policy sources currently present.

    Delivered once when the feed starts and again after every
    resynchronization; sources missing from it are removed.
    """

    sources: tuple[PolicySource, ...]
    resource_version: str | None = None


WatchEvent = Added | Updated | Deleted | Snapshot
