"""Bundle representation."""

from dataclasses import dataclass
from datetime import datetime

from mashumaro import DataClassDictMixin

from opa_bundle_builder.manifest import SourceKey


@dataclass(frozen=True, kw_only=True)
class Bundle:
    """An assembled bundle archive.

    This object is created by the assembler and published to the BundleStore.
    It is never mutated, a newer bundle supersedes it.
    """

    archive: bytes
    """The gzip compressed tar archive."""

    digest: str
    """Hex sha256 digest of the logical content (paths and file contents)."""

    sequence: int
    """Strictly increasing build number."""

    built_at: datetime
    """Time the bundle was assembled, for informational purposes."""

    files: tuple[str, ...] = ()
    """Paths of the files in the archive, in archive order."""

    sources: tuple[SourceKey, ...] = ()
    """Policy sources that contributed to the bundle."""

    @property
    def etag(self) -> str:
        """Return the HTTP entity tag for the bundle content."""
        return f'"sha256:{self.digest}"'

    def info(self) -> "BundleInfo":
        """Return serializable metadata about the bundle."""
        return BundleInfo(
            digest=self.digest,
            sequence=self.sequence,
            built_at=self.built_at.isoformat(),
            size=len(self.archive),
            files=list(self.files),
            sources=[str(key) for key in self.sources],
        )


@dataclass
class BundleInfo(DataClassDictMixin):
    """Metadata about a bundle, without the archive bytes."""

    digest: str
    sequence: int
    built_at: str
    size: int
    files: list[str]
    sources: list[str]
