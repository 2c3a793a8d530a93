"""Library for assembling policy sources into a bundle archive.

The bundle is a gzip compressed tar archive with one file per admitted
policy source entry, named `<source name>/<entry name>` and optionally placed
under a common root directory.

The output is a pure function of the logical content:

- Sources are ordered by key (namespace, name) and entries by name. When two
  sources produce the same path the source sorting later by key wins.
- Files are written in sorted path order with fixed metadata and the gzip
  header carries no timestamp or file name.
- The digest covers the (path, content) pairs rather than the compressed
  bytes, so changing compression settings does not change the digest.
"""

from collections.abc import Iterable
from datetime import datetime, timezone
import gzip
import hashlib
import io
import logging
import tarfile
from time import perf_counter

from .config import AssemblyConfig
from .exceptions import AssemblyException
from .manifest import PolicySource, SourceKey
from .store.artifact import Bundle

__all__ = [
    "assemble",
    "file_list",
    "content_digest",
]

_LOGGER = logging.getLogger(__name__)

FILE_MODE = 0o644


def _source_path(source: PolicySource, entry_name: str, archive_root: str) -> str:
    parts = [archive_root.strip("/")] if archive_root.strip("/") else []
    parts.extend([source.name, entry_name])
    return "/".join(parts)


def file_list(
    sources: Iterable[PolicySource], archive_root: str = ""
) -> tuple[dict[str, bytes], dict[str, SourceKey]]:
    """Flatten sources into a mapping of archive path to content.

    Returns:
        The files keyed by path, and the key of the source each path came from.
    """
    files: dict[str, bytes] = {}
    owners: dict[str, SourceKey] = {}
    for source in sorted(sources, key=lambda s: s.key):
        for entry_name in sorted(source.entries):
            path = _source_path(source, entry_name, archive_root)
            if (previous := owners.get(path)) is not None:
                _LOGGER.warning(
                    "Path %s from %s overrides the same path from %s",
                    path,
                    source.key,
                    previous,
                )
            files[path] = source.entries[entry_name]
            owners[path] = source.key
    return files, owners


def content_digest(files: dict[str, bytes]) -> str:
    """Compute the digest of the logical content of a bundle.

    Each path and content is length prefixed so that no two different file
    lists can produce the same byte stream.
    """
    digest = hashlib.sha256()
    for path in sorted(files):
        encoded_path = path.encode("utf-8")
        content = files[path]
        digest.update(f"{len(encoded_path)}:".encode())
        digest.update(encoded_path)
        digest.update(f"{len(content)}:".encode())
        digest.update(content)
    return digest.hexdigest()


def _encode_archive(files: dict[str, bytes], compress_level: int) -> bytes:
    """Encode the files into a deterministic tar.gz archive."""
    buffer = io.BytesIO()
    with gzip.GzipFile(
        filename="", mode="wb", fileobj=buffer, compresslevel=compress_level, mtime=0
    ) as gz_file:
        with tarfile.open(
            fileobj=gz_file, mode="w", format=tarfile.PAX_FORMAT
        ) as tar:
            for path in sorted(files):
                content = files[path]
                info = tarfile.TarInfo(name=path)
                info.size = len(content)
                info.mtime = 0
                info.mode = FILE_MODE
                info.uid = info.gid = 0
                info.uname = info.gname = ""
                tar.addfile(info, io.BytesIO(content))
    return buffer.getvalue()


def assemble(
    sources: Iterable[PolicySource],
    previous: Bundle | None = None,
    config: AssemblyConfig | None = None,
) -> Bundle:
    """Assemble policy sources into a new bundle.

    Args:
        sources: An immutable snapshot of the admitted policy sources.
        previous: The bundle this one supersedes, used for the sequence number.
        config: Settings for the archive layout and compression.

    Returns:
        A new Bundle with a sequence number one greater than the previous.

    Raises:
        AssemblyException: If the archive could not be encoded.
    """
    config = config or AssemblyConfig()
    t1 = perf_counter()
    files, owners = file_list(sources, config.archive_root)
    try:
        archive = _encode_archive(files, config.compress_level)
    except (tarfile.TarError, ValueError, OSError) as err:
        raise AssemblyException(f"Unable to encode bundle archive: {err}") from err
    bundle = Bundle(
        archive=archive,
        digest=content_digest(files),
        sequence=(previous.sequence + 1) if previous else 1,
        built_at=datetime.now(timezone.utc),
        files=tuple(sorted(files)),
        sources=tuple(sorted(set(owners.values()))),
    )
    _LOGGER.debug(
        "Assembled bundle #%d with %d files from %d sources (%0.3fs)",
        bundle.sequence,
        len(bundle.files),
        len(bundle.sources),
        perf_counter() - t1,
    )
    return bundle
