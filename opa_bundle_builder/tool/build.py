"""opa-bundle-builder build action.

Builds a bundle from ConfigMap manifests on the local filesystem using the
same admission and assembly rules as the sidecar. This is useful for
checking what an agent would receive before applying the ConfigMaps.
"""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import pathlib
import sys
from typing import Any, cast

import yaml

from opa_bundle_builder.assembler import assemble
from opa_bundle_builder.config import AdmissionConfig, AssemblyConfig
from opa_bundle_builder.exceptions import InputException
from opa_bundle_builder.manifest import (
    CONFIG_MAP_KIND,
    DEFAULT_LABEL_SELECTOR,
    MATCH_ALL,
    LabelSelector,
    PolicySource,
)
from opa_bundle_builder.store import SourceCache, Snapshot
from opa_bundle_builder.store.writer import write_bundle

_LOGGER = logging.getLogger(__name__)


def read_sources(paths: list[pathlib.Path]) -> list[PolicySource]:
    """Read all ConfigMaps from the YAML files or directories of YAML files."""
    files: list[pathlib.Path] = []
    for path in paths:
        if path.is_dir():
            files.extend(sorted(p for p in path.rglob("*.y*ml") if p.is_file()))
        else:
            files.append(path)
    sources: list[PolicySource] = []
    for file in files:
        try:
            docs: list[Any] = list(yaml.safe_load_all(file.read_text()))
        except (OSError, yaml.YAMLError) as err:
            raise InputException(f"Unable to read {file}: {err}") from err
        for doc in docs:
            if not isinstance(doc, dict) or doc.get("kind") != CONFIG_MAP_KIND:
                continue
            sources.append(PolicySource.parse_doc(doc))
    _LOGGER.debug("Read %d ConfigMaps from %d files", len(sources), len(files))
    return sources


class BuildAction:
    """opa-bundle-builder build action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "build",
                help="Build a bundle from local ConfigMap manifests",
                description="""Assembles ConfigMaps from local YAML files into
                    a bundle archive, the same way the sidecar does for
                    ConfigMaps in the cluster.""",
            ),
        )
        args.add_argument(
            "path",
            type=pathlib.Path,
            nargs="+",
            help="YAML files or directories containing ConfigMaps",
        )
        args.add_argument(
            "--output-file",
            type=pathlib.Path,
            default=pathlib.Path("bundle.tar.gz"),
            help="Output file for the bundle archive",
        )
        args.add_argument(
            "--label-selector",
            default=DEFAULT_LABEL_SELECTOR,
            help="Label selector ConfigMaps must match to be included",
        )
        args.add_argument(
            "--no-selector",
            action="store_true",
            help="Include all ConfigMaps regardless of labels",
        )
        args.add_argument(
            "--archive-root",
            default="",
            help="Directory inside the archive that all bundle files are placed under",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: list[pathlib.Path],
        output_file: pathlib.Path,
        label_selector: str,
        no_selector: bool,
        archive_root: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        selector = MATCH_ALL if no_selector else LabelSelector.parse(label_selector)
        cache = SourceCache(selector, AdmissionConfig())
        cache.apply(Snapshot(sources=tuple(read_sources(path))))
        bundle = assemble(cache.snapshot(), config=AssemblyConfig(archive_root=archive_root))

        output_file = output_file.absolute()
        await write_bundle(bundle, output_file.parent, output_file.name)
        for file in bundle.files:
            print(file, file=sys.stderr)
        print(f"sha256:{bundle.digest}")
