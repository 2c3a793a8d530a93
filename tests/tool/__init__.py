"""Test helpers for opa-bundle-builder tools."""

import pathlib
from typing import Any

import yaml

LABELS = {"opa.stackable.tech/bundle": "true"}


def write_config_maps(path: pathlib.Path, docs: list[dict[str, Any]]) -> pathlib.Path:
    """Write ConfigMap manifests to a multi document YAML file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump_all(docs))
    return path


def config_map(
    name: str, data: dict[str, str], labels: dict[str, str] | None = None
) -> dict[str, Any]:
    """Create a ConfigMap manifest."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {
            "name": name,
            "namespace": "opa",
            "labels": LABELS if labels is None else labels,
        },
        "data": data,
    }
