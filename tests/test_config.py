"""Tests for the configuration objects."""

import pathlib

import pytest

from opa_bundle_builder.config import (
    WATCH_NAMESPACE_ENV,
    AssemblyConfig,
    BundleBuilderConfig,
)
from opa_bundle_builder.exceptions import InputException


def test_defaults() -> None:
    """Test the default configuration."""
    config = BundleBuilderConfig()
    assert config.admission.max_entry_bytes == 1024 * 1024
    assert config.admission.max_source_bytes == 1024 * 1024
    assert config.assembly == AssemblyConfig(archive_root="", compress_level=9)
    assert config.coordinator.debounce_seconds == 0.1
    assert config.coordinator.max_delay_seconds == 5.0
    assert config.coordinator.retry_seconds == 5.0
    assert config.server.host == "0.0.0.0"
    assert config.server.port == 3030
    assert config.watch.namespace is None


def test_from_yaml(tmp_path: pathlib.Path) -> None:
    """Test loading a partial configuration file."""
    path = tmp_path / "config.yaml"
    path.write_text(
        """
admission:
  max_entry_bytes: 1000
assembly:
  archive_root: bundles
output_dir: /bundles/active
"""
    )
    config = BundleBuilderConfig.from_yaml(path)
    assert config.admission.max_entry_bytes == 1000
    assert config.admission.max_source_bytes == 1024 * 1024
    assert config.assembly.archive_root == "bundles"
    assert config.output_dir == "/bundles/active"
    assert config.server.port == 3030


def test_from_yaml_empty(tmp_path: pathlib.Path) -> None:
    """Test an empty file gives the default configuration."""
    path = tmp_path / "config.yaml"
    path.write_text("\n")
    assert BundleBuilderConfig.from_yaml(path) == BundleBuilderConfig()


@pytest.mark.parametrize(
    "content",
    [
        "server: [\n",
        "server:\n  port: not-a-number\n",
    ],
    ids=["yaml-syntax", "field-type"],
)
def test_from_yaml_invalid(tmp_path: pathlib.Path, content: str) -> None:
    """Test invalid configuration files raise an input error."""
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(InputException, match="Invalid config file"):
        BundleBuilderConfig.from_yaml(path)


def test_from_yaml_missing(tmp_path: pathlib.Path) -> None:
    """Test a missing configuration file raises an input error."""
    with pytest.raises(InputException, match="Unable to read"):
        BundleBuilderConfig.from_yaml(tmp_path / "missing.yaml")


def test_apply_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test the namespace is filled in from the environment."""
    monkeypatch.setenv(WATCH_NAMESPACE_ENV, "opa")
    config = BundleBuilderConfig()
    config.apply_environment()
    assert config.watch.namespace == "opa"


def test_apply_environment_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    """Test nothing changes without the environment variable."""
    monkeypatch.delenv(WATCH_NAMESPACE_ENV, raising=False)
    config = BundleBuilderConfig()
    config.apply_environment()
    assert config.watch.namespace is None
