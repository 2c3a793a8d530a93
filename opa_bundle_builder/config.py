"""Configuration objects for opa-bundle-builder."""

from dataclasses import dataclass, field
import logging
import os
from pathlib import Path

from mashumaro import DataClassDictMixin
from mashumaro.codecs.yaml import yaml_decode
from mashumaro.exceptions import MissingField, InvalidFieldValue
import yaml

from .exceptions import InputException
from .manifest import DEFAULT_LABEL_SELECTOR

_LOGGER = logging.getLogger(__name__)

WATCH_NAMESPACE_ENV = "WATCH_NAMESPACE"
LOG_LEVEL_ENV = "OPA_BUNDLE_BUILDER_LOG"

# Mirrors the object size limit enforced by the API server.
MAX_OBJECT_BYTES = 1024 * 1024


@dataclass
class AdmissionConfig(DataClassDictMixin):
    """Limits applied when admitting policy source entries."""

    max_entry_bytes: int = MAX_OBJECT_BYTES
    max_source_bytes: int = MAX_OBJECT_BYTES


@dataclass
class AssemblyConfig(DataClassDictMixin):
    """Configuration for building the bundle archive."""

    archive_root: str = ""
    """Optional directory all bundle files are placed under."""

    compress_level: int = 9


@dataclass
class CoordinatorConfig(DataClassDictMixin):
    """Configuration for the RebuildCoordinator."""

    debounce_seconds: float = 0.1
    """Quiet period after the last change before a rebuild starts."""

    max_delay_seconds: float = 5.0
    """Upper bound on how long a steady stream of changes can defer a rebuild."""

    retry_seconds: float = 5.0
    """Delay before retrying a rebuild that failed."""


@dataclass
class WatchConfig(DataClassDictMixin):
    """Configuration for watching policy sources in the cluster."""

    namespace: str | None = None
    all_namespaces: bool = False
    label_selector: str = DEFAULT_LABEL_SELECTOR
    timeout_seconds: int = 60
    backoff_seconds: float = 1.0
    max_backoff_seconds: float = 30.0


@dataclass
class ServerConfig(DataClassDictMixin):
    """Configuration for the bundle HTTP server."""

    host: str = "0.0.0.0"
    port: int = 3030
    retry_after_seconds: int = 5


@dataclass
class BundleBuilderConfig(DataClassDictMixin):
    """Top level configuration for the bundle builder sidecar."""

    admission: AdmissionConfig = field(default_factory=AdmissionConfig)
    assembly: AssemblyConfig = field(default_factory=AssemblyConfig)
    coordinator: CoordinatorConfig = field(default_factory=CoordinatorConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    output_dir: str | None = None
    """Directory the current bundle is also written to, if set."""

    @classmethod
    def from_yaml(cls, path: Path) -> "BundleBuilderConfig":
        """Load the configuration from a YAML file."""
        try:
            content = path.read_text()
        except OSError as err:
            raise InputException(f"Unable to read config file {path}: {err}") from err
        if not content.strip():
            return BundleBuilderConfig()
        try:
            return yaml_decode(content, BundleBuilderConfig)
        except (yaml.YAMLError, MissingField, InvalidFieldValue, TypeError, ValueError) as err:
            raise InputException(f"Invalid config file {path}: {err}") from err

    def apply_environment(self) -> None:
        """Fill in values provided by the environment of the pod."""
        if self.watch.namespace is None and (
            namespace := os.environ.get(WATCH_NAMESPACE_ENV)
        ):
            _LOGGER.debug("Using namespace %s from %s", namespace, WATCH_NAMESPACE_ENV)
            self.watch.namespace = namespace
