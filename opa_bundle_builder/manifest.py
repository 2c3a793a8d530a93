"""Representation of the policy sources watched in a cluster.

A policy source is a ConfigMap carrying one or more named rule texts. The
objects here are parsed from raw kubernetes documents, either delivered by
the watch feed or read from local YAML files.
"""

import base64
import binascii
from dataclasses import dataclass, field
import logging
from typing import Any

from .exceptions import InputException

__all__ = [
    "SourceKey",
    "PolicySource",
    "LabelSelector",
    "MATCH_ALL",
    "CONFIG_MAP_KIND",
    "DEFAULT_LABEL_SELECTOR",
]

_LOGGER = logging.getLogger(__name__)


CONFIG_MAP_KIND = "ConfigMap"
OPERATOR_NAME = "opa.stackable.tech"

# ConfigMaps carrying this label (any value) are bundled.
DEFAULT_LABEL_SELECTOR = f"{OPERATOR_NAME}/bundle"


@dataclass(frozen=True, order=True)
class SourceKey:
    """Stable identifier for a policy source."""

    namespace: str
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        return self.namespaced_name


@dataclass(frozen=True)
class PolicySource:
    """A ConfigMap holding named rule texts.

    Instances are never mutated once created. A changed object in the cluster
    results in a new instance replacing the old one.
    """

    name: str
    """The name of the ConfigMap."""

    namespace: str = ""
    """The namespace of the ConfigMap."""

    entries: dict[str, bytes] = field(default_factory=dict)
    """Entry name to entry content."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels used for selecting the source."""

    resource_version: str | None = None
    """Revision of the object, used only for change detection."""

    invalid_entries: dict[str, str] = field(default_factory=dict)
    """Entries whose content could not be read, mapped to the reason."""

    @property
    def key(self) -> SourceKey:
        """Return the stable identifier of this source."""
        return SourceKey(self.namespace, self.name)

    @classmethod
    def parse_doc(cls, doc: dict[str, Any]) -> "PolicySource":
        """Parse a policy source from a kubernetes ConfigMap document."""
        if (kind := doc.get("kind")) is not None and kind != CONFIG_MAP_KIND:
            raise InputException(f"Invalid object expected {CONFIG_MAP_KIND}: {kind}")
        if not (metadata := doc.get("metadata")):
            raise InputException(f"Invalid {cls.__name__} missing metadata: {doc}")
        if not (name := metadata.get("name")):
            raise InputException(
                f"Invalid {cls.__name__} missing metadata.name: {metadata}"
            )
        entries: dict[str, bytes] = {}
        invalid_entries: dict[str, str] = {}
        for key, value in (doc.get("data") or {}).items():
            if not isinstance(value, str):
                invalid_entries[key] = f"data value is {type(value).__name__}"
                continue
            entries[key] = value.encode("utf-8")
        for key, value in (doc.get("binaryData") or {}).items():
            if key in entries:
                invalid_entries[key] = "key present in both data and binaryData"
                del entries[key]
                continue
            try:
                entries[key] = base64.b64decode(value, validate=True)
            except (binascii.Error, TypeError, ValueError) as err:
                invalid_entries[key] = f"binaryData is not valid base64: {err}"
        return PolicySource(
            name=name,
            namespace=metadata.get("namespace") or "",
            entries=entries,
            labels=dict(metadata.get("labels") or {}),
            resource_version=metadata.get("resourceVersion"),
            invalid_entries=invalid_entries,
        )


@dataclass(frozen=True)
class _Requirement:
    """A single equality based label requirement."""

    key: str
    operator: str
    value: str | None = None

    def matches(self, labels: dict[str, str]) -> bool:
        if self.operator == "exists":
            return self.key in labels
        if self.operator == "!exists":
            return self.key not in labels
        if self.operator == "=":
            return labels.get(self.key) == self.value
        return labels.get(self.key) != self.value


@dataclass(frozen=True)
class LabelSelector:
    """An equality based kubernetes label selector.

    The selector string is passed verbatim to the API server and is also
    evaluated locally so that a source whose labels stop matching is evicted.
    """

    expression: str
    requirements: tuple[_Requirement, ...] = ()

    @classmethod
    def parse(cls, expression: str) -> "LabelSelector":
        """Parse a selector such as `app=opa,!legacy,tier!=test`."""
        requirements: list[_Requirement] = []
        for term in (part.strip() for part in expression.split(",")):
            if not term:
                continue
            if " in " in term or " notin " in term or "(" in term:
                raise InputException(f"Set based label selectors not supported: {term}")
            if "!=" in term:
                key, value = term.split("!=", 1)
                requirements.append(_Requirement(key.strip(), "!=", value.strip()))
            elif "==" in term:
                key, value = term.split("==", 1)
                requirements.append(_Requirement(key.strip(), "=", value.strip()))
            elif "=" in term:
                key, value = term.split("=", 1)
                requirements.append(_Requirement(key.strip(), "=", value.strip()))
            elif term.startswith("!"):
                requirements.append(_Requirement(term[1:].strip(), "!exists"))
            else:
                requirements.append(_Requirement(term, "exists"))
        for requirement in requirements:
            if not requirement.key:
                raise InputException(f"Invalid label selector: {expression!r}")
        return LabelSelector(expression=expression, requirements=tuple(requirements))

    def matches(self, labels: dict[str, str]) -> bool:
        """Return True if all requirements are satisfied by the labels."""
        return all(requirement.matches(labels) for requirement in self.requirements)

    def __str__(self) -> str:
        return self.expression


MATCH_ALL = LabelSelector(expression="")
