"""Exceptions related to opa-bundle-builder."""

__all__ = [
    "BundleBuilderException",
    "InputException",
    "AssemblyException",
    "WatchException",
    "EntryRejectedError",
]


class BundleBuilderException(Exception):
    """Generic base exception used for this library."""


class InputException(BundleBuilderException):
    """Raised when the input objects or values are not formatted as expected."""


class AssemblyException(BundleBuilderException):
    """Raised when a bundle archive could not be assembled."""


class WatchException(BundleBuilderException):
    """Raised when the watch feed for policy sources cannot be established."""


class EntryRejectedError(InputException):
    """Raised when a single policy source entry is not admitted to a bundle."""

    def __init__(self, entry_name: str, reason: str) -> None:
        super().__init__(f"Entry {entry_name} rejected: {reason}")
        self.entry_name = entry_name
        self.reason = reason
