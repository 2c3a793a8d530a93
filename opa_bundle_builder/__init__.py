"""
opa-bundle-builder assembles labelled ConfigMaps holding Rego rules into a
bundle archive and serves it to a colocated Open Policy Agent.
"""

__all__ = [
    "manifest",
    "assembler",
    "coordinator",
    "store",
    "task",
    "watch",
    "server",
    "orchestrator",
    "config",
    "exceptions",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
