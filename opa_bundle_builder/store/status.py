"""Admission status for a policy source."""

from enum import StrEnum
from dataclasses import dataclass, field


class AdmissionStatus(StrEnum):
    """Outcome of admitting a policy source into the cache."""

    ADMITTED = "Admitted"
    PARTIAL = "Partial"
    EXCLUDED = "Excluded"


@dataclass
class AdmissionInfo:
    """Admission status and the entries that were rejected with their reason."""

    status: AdmissionStatus
    rejected: dict[str, str] = field(default_factory=dict)

    def __str__(self) -> str:
        """Return a string representation of the status."""
        if self.rejected:
            reasons = ", ".join(
                f"{name}: {reason}" for name, reason in sorted(self.rejected.items())
            )
            return f"{self.status}: {reasons}"
        return str(self.status)
