"""Vulnerability severity levels and their ordering."""

from enum import Enum
from typing import Self

__all__ = ["Severity", "severity_rank"]


class Severity(Enum):
    """Severity of a scanner finding, listed from least to most severe.

    The scanner reports severities as free-form strings ("High",
    "Critical", "Unknown", "Negligible", ...).  Only the four values
    below carry a rank; anything else ranks as zero and can never be
    the highest severity of a report.
    """

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @classmethod
    def parse(cls, value: str | Self | None) -> Self | None:
        """Match a severity string case-insensitively.

        Returns `None` for empty or unrecognized values.
        """
        if value is None or isinstance(value, cls):
            return value
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


_RANKS = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


def severity_rank(value: str | Severity | None) -> int:
    """Rank a severity; unknown and empty values rank 0."""
    severity = Severity.parse(value)
    if severity is None:
        return 0
    return severity.rank
