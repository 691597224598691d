"""Models for repository tags and tag listings."""

import datetime
import math
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field

from .vulnerability import VulnerabilityReport

__all__ = [
    "SkipReason",
    "SkippedTag",
    "Tag",
    "TagPage",
    "TagResults",
    "UnscannedPolicy",
    "bytes_to_megabytes",
]


def _none_is_zero(inp: Any) -> Any:
    # Manifest lists have no size of their own.
    if inp is None:
        return 0
    return inp


def bytes_to_megabytes(size: float) -> float:
    """Convert bytes to megabytes, truncated to two decimal places."""
    return math.trunc(size / (1024 * 1024) * 100) / 100


class UnscannedPolicy(Enum):
    """What to do with a tag whose scan status is not ``scanned``."""

    SKIP = "skip"
    INCLUDE = "include"


class SkipReason(Enum):
    """Why a tag was left out of an enriched listing."""

    SCAN_ERROR = "scan-error"
    NOT_SCANNED = "not-scanned"
    FILTERED = "filtered"


@dataclass
class SkippedTag:
    """A tag dropped during enrichment, and why."""

    repository: str
    name: str
    reason: SkipReason
    detail: str = ""


class Tag(BaseModel):
    """A tag in a repository, as listed by the registry.

    The tag listing supplies the digest, modification date and size; the
    remaining fields are derived during enrichment.  The repository name
    is stamped on after the fetch, since the same tag name usually exists
    in many repositories.
    """

    model_config = ConfigDict(populate_by_name=True)

    repository: str = ""
    name: str
    digest: Annotated[str, Field(alias="manifest_digest")] = ""
    last_modified: str = ""
    size: Annotated[
        float,
        BeforeValidator(_none_is_zero),
        Field(title="Size", description="Image size in bytes"),
    ] = 0
    expired: bool = False
    manifest: Any = None
    vulnerabilities: VulnerabilityReport | None = None
    highest_score: float = 0.0
    highest_severity: str = ""
    age: Annotated[
        int, Field(title="Age", description="Days since last modification")
    ] = 0
    size_mb: Annotated[
        float,
        Field(title="Size (MB)", description="Image size in megabytes"),
    ] = 0.0

    def modified_at(self) -> datetime.datetime | None:
        """Parse the RFC 1123 last-modified date; `None` if it is unusable.

        Dates without an explicit zone (``-0000``) are taken as UTC.
        """
        try:
            dt = parsedate_to_datetime(self.last_modified)
        except (TypeError, ValueError, IndexError):
            return None
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=datetime.UTC)
        return dt

    def age_at(self, now: datetime.datetime) -> int | None:
        """Whole days between the last modification and ``now``.

        Never negative; `None` if the date cannot be parsed.
        """
        modified = self.modified_at()
        if modified is None:
            return None
        return max(0, (now - modified) // datetime.timedelta(days=1))


class TagResults(BaseModel):
    """Tags of one repository that survived enrichment and filtering."""

    tags: list[Tag] = []
    skipped: Annotated[list[SkippedTag], Field(exclude=True)] = []


class TagPage(BaseModel):
    """One page of the registry's tag listing."""

    tags: list[Tag] = []
    page: int = 1
    has_additional: bool = False
