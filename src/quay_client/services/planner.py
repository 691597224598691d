"""Plan which tags can be deleted, without deleting anything."""

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlsplit

import structlog
from structlog.stdlib import BoundLogger

from ..models.severity import Severity, severity_rank
from ..models.tag import Tag
from ..models.usage import ImageUsage, UsageReport
from ..storage.imagetool import ImageToolClient
from .organizations import OrganizationService, compile_pattern
from .tags import parse_severity_floor

__all__ = ["DeletionPlanner", "PlanEntry", "PlanEntryKind", "registry_host"]


def registry_host(url: str) -> str:
    """Strip the scheme from a registry URL, as image references omit it."""
    parts = urlsplit(url)
    if parts.netloc:
        return f"{parts.netloc}{parts.path}".rstrip("/")
    return url.rstrip("/")


class PlanEntryKind(Enum):
    """Whether a planned tag is deployed or may be deleted."""

    IN_USE = "in-use"
    CANDIDATE = "candidate"


@dataclass
class PlanEntry:
    """A tag the planner has an opinion on."""

    kind: PlanEntryKind
    org: str
    tag: Tag
    usage: ImageUsage | None = None

    def __str__(self) -> str:
        tag = self.tag
        if self.usage is not None:
            return (
                f"# {self.org}/{tag.repository}:{tag.name} is used in "
                f"cluster {self.usage.cluster} in namespace "
                f"{self.usage.used_in_namespace} - Url: "
                f"{self.usage.registry_url}"
            )
        cmd = (
            f"qc -o {self.org:<5} -r {tag.repository:<36} "
            f"-t {tag.name:<25} -d"
        )
        return (
            f"{cmd:<80}   # Age: {tag.age:4d}, "
            f"Severity {tag.highest_severity:<10}"
        )


class DeletionPlanner:
    """Find tags that are not deployed anywhere and are old or vulnerable.

    The plan consists of ready-to-run ``qc ... -d`` command lines, one per
    candidate, interleaved with comment lines for tags that are in use.

    Parameters
    ----------
    organizations
        Organization service used to fetch every tag with its details.
    image_tool
        Client for the usage report.
    registry_url
        Registry URL; its host forms one of the two references looked up
        in the usage report.
    logger
        Logger to use for messages.
    """

    def __init__(
        self,
        organizations: OrganizationService,
        image_tool: ImageToolClient,
        registry_url: str,
        logger: BoundLogger | None = None,
    ) -> None:
        self._organizations = organizations
        self._image_tool = image_tool
        self._registry_host = registry_host(registry_url)
        self._logger = logger or structlog.get_logger(__name__)
        self._plan: list[PlanEntry] | None = None

    def _in_use(
        self, usage: UsageReport, org: str, tag: Tag
    ) -> ImageUsage | None:
        references = (
            f"{org}-images/{tag.repository}:{tag.name}",
            f"{self._registry_host}/{org}/{tag.repository}:{tag.name}",
        )
        for reference in references:
            found = usage.find(org, reference)
            if found is not None:
                return found
        return None

    def plan(
        self,
        org: str,
        repo_pattern: str = "",
        tag_pattern: str = "",
        severity: str | Severity | None = None,
        min_age: int = 0,
    ) -> list[PlanEntry]:
        """Evaluate every tag of an organization.

        Parameters
        ----------
        org
            Organization name; also the image family of the usage report.
        repo_pattern
            Only consider repositories whose name matches.
        tag_pattern
            Only propose tags whose name matches.
        severity
            Only propose tags whose highest severity is at least this.
        min_age
            If positive, only propose tags at least this many days old.

        Returns
        -------
        list of PlanEntry
            In-use and candidate tags, in repository then tag order.

        Raises
        ------
        InvalidPatternError
            A pattern does not compile.
        UsageReportError
            The usage report could not be produced.
        """
        repo_regex = compile_pattern(repo_pattern)
        tag_regex = compile_pattern(tag_pattern)
        floor = parse_severity_floor(severity)
        orgs = self._organizations.list_repositories(
            org, details=True, only_youngest=False
        )
        entries: list[PlanEntry] = []
        for organization in orgs.organizations:
            usage = self._image_tool.load(organization.name)
            for repo in organization.repositories:
                if not repo_regex.search(repo.name):
                    continue
                for tag in repo.tags:
                    found = self._in_use(usage, organization.name, tag)
                    if found is not None:
                        entries.append(
                            PlanEntry(
                                PlanEntryKind.IN_USE,
                                organization.name,
                                tag,
                                found,
                            )
                        )
                        continue
                    if not tag_regex.search(tag.name):
                        continue
                    if floor is not None and (
                        severity_rank(tag.highest_severity) < floor.rank
                    ):
                        continue
                    if min_age > 0 and tag.age < min_age:
                        continue
                    entries.append(
                        PlanEntry(
                            PlanEntryKind.CANDIDATE, organization.name, tag
                        )
                    )
        candidates = [e for e in entries if e.kind == PlanEntryKind.CANDIDATE]
        self._logger.debug(
            f"Planned {len(candidates)} deletions in {org}",
            in_use=len(entries) - len(candidates),
        )
        self._plan = entries
        return entries

    def lines(self) -> list[str]:
        """The current plan as shell lines."""
        if self._plan is None:
            return []
        return [str(e) for e in self._plan]

    def report(self) -> None:
        """Print the current plan."""
        if self._plan is None:
            self._logger.warning(
                "No plan has been formulated and thus cannot be reported."
            )
            return
        for line in self.lines():
            print(line)
