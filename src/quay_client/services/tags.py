"""List the tags of a repository, enriched with vulnerability data."""

import datetime
import re
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor

import httpx
import structlog
from safir.datetime import current_datetime
from structlog.stdlib import BoundLogger

from ..exceptions import QuayClientError, RegistryStatusError
from ..models.severity import Severity, severity_rank
from ..models.tag import (
    SkippedTag,
    SkipReason,
    Tag,
    TagPage,
    TagResults,
    UnscannedPolicy,
    bytes_to_megabytes,
)
from ..models.vulnerability import Feature
from ..storage.registry import RegistryClient, read_json
from .vulnerabilities import (
    VulnerabilityService,
    highest_score,
    highest_severity,
)

__all__ = [
    "TAG_PAGE_SIZE",
    "TagService",
    "filter_findings",
    "parse_severity_floor",
    "tag_matches",
]

TAG_PAGE_SIZE = 100
"""Largest page of tags the registry will return."""


def _compiles(pattern: str) -> bool:
    try:
        re.compile(pattern)
    except re.error:
        return False
    return True


def tag_matches(pattern: str, name: str) -> bool:
    """Whether ``name`` matches ``pattern`` anywhere.

    The empty pattern matches everything; a pattern that does not compile
    matches nothing.
    """
    if not pattern:
        return True
    try:
        return re.search(pattern, name) is not None
    except re.error:
        return False


def parse_severity_floor(value: str | Severity | None) -> Severity | None:
    """Turn a user-supplied severity into a floor; empty means none."""
    if not value:
        return None
    severity = Severity.parse(value)
    if severity is None:
        choices = ", ".join(s.value for s in Severity)
        raise ValueError(f"Unknown severity '{value}' (choose from {choices})")
    return severity


def filter_findings(
    features: list[Feature], severity: Severity | None, base_score: float
) -> list[Feature]:
    """Keep findings that meet both the severity and the score floor.

    A finding survives if its own severity is at least ``severity`` and
    its feature has any base score above ``base_score``.  Features left
    without findings are dropped.  Either floor is ignored when unset
    (`None`, or a score of zero or less).
    """
    kept: list[Feature] = []
    for feature in features:
        score_ok = base_score <= 0 or any(
            s > base_score for s in feature.base_scores
        )
        if not score_ok:
            continue
        findings = [
            f
            for f in feature.findings
            if severity is None or severity_rank(f.severity) >= severity.rank
        ]
        if findings:
            kept.append(feature.model_copy(update={"findings": findings}))
    return kept


class TagService:
    """Fetch repository tags and enrich them concurrently.

    Parameters
    ----------
    client
        Registry client; shared by every worker.
    vulnerabilities
        Source of normalized scan reports.
    max_workers
        Maximum number of scan reports fetched at once per repository.
    unscanned_policy
        Whether tags without a finished scan are dropped or kept.
    logger
        Logger to use for messages.
    clock
        Source of the current time, against which tag ages are computed.
    """

    def __init__(
        self,
        client: RegistryClient,
        vulnerabilities: VulnerabilityService,
        *,
        max_workers: int = 8,
        unscanned_policy: UnscannedPolicy = UnscannedPolicy.SKIP,
        logger: BoundLogger | None = None,
        clock: Callable[[], datetime.datetime] = current_datetime,
    ) -> None:
        self._client = client
        self._vulnerabilities = vulnerabilities
        self._max_workers = max_workers
        self._unscanned_policy = unscanned_policy
        self._logger = logger or structlog.get_logger(__name__)
        self._clock = clock

    def now(self) -> datetime.datetime:
        return self._clock()

    def fetch_tags(self, org: str, repo: str) -> list[Tag]:
        """Fetch the raw tag listing of a repository, every page of it."""
        tags: list[Tag] = []
        page = 1
        while True:
            self._logger.debug(
                f"Requesting {org}/{repo}: tags "
                f"{(page - 1) * TAG_PAGE_SIZE + 1}-{page * TAG_PAGE_SIZE}"
            )
            r = self._client.get(
                f"/repository/{org}/{repo}/tag",
                params={"page": page, "limit": TAG_PAGE_SIZE},
            )
            result = read_json(r, f"list tags of {org}/{repo}", TagPage)
            tags.extend(result.tags)
            if not result.has_additional:
                break
            page += 1
        self._logger.debug(f"Found {len(tags)} tags in {org}/{repo}")
        return tags

    def youngest(self, tags: list[Tag], now: datetime.datetime) -> Tag:
        """The most recently modified tag; the first one wins ties."""
        return min(tags, key=lambda t: t.age_at(now) or 0)

    def list_tags(
        self,
        org: str,
        repo: str,
        tag_pattern: str = "",
        severity: str | Severity | None = None,
        base_score: float = 0.0,
        *,
        details: bool = False,
        only_youngest: bool = False,
        now: datetime.datetime | None = None,
    ) -> TagResults:
        """List and enrich the tags of a repository.

        Parameters
        ----------
        org
            Organization name.
        repo
            Repository name.
        tag_pattern
            Only tags whose name matches this regular expression are
            enriched.  Empty means all of them.
        severity
            If set, only keep tags with a finding at least this severe
            whose feature also passes the ``base_score`` floor.
        base_score
            If positive, only keep tags with a finding in a feature that
            has a base score above this value (and that passes the
            ``severity`` floor).
        details
            Keep the full vulnerability report on each tag.  Otherwise the
            report carries only its scan status.
        only_youngest
            Consider only the most recently modified tag.
        now
            Time against which ages are computed; defaults to the current
            time, taken once for the whole listing.

        Returns
        -------
        TagResults
            Accepted tags, in listing order, and the tags that were left
            out along with the reason.

        Raises
        ------
        UnexpectedContentError
            The tag listing was an HTML page.
        DecodeError
            The tag listing could not be decoded.
        httpx.HTTPError
            The tag listing could not be fetched.
        """
        floor = parse_severity_floor(severity)
        now = now or self.now()
        tags = self.fetch_tags(org, repo)
        if only_youngest:
            if not tags:
                return TagResults()
            tags = [self.youngest(tags, now)]
        if tag_pattern and not _compiles(tag_pattern):
            self._logger.warning(
                f"Tag pattern '{tag_pattern}' does not compile, so no tags "
                f"in {org}/{repo} match"
            )
        selected = [t for t in tags if tag_matches(tag_pattern, t.name)]
        if len(selected) < len(tags):
            self._logger.debug(
                f"{len(selected)} of {len(tags)} tags in {org}/{repo} match "
                f"'{tag_pattern}'"
            )

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = [
                executor.submit(
                    self._enrich,
                    org,
                    repo,
                    tag,
                    floor=floor,
                    base_score=base_score,
                    details=details,
                    now=now,
                )
                for tag in selected
            ]
        results = TagResults()
        for future in futures:
            outcome = future.result()
            if isinstance(outcome, SkippedTag):
                results.skipped.append(outcome)
            else:
                results.tags.append(outcome)
        return results

    def _age(self, tag: Tag, now: datetime.datetime) -> int:
        age = tag.age_at(now)
        if age is None:
            self._logger.warning(
                f"Failed to parse last modified date of {tag.name}",
                last_modified=tag.last_modified,
            )
            return 0
        return age

    def _enrich(
        self,
        org: str,
        repo: str,
        tag: Tag,
        *,
        floor: Severity | None,
        base_score: float,
        details: bool,
        now: datetime.datetime,
    ) -> Tag | SkippedTag:
        try:
            report = self._vulnerabilities.normalize(org, repo, tag.digest)
        except (QuayClientError, httpx.HTTPError) as e:
            self._logger.debug(f"Skipping {repo}:{tag.name}: {e}")
            return SkippedTag(repo, tag.name, SkipReason.SCAN_ERROR, str(e))
        if not report.scanned and (
            self._unscanned_policy == UnscannedPolicy.SKIP
        ):
            self._logger.debug(
                f"Skipping {repo}:{tag.name}: scan status '{report.status}'"
            )
            return SkippedTag(
                repo, tag.name, SkipReason.NOT_SCANNED, report.status
            )

        features = report.features or []
        top = highest_severity(features)
        enriched = tag.model_copy(
            update={
                "repository": repo,
                "highest_score": highest_score(features),
                "highest_severity": top.value if top else "",
                "age": self._age(tag, now),
                "size_mb": bytes_to_megabytes(tag.size),
                "vulnerabilities": report if details else report.status_only(),
            }
        )
        if floor is None and base_score <= 0:
            return enriched

        kept = filter_findings(features, floor, base_score)
        if not kept:
            return SkippedTag(repo, tag.name, SkipReason.FILTERED)
        if details:
            enriched.vulnerabilities = report.model_copy(
                update={"features": kept}
            )
        return enriched

    def delete_tag(self, org: str, repo: str, tag: str) -> str:
        """Delete a tag; returns the registry's response body."""
        r = self._client.delete(f"/repository/{org}/{repo}/tag/{tag}")
        if not r.is_success:
            raise RegistryStatusError(
                f"failed to delete tag: {r.status_code} {r.reason_phrase}",
                r.status_code,
            )
        self._logger.info(f"Deleted tag {tag} from {org}/{repo}")
        return r.text
