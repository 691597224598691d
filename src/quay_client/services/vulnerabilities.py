"""Fetch and normalize security scan reports."""

import structlog
from structlog.stdlib import BoundLogger

from ..models.severity import Severity, severity_rank
from ..models.vulnerability import Feature, VulnerabilityReport
from ..storage.registry import RegistryClient, read_json

__all__ = [
    "VulnerabilityService",
    "highest_score",
    "highest_severity",
    "prune_features",
]


def prune_features(features: list[Feature]) -> list[Feature]:
    """Drop features with no findings, no base scores and no CVE IDs."""
    return [f for f in features if not f.is_empty()]


def highest_score(features: list[Feature]) -> float:
    """Highest base score across every feature; 0 if there are none."""
    return max((s for f in features for s in f.base_scores), default=0.0)


def highest_severity(features: list[Feature]) -> Severity | None:
    """Most severe finding across every feature.

    Severities that are not recognized rank below ``low`` and are never
    returned.
    """
    best: Severity | None = None
    for feature in features:
        for finding in feature.findings:
            if severity_rank(finding.severity) > severity_rank(best):
                best = Severity.parse(finding.severity)
    return best


class VulnerabilityService:
    """Retrieve the security scan of a manifest and keep what matters.

    Parameters
    ----------
    client
        Registry client.
    logger
        Logger to use for messages.
    """

    def __init__(
        self, client: RegistryClient, logger: BoundLogger | None = None
    ) -> None:
        self._client = client
        self._logger = logger or structlog.get_logger(__name__)

    def normalize(
        self, org: str, repo: str, digest: str
    ) -> VulnerabilityReport:
        """Fetch the scan report of ``digest`` and prune empty features.

        A report whose status is not ``scanned`` comes back with its status
        only; that is not an error, it means the data is not usable yet.

        Raises
        ------
        UnexpectedContentError
            The registry answered with an HTML page.
        DecodeError
            The body is not a scan report.
        httpx.HTTPError
            The request failed.
        """
        path = f"/repository/{org}/{repo}/manifest/{digest}/security"
        report = read_json(
            self._client.get(path),
            f"get vulnerabilities of {org}/{repo}@{digest}",
            VulnerabilityReport,
        )
        if not report.scanned:
            return report.status_only()
        return VulnerabilityReport(
            status=report.status,
            features=prune_features(report.features or []),
        )
