"""Organization-level listings, optionally enriched with tag details."""

import datetime
import re
from concurrent.futures import ThreadPoolExecutor

import httpx
import structlog
from pydantic import BaseModel
from structlog.stdlib import BoundLogger

from ..exceptions import InvalidPatternError, QuayClientError
from ..models.organization import (
    Notification,
    Organization,
    OrgSet,
    Prototypes,
    Repository,
)
from ..storage.registry import RegistryClient, read_json
from .tags import TagService

__all__ = ["OrganizationService", "compile_pattern"]


class _RepositoryPage(BaseModel):
    repositories: list[Repository] = []
    next_page: str | None = None


class _NotificationList(BaseModel):
    notifications: list[Notification] = []


def compile_pattern(pattern: str) -> re.Pattern[str]:
    """Compile a user-supplied regular expression."""
    try:
        return re.compile(pattern)
    except re.error as e:
        raise InvalidPatternError(f"invalid pattern '{pattern}': {e}") from e


class OrganizationService:
    """List organizations and their repositories.

    Parameters
    ----------
    client
        Registry client.
    tags
        Tag service used to enrich repositories with their tags.
    max_workers
        Maximum number of repositories enriched at once.
    logger
        Logger to use for messages.
    """

    def __init__(
        self,
        client: RegistryClient,
        tags: TagService,
        *,
        max_workers: int = 8,
        logger: BoundLogger | None = None,
    ) -> None:
        self._client = client
        self._tags = tags
        self._max_workers = max_workers
        self._logger = logger or structlog.get_logger(__name__)

    def list_organizations(self) -> OrgSet:
        """List every organization (requires superuser rights)."""
        r = self._client.get("/superuser/organizations/")
        return read_json(r, "list organizations", OrgSet)

    def fetch_repositories(self, org: str) -> list[Repository]:
        """Fetch the flat repository listing of an organization."""
        repos: list[Repository] = []
        params: dict[str, str] = {"namespace": org}
        while True:
            r = self._client.get("/repository", params=params)
            page = read_json(
                r, f"list repositories of {org}", _RepositoryPage
            )
            repos.extend(page.repositories)
            if not page.next_page:
                break
            params["next_page"] = page.next_page
        self._logger.debug(f"Found {len(repos)} repositories in {org}")
        return repos

    def list_repositories(
        self,
        org: str,
        details: bool = False,
        *,
        tag_pattern: str = "",
        only_youngest: bool | None = None,
        pattern: re.Pattern[str] | None = None,
    ) -> OrgSet:
        """List the repositories of an organization.

        Parameters
        ----------
        org
            Organization name.
        details
            Enrich every repository with its tags, and drop repositories
            that fail to enrich or end up without tags.
        tag_pattern
            Only enrich tags matching this regular expression.
        only_youngest
            Enrich only the youngest tag of each repository.  Defaults to
            doing so when details are requested without a tag pattern.
        pattern
            Only keep repositories whose name matches.

        Returns
        -------
        OrgSet
            A single organization holding the repositories.
        """
        if only_youngest is None:
            only_youngest = details and not tag_pattern
        repos = self.fetch_repositories(org)
        if pattern is not None:
            repos = [r for r in repos if pattern.search(r.name)]
        if details:
            repos = self._enrich(
                org,
                repos,
                tag_pattern=tag_pattern,
                only_youngest=only_youngest,
            )
        return OrgSet(
            organizations=[Organization(name=org, repositories=repos)]
        )

    def list_repositories_by_pattern(
        self,
        org: str,
        pattern: str,
        details: bool = False,
        *,
        tag_pattern: str = "",
        only_youngest: bool | None = None,
    ) -> OrgSet:
        """List repositories whose name matches a regular expression.

        Raises
        ------
        InvalidPatternError
            The pattern does not compile.
        """
        regex = compile_pattern(pattern)
        return self.list_repositories(
            org,
            details,
            tag_pattern=tag_pattern,
            only_youngest=only_youngest,
            pattern=regex,
        )

    def _enrich(
        self,
        org: str,
        repos: list[Repository],
        *,
        tag_pattern: str,
        only_youngest: bool,
    ) -> list[Repository]:
        now = self._tags.now()
        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = [
                executor.submit(
                    self._enrich_one,
                    org,
                    repo,
                    tag_pattern=tag_pattern,
                    only_youngest=only_youngest,
                    now=now,
                )
                for repo in repos
            ]
        enriched = [f.result() for f in futures]
        return [r for r in enriched if r is not None]

    def _enrich_one(
        self,
        org: str,
        repo: Repository,
        *,
        tag_pattern: str,
        only_youngest: bool,
        now: datetime.datetime,
    ) -> Repository | None:
        try:
            results = self._tags.list_tags(
                org,
                repo.name,
                tag_pattern,
                details=False,
                only_youngest=only_youngest,
                now=now,
            )
        except (QuayClientError, httpx.HTTPError) as e:
            self._logger.warning(
                f"Failed to list tags for repository {repo.name}: {e}"
            )
            return None
        if not results.tags:
            return None
        return repo.model_copy(update={"tags": results.tags})

    def get_users(self, org: str) -> Prototypes:
        """List the default permission prototypes of an organization."""
        r = self._client.get(f"/organization/{org}/prototypes")
        return read_json(r, f"get users of {org}", Prototypes)

    def list_notifications(self, org: str) -> list[Notification]:
        """Collect the notifications of every repository in an organization."""
        notifications: list[Notification] = []
        for repo in self.fetch_repositories(org):
            path = f"/repository/{org}/{repo.name}/notification/"
            result = read_json(
                self._client.get(path),
                f"list notifications of {org}/{repo.name}",
                _NotificationList,
            )
            notifications.extend(result.notifications)
        return notifications
