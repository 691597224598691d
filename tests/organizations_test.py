"""Test organization and repository listings."""

import re

import httpx
import pytest

from quay_client.exceptions import InvalidPatternError, NotFoundError
from quay_client.services.organizations import OrganizationService
from quay_client.services.tags import TagService
from quay_client.storage.registry import RegistryClient

from conftest import FakeQuay, InFlight, load_support


def test_list_organizations(org_service: OrganizationService) -> None:
    orgs = org_service.list_organizations()
    assert [o.name for o in orgs.organizations] == ["sciplat", "rubin"]
    assert all(o.repositories == [] for o in orgs.organizations)


def test_list_organizations_not_superuser(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    del quay.routes[("GET", "/api/v1/superuser/organizations/")]
    with pytest.raises(NotFoundError, match="endpoint not found"):
        org_service.list_organizations()


def test_list_repositories(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    orgs = org_service.list_repositories("sciplat")
    assert len(orgs.organizations) == 1
    org = orgs.organizations[0]
    assert org.name == "sciplat"
    assert [r.name for r in org.repositories] == ["app", "tools"]
    assert all(r.tags == [] for r in org.repositories)
    assert quay.paths() == ["/repository"]
    assert quay.requests[0].url.params["namespace"] == "sciplat"


def test_list_repositories_details(
    org_service: OrganizationService,
) -> None:
    orgs = org_service.list_repositories("sciplat", details=True)
    repos = orgs.organizations[0].repositories
    assert [r.name for r in repos] == ["app", "tools"]

    # Without a tag pattern only the youngest tag of each is shown.
    app, tools = repos
    assert [t.name for t in app.tags] == ["v2"]
    assert [t.name for t in tools.tags] == ["t1"]
    for tag in app.tags + tools.tags:
        assert tag.vulnerabilities is not None
        assert tag.vulnerabilities.features is None
    assert tools.tags[0].repository == "tools"
    assert tools.tags[0].age == 40


def test_list_repositories_tag_pattern(
    org_service: OrganizationService,
) -> None:
    orgs = org_service.list_repositories(
        "sciplat", details=True, tag_pattern="^v1$"
    )
    # tools has no matching tag and is dropped.
    repos = orgs.organizations[0].repositories
    assert [r.name for r in repos] == ["app"]
    assert [t.name for t in repos[0].tags] == ["v1"]


def test_enrichment_failure_drops_repository(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    quay.html("/repository/sciplat/tools/tag")
    orgs = org_service.list_repositories("sciplat", details=True)
    assert [r.name for r in orgs.organizations[0].repositories] == ["app"]


def test_unscanned_youngest_drops_repository(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    quay.json(
        "/repository/sciplat/tools/manifest/sha256:aaa/security",
        {"status": "queued", "data": None},
    )
    orgs = org_service.list_repositories("sciplat", details=True)
    assert [r.name for r in orgs.organizations[0].repositories] == ["app"]


def test_list_repositories_by_pattern(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    orgs = org_service.list_repositories_by_pattern("sciplat", "^to")
    assert [r.name for r in orgs.organizations[0].repositories] == ["tools"]

    orgs = org_service.list_repositories_by_pattern(
        "sciplat", "^to", details=True
    )
    repos = orgs.organizations[0].repositories
    assert [t.name for t in repos[0].tags] == ["t1"]
    # Repositories filtered out by name are never enriched.
    assert "/repository/sciplat/app/tag" not in quay.paths()


def test_list_repositories_invalid_pattern(
    org_service: OrganizationService,
) -> None:
    with pytest.raises(InvalidPatternError, match="invalid pattern"):
        org_service.list_repositories_by_pattern("sciplat", "app(")

    # A compiled pattern may be passed directly as well.
    orgs = org_service.list_repositories(
        "sciplat", pattern=re.compile("app")
    )
    assert [r.name for r in orgs.organizations[0].repositories] == ["app"]


def test_repository_pagination(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    def paged(request: httpx.Request) -> httpx.Response:
        if request.url.params.get("next_page") == "token-2":
            return httpx.Response(
                200, json={"repositories": [{"name": "tools"}]}
            )
        return httpx.Response(
            200,
            json={"repositories": [{"name": "app"}], "next_page": "token-2"},
        )

    quay.route("GET", "/repository", paged)
    repos = org_service.fetch_repositories("sciplat")
    assert [r.name for r in repos] == ["app", "tools"]
    assert [r.url.params.get("next_page") for r in quay.requests] == [
        None,
        "token-2",
    ]
    assert all(r.url.params["namespace"] == "sciplat" for r in quay.requests)


def test_get_users(org_service: OrganizationService) -> None:
    users = org_service.get_users("sciplat")
    assert len(users.prototypes) == 1
    prototype = users.prototypes[0]
    assert prototype.role == "write"
    assert prototype.delegate.name == "sciplat+builder"
    assert prototype.delegate.is_robot
    assert prototype.delegate.avatar.kind == "robot"


def test_get_users_unknown_org(org_service: OrganizationService) -> None:
    with pytest.raises(NotFoundError):
        org_service.get_users("nope")


def test_list_notifications(org_service: OrganizationService) -> None:
    notifications = org_service.list_notifications("sciplat")
    assert len(notifications) == 1
    assert notifications[0].title == "Vulnerability alert"
    assert notifications[0].event == "vulnerability_found"


def test_list_notifications_missing(
    quay: FakeQuay, org_service: OrganizationService
) -> None:
    del quay.routes[("GET", "/api/v1/repository/sciplat/tools/notification/")]
    with pytest.raises(NotFoundError):
        org_service.list_notifications("sciplat")


def test_enrichment_is_concurrent_and_bounded(
    quay: FakeQuay, client: RegistryClient, tag_service: TagService
) -> None:
    names = [f"r{i:02d}" for i in range(12)]
    quay.json("/repository", {"repositories": [{"name": n} for n in names]})
    tags = load_support("tags.json")
    tags["tags"] = tags["tags"][:1]
    listing = InFlight(lambda _: httpx.Response(200, json=tags))
    scanned = load_support("security-scanned.json")
    for name in names:
        quay.route("GET", f"/repository/sciplat/{name}/tag", listing)
        quay.json(
            f"/repository/sciplat/{name}/manifest/sha256:aaa/security",
            scanned,
        )

    service = OrganizationService(client, tag_service, max_workers=3)
    orgs = service.list_repositories("sciplat", details=True)
    repos = orgs.organizations[0].repositories
    assert [r.name for r in repos] == names
    assert 1 < listing.peak <= 3
