"""Test planning which tags to delete."""

import pytest

from quay_client.exceptions import InvalidPatternError, UsageReportError
from quay_client.models.usage import UsageReport
from quay_client.services.organizations import OrganizationService
from quay_client.services.planner import (
    DeletionPlanner,
    PlanEntryKind,
    registry_host,
)
from quay_client.storage.imagetool import ImageToolClient


class FakeImageTool(ImageToolClient):
    """Usage report from a canned payload instead of the real tool."""

    def __init__(self, payload: str) -> None:
        super().__init__("image-tool")
        self.payload = payload
        self.families: list[str] = []

    def load(self, family: str) -> UsageReport:
        self.families.append(family)
        return UsageReport.model_validate_json(self.payload)


@pytest.fixture
def image_tool(usage_json: str) -> FakeImageTool:
    return FakeImageTool(usage_json)


@pytest.fixture
def planner(
    org_service: OrganizationService,
    image_tool: FakeImageTool,
    registry_url: str,
) -> DeletionPlanner:
    return DeletionPlanner(org_service, image_tool, registry_url + "/")


def test_registry_host() -> None:
    assert registry_host("https://quay.example.com/") == "quay.example.com"
    assert registry_host("http://localhost:8080") == "localhost:8080"
    assert registry_host("quay.example.com") == "quay.example.com"


def test_plan(planner: DeletionPlanner, image_tool: FakeImageTool) -> None:
    entries = planner.plan("sciplat")
    assert image_tool.families == ["sciplat"]
    summary = [(e.tag.repository, e.tag.name, e.kind) for e in entries]
    # v2 is deployed by registry URL, t1 through the cluster registry; v3
    # has no finished scan and is never listed.
    assert summary == [
        ("app", "v1", PlanEntryKind.CANDIDATE),
        ("app", "v2", PlanEntryKind.IN_USE),
        ("tools", "t1", PlanEntryKind.IN_USE),
    ]


def test_plan_lines(planner: DeletionPlanner) -> None:
    assert planner.lines() == []
    planner.plan("sciplat")
    candidate, in_use, cluster_use = planner.lines()

    assert candidate.startswith("qc -o sciplat -r app ")
    assert " -t v1 " in candidate
    assert candidate.rstrip().endswith("# Age:   30, Severity high")
    assert candidate.index("# Age") > 80

    assert in_use == (
        "# sciplat/app:v2 is used in cluster cluster-a in namespace prod"
        " - Url: quay.example.com/sciplat/app:v2"
    )
    assert cluster_use == (
        "# sciplat/tools:t1 is used in cluster cluster-b in namespace batch"
        " - Url: image-registry.svc:5000/sciplat-images/tools:t1"
    )


def test_plan_min_age(planner: DeletionPlanner) -> None:
    entries = planner.plan("sciplat", min_age=31)
    assert PlanEntryKind.CANDIDATE not in {e.kind for e in entries}

    entries = planner.plan("sciplat", min_age=30)
    candidates = [e for e in entries if e.kind == PlanEntryKind.CANDIDATE]
    assert [e.tag.name for e in candidates] == ["v1"]


def test_plan_severity(planner: DeletionPlanner) -> None:
    entries = planner.plan("sciplat", severity="critical")
    assert PlanEntryKind.CANDIDATE not in {e.kind for e in entries}

    entries = planner.plan("sciplat", severity="HIGH")
    candidates = [e for e in entries if e.kind == PlanEntryKind.CANDIDATE]
    assert [e.tag.name for e in candidates] == ["v1"]


def test_plan_patterns(planner: DeletionPlanner) -> None:
    entries = planner.plan("sciplat", repo_pattern="^tools$")
    assert [(e.tag.name, e.kind) for e in entries] == [
        ("t1", PlanEntryKind.IN_USE)
    ]

    # In-use tags are reported even when the tag pattern does not match.
    entries = planner.plan("sciplat", tag_pattern="^v9$")
    assert [(e.tag.name, e.kind) for e in entries] == [
        ("v2", PlanEntryKind.IN_USE),
        ("t1", PlanEntryKind.IN_USE),
    ]

    with pytest.raises(InvalidPatternError):
        planner.plan("sciplat", tag_pattern="v(")
    with pytest.raises(InvalidPatternError):
        planner.plan("sciplat", repo_pattern="[")


def test_report(
    planner: DeletionPlanner, capsys: pytest.CaptureFixture[str]
) -> None:
    planner.report()
    assert capsys.readouterr().out == ""

    planner.plan("sciplat")
    planner.report()
    out = capsys.readouterr().out.splitlines()
    assert out == planner.lines()
    assert len(out) == 3


def test_usage_report_failure(
    org_service: OrganizationService, registry_url: str
) -> None:
    class BrokenImageTool(ImageToolClient):
        def load(self, family: str) -> UsageReport:
            raise UsageReportError("failed to execute command: not found")

    planner = DeletionPlanner(org_service, BrokenImageTool(), registry_url)
    with pytest.raises(UsageReportError):
        planner.plan("sciplat")
