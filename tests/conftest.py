"""Test fixtures for the Quay registry client."""

import datetime
import json
import subprocess
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, TypeAlias

import httpx
import pytest
from pydantic import SecretStr

from quay_client.config import RegistryAuth
from quay_client.factory import configure_logging
from quay_client.services.organizations import OrganizationService
from quay_client.services.tags import TagService
from quay_client.services.vulnerabilities import VulnerabilityService
from quay_client.storage.registry import API_PATH, RegistryClient

SUPPORT_DIR = Path(__file__).parent / "support"

REGISTRY_URL = "https://quay.example.com"

NOW = datetime.datetime(2025, 1, 31, 12, 0, tzinfo=datetime.UTC)
"""Instant against which tag ages in the support data are computed."""

Handler: TypeAlias = Callable[[httpx.Request], httpx.Response]


def load_support(name: str) -> Any:
    return json.loads((SUPPORT_DIR / name).read_text())


@pytest.fixture(autouse=True)
def _logging() -> None:
    """Keep log messages off stdout, where results are checked."""
    configure_logging(verbose=True)


class FakeQuay:
    """Minimal stand-in for the Quay API, routed by method and path."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not found"})
        return handler(request)

    def route(self, method: str, path: str, handler: Handler) -> None:
        self.routes[(method, API_PATH + path)] = handler

    def json(
        self, path: str, body: Any, *, method: str = "GET", status: int = 200
    ) -> None:
        self.route(
            method, path, lambda _: httpx.Response(status, json=body)
        )

    def html(self, path: str, *, status: int = 200) -> None:
        page = "<html><body><h1>Please log in</h1></body></html>"
        self.route(
            "GET",
            path,
            lambda _: httpx.Response(
                status, text=page, headers={"content-type": "text/html"}
            ),
        )

    def paths(self) -> list[str]:
        return [r.url.path.removeprefix(API_PATH) for r in self.requests]


class InFlight:
    """Route handler that is slow, and records peak concurrent requests."""

    def __init__(self, handler: Handler, delay: float = 0.05) -> None:
        self._handler = handler
        self._delay = delay
        self._lock = threading.Lock()
        self.current = 0
        self.peak = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
        try:
            time.sleep(self._delay)
            return self._handler(request)
        finally:
            with self._lock:
                self.current -= 1


class FakeRun:
    """Replacement for `subprocess.run` that records its arguments."""

    def __init__(
        self, stdout: str = "", error: Exception | None = None
    ) -> None:
        self.stdout = stdout
        self.error = error
        self.calls: list[list[str]] = []

    def __call__(
        self, args: list[str], **kwargs: Any
    ) -> subprocess.CompletedProcess[str]:
        self.calls.append(args)
        assert kwargs["check"]
        if self.error is not None:
            raise self.error
        return subprocess.CompletedProcess(args, 0, stdout=self.stdout)


@pytest.fixture
def quay() -> FakeQuay:
    """Registry with organization ``sciplat`` holding ``app`` and ``tools``.

    ``app`` has three tags: ``v1`` (30 days old, scanned with a high
    finding), ``v2`` (5 days old, scanned with mixed findings) and ``v3``
    (100 days old, scan still queued).  ``tools`` has a single tag ``t1``.
    """
    fake = FakeQuay()
    fake.json(
        "/superuser/organizations/",
        {"organizations": [{"name": "sciplat"}, {"name": "rubin"}]},
    )
    fake.json("/repository", load_support("repositories.json"))
    fake.json("/repository/sciplat/app/tag", load_support("tags.json"))
    fake.json(
        "/repository/sciplat/tools/tag",
        {
            "tags": [
                {
                    "name": "t1",
                    "manifest_digest": "sha256:aaa",
                    "last_modified": "Sun, 22 Dec 2024 12:00:00 -0000",
                    "size": 2097152,
                }
            ],
            "page": 1,
            "has_additional": False,
        },
    )
    for repo in ("app", "tools"):
        manifest = f"/repository/sciplat/{repo}/manifest"
        fake.json(
            f"{manifest}/sha256:aaa/security",
            load_support("security-scanned.json"),
        )
        fake.json(
            f"{manifest}/sha256:bbb/security",
            load_support("security-mixed.json"),
        )
        fake.json(
            f"{manifest}/sha256:ccc/security",
            load_support("security-queued.json"),
        )
    fake.json(
        "/organization/sciplat/prototypes", load_support("prototypes.json")
    )
    fake.json(
        "/repository/sciplat/app/notification/",
        load_support("notifications.json"),
    )
    fake.json(
        "/repository/sciplat/tools/notification/", {"notifications": []}
    )
    return fake


@pytest.fixture
def client(quay: FakeQuay) -> Iterator[RegistryClient]:
    """Registry client talking to the fake registry with a token."""
    registry = RegistryClient(
        REGISTRY_URL + "/",
        RegistryAuth(token=SecretStr("s3cr3t")),
        transport=quay.transport,
    )
    yield registry
    registry.close()


@pytest.fixture
def tag_service(client: RegistryClient) -> TagService:
    return TagService(
        client, VulnerabilityService(client), max_workers=4, clock=lambda: NOW
    )


@pytest.fixture
def org_service(
    client: RegistryClient, tag_service: TagService
) -> OrganizationService:
    return OrganizationService(client, tag_service, max_workers=4)


@pytest.fixture
def usage_json() -> str:
    """Output of the usage-report tool for family ``sciplat``."""
    return (SUPPORT_DIR / "usage.json").read_text()


@pytest.fixture
def now() -> datetime.datetime:
    """Current time as seen by the tag service."""
    return NOW


@pytest.fixture
def registry_url() -> str:
    return REGISTRY_URL
