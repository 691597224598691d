"""Component factory."""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Self

import httpx
import structlog
from structlog.stdlib import BoundLogger

from .config import Config, RegistryAuth
from .services.organizations import OrganizationService
from .services.planner import DeletionPlanner
from .services.tags import TagService
from .services.vulnerabilities import VulnerabilityService
from .storage.imagetool import ImageToolClient
from .storage.registry import RegistryClient
from .storage.secrets import SecretCredentialSource

__all__ = ["Factory", "configure_logging"]


def configure_logging(verbose: bool = False) -> None:
    """Send log messages to stderr, so stdout carries only results."""
    log_level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
    )


class Factory:
    """Build client components.

    Parameters
    ----------
    config
        Resolved client configuration.
    username
        Explicit username; with ``password``, skips the secret lookup.
    password
        Explicit password.
    verbose
        Verbose mode, passed on to the usage-report tool.
    logger
        Logger to use for messages.
    transport
        Alternate HTTP transport for the registry, intended for the test
        suite.
    credentials
        Alternate source of registry credentials, intended for the test
        suite.
    """

    @classmethod
    @contextmanager
    def standalone(
        cls,
        config: Config,
        *,
        transport: httpx.BaseTransport | None = None,
        credentials: SecretCredentialSource | None = None,
    ) -> Iterator[Self]:
        """Context manager for client components.

        Intended for the test suite.

        Yields
        ------
        Factory
            Newly-created factory, closed on exit.
        """
        logger = structlog.get_logger(__name__)
        factory = cls(
            config,
            logger=logger,
            transport=transport,
            credentials=credentials,
        )
        try:
            yield factory
        finally:
            factory.close()

    def __init__(
        self,
        config: Config,
        *,
        username: str | None = None,
        password: str | None = None,
        verbose: bool = False,
        logger: BoundLogger | None = None,
        transport: httpx.BaseTransport | None = None,
        credentials: SecretCredentialSource | None = None,
    ) -> None:
        self._config = config
        self._username = username
        self._password = password
        self._verbose = verbose
        self._logger = logger or structlog.get_logger("quay_client")
        self._transport = transport
        self._credentials = credentials
        self._auth: RegistryAuth | None = None
        self._client: RegistryClient | None = None

    @property
    def config(self) -> Config:
        return self._config

    def create_credential_source(self) -> SecretCredentialSource:
        if self._credentials is None:
            kubeconfig = self._config.registry.kubeconfig_path
            self._credentials = SecretCredentialSource(
                Path(kubeconfig) if kubeconfig else None, logger=self._logger
            )
        return self._credentials

    def get_auth(self) -> RegistryAuth | None:
        """Resolve the registry credential from its secret, once.

        Returns `None` when an explicit username and password were given,
        or when no secret is configured.

        Raises
        ------
        CredentialError
            The secret could not be read or holds no usable credential.
        """
        if self._username and self._password:
            return None
        if self._auth is None:
            reg = self._config.registry
            if not reg.secret_name and not reg.secret_namespace:
                self._logger.debug("No credential secret configured")
                return None
            self._auth = self.create_credential_source().resolve(
                reg.secret_name, reg.secret_namespace
            )
        return self._auth

    def create_registry_client(self) -> RegistryClient:
        if self._client is None:
            self._client = RegistryClient(
                self._config.registry.url,
                self.get_auth(),
                username=self._username,
                password=self._password,
                logger=self._logger,
                transport=self._transport,
            )
        return self._client

    def create_vulnerability_service(self) -> VulnerabilityService:
        return VulnerabilityService(
            self.create_registry_client(), logger=self._logger
        )

    def create_tag_service(self) -> TagService:
        return TagService(
            self.create_registry_client(),
            self.create_vulnerability_service(),
            max_workers=self._config.max_workers,
            unscanned_policy=self._config.unscanned_policy,
            logger=self._logger,
        )

    def create_organization_service(self) -> OrganizationService:
        return OrganizationService(
            self.create_registry_client(),
            self.create_tag_service(),
            max_workers=self._config.max_workers,
            logger=self._logger,
        )

    def create_image_tool_client(self) -> ImageToolClient:
        return ImageToolClient(
            self._config.image_tool,
            verbose=self._verbose,
            logger=self._logger,
        )

    def create_deletion_planner(self) -> DeletionPlanner:
        return DeletionPlanner(
            self.create_organization_service(),
            self.create_image_tool_client(),
            self._config.registry.url,
            logger=self._logger,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
