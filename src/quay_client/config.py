"""Configuration for the Quay registry client."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Annotated, Any, Self

import yaml
from pydantic import BaseModel, BeforeValidator, Field, SecretStr
from safir.pydantic import CamelCaseModel

from .models.tag import UnscannedPolicy

__all__ = [
    "CONFIG_LOCATIONS",
    "Config",
    "RegistryAuth",
    "RegistrySettings",
    "kubeconfig_path",
]

CONFIG_LOCATIONS = (
    Path("config.yaml"),
    Path.home() / ".config" / "qc" / "config.yaml",
    Path("/etc/qc/config.yaml"),
)
"""Configuration files searched, in order; the first one found wins."""

EXAMPLE_CONFIG_PATH = Path.home() / ".config" / "qc" / "config.yaml"


def _none_is_empty_str(inp: Any) -> Any:
    if inp is None:
        return ""
    return inp


def kubeconfig_path(override: str | Path | None = None) -> Path:
    """Locate the kubeconfig: explicit path, then $KUBECONFIG, then ~/.kube."""
    if override:
        return Path(override)
    if env := os.getenv("KUBECONFIG"):
        return Path(env)
    return Path.home() / ".kube" / "config"


class RegistryAuth(BaseModel):
    """Credential for the registry: a bearer token or a username/password.

    If both are present, the token is preferred.
    """

    username: Annotated[
        str | None,
        Field(
            title="Username",
            description="Username (if any) for basic authentication.",
            examples=["quayadmin"],
        ),
    ] = None

    password: Annotated[
        SecretStr | None,
        Field(
            title="Password",
            description="Password for basic authentication.",
            examples=["hunter2"],
        ),
    ] = None

    token: Annotated[
        SecretStr | None,
        Field(
            title="Token",
            description="OAuth bearer token for the registry API.",
        ),
    ] = None

    @property
    def has_token(self) -> bool:
        return bool(self.token and self.token.get_secret_value())

    @property
    def has_basic(self) -> bool:
        return bool(
            self.username
            and self.password
            and self.password.get_secret_value()
        )


class RegistrySettings(CamelCaseModel):
    """Where the registry is and where its admin credential lives."""

    url: Annotated[
        str,
        BeforeValidator(_none_is_empty_str),
        Field(
            title="URL",
            description="Base URL of the Quay registry",
            examples=["https://quay.io"],
        ),
    ] = ""

    kubeconfig_path: Annotated[
        str,
        BeforeValidator(_none_is_empty_str),
        Field(
            title="Kubeconfig path",
            description="Kubeconfig used to read the credential secret",
        ),
    ] = ""

    secret_name: Annotated[
        str,
        BeforeValidator(_none_is_empty_str),
        Field(
            title="Secret name",
            description="Name of the secret holding the registry credential",
        ),
    ] = ""

    secret_namespace: Annotated[
        str,
        BeforeValidator(_none_is_empty_str),
        Field(
            title="Secret namespace",
            description="Namespace of the secret holding the credential",
        ),
    ] = ""


class Config(CamelCaseModel):
    """Client configuration, as loaded from YAML and then overridden."""

    registry: Annotated[
        RegistrySettings,
        Field(
            default_factory=RegistrySettings,
            title="Registry",
            description="Registry connection settings",
        ),
    ]

    organisation: Annotated[
        str,
        BeforeValidator(_none_is_empty_str),
        Field(
            title="Organisation",
            description="Default organisation; '-' means none",
        ),
    ] = ""

    max_workers: Annotated[
        int,
        Field(
            title="Maximum workers",
            description=(
                "Upper bound on concurrent registry requests for each "
                "repository or organization being enriched"
            ),
            ge=1,
        ),
    ] = 8

    unscanned_policy: Annotated[
        UnscannedPolicy,
        Field(
            title="Unscanned policy",
            description=(
                "Whether tags without a completed security scan are left out "
                "of detailed listings ('skip') or kept without vulnerability "
                "data ('include')"
            ),
        ),
    ] = UnscannedPolicy.SKIP

    image_tool: Annotated[
        str,
        Field(
            title="Image tool",
            description="Command producing the image usage report",
        ),
    ] = "image-tool"

    @classmethod
    def from_file(cls, path: Path) -> Self:
        return cls.model_validate(yaml.safe_load(path.read_text()) or {})

    @classmethod
    def discover(cls, locations: tuple[Path, ...] | None = None) -> Self:
        """Load the first config file found, or the defaults if none is."""
        if locations is None:
            locations = CONFIG_LOCATIONS
        for location in locations:
            if location.is_file():
                return cls.from_file(location)
        return cls()

    @classmethod
    def load(
        cls,
        *,
        url: str = "",
        secret_name: str = "",
        secret_namespace: str = "",
        organisation: str = "",
        kubeconfig: str = "",
        locations: tuple[Path, ...] | None = None,
    ) -> Self:
        """Resolve each setting from arguments, environment, file, default.

        Arguments win over the environment, which wins over the file.
        """
        cfg = cls.discover(locations)
        reg = cfg.registry
        reg.url = url or os.getenv("QUAYREGISTRY") or reg.url
        reg.secret_name = (
            secret_name
            or os.getenv("QUAYREGISTRYADMINSECRET")
            or reg.secret_name
        )
        reg.secret_namespace = (
            secret_namespace
            or os.getenv("QUAYREGISTRYSECRETNAMESPACE")
            or reg.secret_namespace
        )
        reg.kubeconfig_path = str(
            kubeconfig_path(
                kubeconfig
                or os.getenv("KUBECONFIG")
                or os.path.expandvars(reg.kubeconfig_path)
            )
        )
        cfg.organisation = (
            organisation or os.getenv("QUAYDEFAULTORG") or cfg.organisation
        )
        if cfg.organisation == "-":
            cfg.organisation = ""
        reg.url = reg.url.rstrip("/")
        return cfg

    def write_example(self, path: Path | None = None) -> Path:
        """Write this configuration as YAML, with placeholders if unset."""
        path = path or EXAMPLE_CONFIG_PATH
        reg = self.registry
        example = {
            "registry": {
                "url": reg.url or "https://quay.io",
                "kubeconfigPath": reg.kubeconfig_path or "$KUBECONFIG",
                "secretName": (
                    reg.secret_name or "Name of secret for quay admin user"
                ),
                "secretNamespace": (
                    reg.secret_namespace
                    or "Namespace of secret for quay admin user"
                ),
            },
            "organisation": (
                self.organisation
                or "optional set here the default organisation"
            ),
        }
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(yaml.safe_dump(example, sort_keys=False))
        return path
