"""Resolve the registry credential from a Kubernetes secret."""

import base64
import binascii
import json
from enum import StrEnum
from pathlib import Path

import structlog
import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.rest import ApiException
from pydantic import SecretStr
from structlog.stdlib import BoundLogger

from ..config import RegistryAuth
from ..exceptions import CredentialError

__all__ = ["SecretCredentialSource", "SecretType", "parse_secret"]


class SecretType(StrEnum):
    """Kubernetes secret types that can hold a registry credential."""

    DOCKER_CONFIG_JSON = "kubernetes.io/dockerconfigjson"
    OPAQUE = "Opaque"


def _b64(value: str) -> str:
    return base64.b64decode(value).decode()


def _parse_docker_config(data: dict[str, str]) -> RegistryAuth:
    try:
        docker_config = json.loads(_b64(data[".dockerconfigjson"]))
    except (KeyError, ValueError, binascii.Error) as e:
        raise CredentialError(f"unreadable docker config secret: {e}") from e
    for entry in (docker_config.get("auths") or {}).values():
        try:
            decoded = _b64(entry.get("auth", ""))
        except (ValueError, binascii.Error):
            continue
        username, sep, password = decoded.partition(":")
        if sep:
            return RegistryAuth(
                username=username, password=SecretStr(password)
            )
    raise CredentialError("no valid credentials found in docker config")


def _parse_opaque(data: dict[str, str]) -> RegistryAuth:
    # "auth" is a raw token under another name, not user:pass.
    for key in ("token", "auth"):
        if key in data:
            return RegistryAuth(token=SecretStr(_b64(data[key])))
    if "username" in data and "password" in data:
        return RegistryAuth(
            username=_b64(data["username"]),
            password=SecretStr(_b64(data["password"])),
        )
    raise CredentialError("no valid credentials found in opaque secret")


def parse_secret(
    secret_type: str, data: dict[str, str] | None
) -> RegistryAuth:
    """Extract a registry credential from secret data.

    Parameters
    ----------
    secret_type
        Kubernetes secret type.
    data
        Secret data, base64-encoded as the Kubernetes API returns it.

    Returns
    -------
    RegistryAuth
        Username and password from a docker config secret, or a token (or
        failing that, username and password) from an opaque secret.

    Raises
    ------
    CredentialError
        Unsupported secret type, or no usable credential in the secret.
    """
    data = data or {}
    match secret_type:
        case SecretType.DOCKER_CONFIG_JSON:
            return _parse_docker_config(data)
        case SecretType.OPAQUE:
            try:
                return _parse_opaque(data)
            except (ValueError, binascii.Error) as e:
                raise CredentialError(f"unreadable opaque secret: {e}") from e
        case _:
            raise CredentialError(f"unsupported secret type: {secret_type}")


class SecretCredentialSource:
    """Read registry credentials from secrets in a cluster."""

    def __init__(
        self, kubeconfig: Path | None, logger: BoundLogger | None = None
    ) -> None:
        self._kubeconfig = kubeconfig
        self._logger = logger or structlog.get_logger(__name__)

    def _core_v1(self) -> k8s_client.CoreV1Api:
        try:
            k8s_config.load_kube_config(
                config_file=str(self._kubeconfig) if self._kubeconfig else None
            )
        except k8s_config.ConfigException:
            self._logger.debug(
                "No usable kubeconfig, trying in-cluster config"
            )
            k8s_config.load_incluster_config()
        return k8s_client.CoreV1Api()

    def resolve(self, name: str, namespace: str) -> RegistryAuth:
        """Fetch and parse the named secret."""
        if not name or not namespace:
            raise CredentialError(
                "secret name and namespace are required to authenticate"
            )
        self._logger.debug(f"Reading secret {namespace}/{name}")
        try:
            secret = self._core_v1().read_namespaced_secret(
                name=name, namespace=namespace
            )
        except k8s_config.ConfigException as e:
            raise CredentialError(f"failed to load cluster config: {e}") from e
        except ApiException as e:
            raise CredentialError(
                f"failed to get secret {namespace}/{name}: {e.reason}"
            ) from e
        except urllib3.exceptions.HTTPError as e:
            raise CredentialError(f"failed to reach cluster: {e}") from e
        return parse_secret(secret.type, secret.data)
