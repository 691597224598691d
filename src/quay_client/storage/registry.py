"""Minimal authenticated client for the Quay REST API.

The client only performs requests.  Which status codes count as failure
differs from endpoint to endpoint (a 404 from a listing means "no such
endpoint", while for a deletion it is just another failed status), so
status handling is left to the callers, with `read_json` as the common
way of turning a response into data.
"""

from typing import Any, TypeVar, overload

import httpx
import structlog
from pydantic import BaseModel, ValidationError
from structlog.stdlib import BoundLogger

from ..config import RegistryAuth
from ..exceptions import (
    DecodeError,
    NotFoundError,
    RegistryStatusError,
    UnexpectedContentError,
)

__all__ = ["API_PATH", "RegistryClient", "read_json"]

API_PATH = "/api/v1"

M = TypeVar("M", bound=BaseModel)


class RegistryClient:
    """Issue authenticated GET and DELETE requests against one registry.

    Parameters
    ----------
    url
        Registry URL, such as ``https://quay.example.com``.  The API path
        is appended to it.
    auth
        Credential resolved from the cluster secret, if any.
    username
        Explicitly supplied username.  Together with ``password`` this
        takes priority over anything in ``auth``.
    password
        Explicitly supplied password.
    logger
        Logger to use for messages.
    transport
        Alternate HTTP transport, intended for the test suite.
    """

    def __init__(
        self,
        url: str,
        auth: RegistryAuth | None = None,
        *,
        username: str | None = None,
        password: str | None = None,
        logger: BoundLogger | None = None,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not url:
            raise ValueError("Registry URL must not be empty")
        self._logger = logger or structlog.get_logger(__name__)
        self.url = url.rstrip("/")
        self.base_url = self.url + API_PATH
        self._http_client = httpx.Client(
            base_url=self.base_url,
            transport=transport,
            timeout=timeout,
            follow_redirects=True,
        )
        self._http_client.headers["accept"] = "application/json"
        self._authenticate(auth, username, password)

    def _authenticate(
        self,
        auth: RegistryAuth | None,
        username: str | None,
        password: str | None,
    ) -> None:
        # Exactly one scheme per request, in this order of preference.
        if username and password:
            self._logger.debug(f"Using basic auth for '{username}'")
            self._http_client.auth = httpx.BasicAuth(username, password)
        elif auth is not None and auth.has_token and auth.token:
            self._logger.debug("Using bearer token")
            self._http_client.headers["authorization"] = (
                f"Bearer {auth.token.get_secret_value()}"
            )
        elif auth is not None and auth.has_basic and auth.password:
            self._logger.debug(f"Using basic auth for '{auth.username}'")
            self._http_client.auth = httpx.BasicAuth(
                auth.username or "", auth.password.get_secret_value()
            )
        else:
            self._logger.warning(
                "No registry credential; requests are anonymous"
            )

    def get(
        self, path: str, params: dict[str, Any] | None = None
    ) -> httpx.Response:
        """GET a path relative to the API root.

        Transport errors propagate as `httpx.HTTPError`; the status code is
        not checked.
        """
        self._logger.debug(f"GET {self.base_url}{path}", params=params)
        return self._http_client.get(path, params=params)

    def delete(self, path: str) -> httpx.Response:
        """DELETE a path relative to the API root, without status checks."""
        self._logger.debug(f"DELETE {self.base_url}{path}")
        return self._http_client.delete(path)

    def close(self) -> None:
        self._http_client.close()


def _looks_like_html(response: httpx.Response) -> bool:
    if "html" in response.headers.get("content-type", ""):
        return True
    return "<html" in response.text[:4096].lower()


@overload
def read_json(response: httpx.Response, action: str) -> Any: ...


@overload
def read_json(
    response: httpx.Response, action: str, model: type[M]
) -> M: ...


def read_json(
    response: httpx.Response,
    action: str,
    model: type[BaseModel] | None = None,
) -> Any:
    """Decode a JSON response, classifying what went wrong if it fails.

    Parameters
    ----------
    response
        Response from the registry.
    action
        What was being attempted, for error messages ("list tags").
    model
        If given, validate the body into this model.

    Raises
    ------
    NotFoundError
        The endpoint answered 404.
    UnexpectedContentError
        The body is an HTML page rather than JSON.
    RegistryStatusError
        Any other non-success status.
    DecodeError
        The body is not JSON, or does not match ``model``.
    """
    if response.status_code == httpx.codes.NOT_FOUND:
        raise NotFoundError(f"failed to {action}: endpoint not found (404)")
    if not response.is_success:
        if _looks_like_html(response):
            raise UnexpectedContentError(
                f"failed to {action}: received HTML response "
                f"(status {response.status_code}), likely an error page"
            )
        raise RegistryStatusError(
            f"failed to {action}: {response.status_code} "
            f"{response.reason_phrase}",
            response.status_code,
        )
    try:
        body = response.json()
    except ValueError as e:
        if _looks_like_html(response):
            raise UnexpectedContentError(
                f"failed to {action}: received HTML response, likely an "
                "error page"
            ) from e
        raise DecodeError(
            f"failed to {action}: failed to decode response: {e}"
        ) from e
    if model is None:
        return body
    try:
        return model.model_validate(body)
    except ValidationError as e:
        raise DecodeError(
            f"failed to {action}: unexpected response shape: {e}"
        ) from e
