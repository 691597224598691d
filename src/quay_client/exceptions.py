"""Exceptions raised by the Quay client."""

__all__ = [
    "CredentialError",
    "DecodeError",
    "InvalidPatternError",
    "NotFoundError",
    "QuayClientError",
    "RegistryStatusError",
    "UnexpectedContentError",
    "UsageReportError",
]


class QuayClientError(Exception):
    """Base class for all errors the client reports to its user."""


class UnexpectedContentError(QuayClientError):
    """The registry answered with HTML where JSON was expected.

    This is almost always a login page, a proxy error page, or a
    misconfigured registry URL, rather than a change in the API schema.
    """


class DecodeError(QuayClientError):
    """The registry answered with a body that could not be decoded."""


class NotFoundError(QuayClientError):
    """A listing endpoint does not exist (HTTP 404)."""


class RegistryStatusError(QuayClientError):
    """The registry answered with a non-success status code."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class InvalidPatternError(QuayClientError):
    """A user-supplied regular expression does not compile."""


class CredentialError(QuayClientError):
    """No usable registry credential could be resolved."""


class UsageReportError(QuayClientError):
    """The image usage report could not be produced or parsed."""
