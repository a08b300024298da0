"""astartectl error types."""

from __future__ import annotations


class AstarteCtlError(RuntimeError):
    """Base astartectl error."""


class ConfigurationError(AstarteCtlError):
    """Missing realm name, missing base URL or conflicting URL overrides."""


class CredentialError(AstarteCtlError):
    """Realm signing key is missing, unreadable or unusable."""


class InputFileError(AstarteCtlError):
    """A local input file could not be read."""


class DecodeError(AstarteCtlError):
    """A local input document is not well-formed."""


class RemoteError(AstarteCtlError):
    """Astarte could not be reached."""


class RemoteRequestError(RemoteError):
    """Astarte returned an HTTP error response."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        detail: object | None = None,
        body: object | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.detail = detail
        self.body = body


class ParseError(AstarteCtlError):
    """Response body did not have the expected shape."""
