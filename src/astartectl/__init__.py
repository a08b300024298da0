"""astartectl public surface."""

from astartectl.auth import generate_keypair, generate_token, load_realm_key
from astartectl.client import AstarteClient, Call, Response
from astartectl.devices import (
    DeviceIdentifierType,
    device_identifier_type_from_flag,
    is_valid_device_id,
)
from astartectl.errors import (
    AstarteCtlError,
    ConfigurationError,
    CredentialError,
    DecodeError,
    InputFileError,
    ParseError,
    RemoteError,
    RemoteRequestError,
)
from astartectl.services import AstarteService, resolve_service_url, resolve_service_urls

__all__ = [
    "AstarteCtlError",
    "ConfigurationError",
    "CredentialError",
    "InputFileError",
    "DecodeError",
    "RemoteError",
    "RemoteRequestError",
    "ParseError",
    "AstarteService",
    "resolve_service_url",
    "resolve_service_urls",
    "AstarteClient",
    "Call",
    "Response",
    "load_realm_key",
    "generate_token",
    "generate_keypair",
    "DeviceIdentifierType",
    "device_identifier_type_from_flag",
    "is_valid_device_id",
]
