"""Helpers for Astarte device identifiers.

Device id format:
- 128-bit value encoded as url-safe base64 without padding (22 chars).
"""

from __future__ import annotations

import base64
import binascii
from enum import Enum

from astartectl.errors import ConfigurationError

DEVICE_ID_LEN = 22


class DeviceIdentifierType(Enum):
    AUTODISCOVER = "autodiscover"
    DEVICE_ID = "device-id"
    ALIAS = "alias"


def is_valid_device_id(value: str) -> bool:
    if len(value) != DEVICE_ID_LEN:
        return False
    try:
        decoded = base64.urlsafe_b64decode(value + "==")
    except (binascii.Error, ValueError):
        return False
    # Re-encode to reject non-canonical trailing bits and stray characters.
    return len(decoded) == 16 and base64.urlsafe_b64encode(decoded).decode("ascii").rstrip("=") == value


def device_identifier_type_from_flag(identifier: str, forced: str | None) -> DeviceIdentifierType:
    if not forced:
        return DeviceIdentifierType.AUTODISCOVER
    if forced == DeviceIdentifierType.DEVICE_ID.value:
        if not is_valid_device_id(identifier):
            raise ConfigurationError(
                "required to evaluate the device identifier as an Astarte device id, "
                f"but {identifier} isn't a valid one"
            )
        return DeviceIdentifierType.DEVICE_ID
    if forced == DeviceIdentifierType.ALIAS.value:
        return DeviceIdentifierType.ALIAS
    raise ConfigurationError(
        f"{forced} is not a valid Astarte device identifier type. Valid options are [device-id alias]"
    )


def resolve_identifier_type(identifier: str, identifier_type: DeviceIdentifierType) -> DeviceIdentifierType:
    if identifier_type is not DeviceIdentifierType.AUTODISCOVER:
        return identifier_type
    if is_valid_device_id(identifier):
        return DeviceIdentifierType.DEVICE_ID
    return DeviceIdentifierType.ALIAS


__all__ = [
    "DeviceIdentifierType",
    "device_identifier_type_from_flag",
    "is_valid_device_id",
    "resolve_identifier_type",
]
