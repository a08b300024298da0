"""Astarte API services and base URL resolution."""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Mapping

from astartectl.errors import ConfigurationError


class AstarteService(Enum):
    APPENGINE = "appengine"
    PAIRING = "pairing"
    REALM_MANAGEMENT = "realm-management"

    @property
    def suffix(self) -> str:
        return _SUFFIXES[self]

    @property
    def claim(self) -> str:
        return _CLAIMS[self]

    @property
    def flag(self) -> str:
        return f"--{self.value}-url"

    @classmethod
    def from_name(cls, name: str) -> "AstarteService":
        normalized = name.strip().lower().replace("_", "-")
        for service in cls:
            if normalized in {service.value, service.value.replace("-", "")}:
                return service
        valid = " ".join(service.value for service in cls)
        raise ConfigurationError(f"{name} is not a valid Astarte service. Valid options are [{valid}]")


_SUFFIXES = {
    AstarteService.APPENGINE: "/appengine",
    AstarteService.PAIRING: "/pairing",
    AstarteService.REALM_MANAGEMENT: "/realmmanagement",
}

_CLAIMS = {
    AstarteService.APPENGINE: "a_aea",
    AstarteService.PAIRING: "a_pa",
    AstarteService.REALM_MANAGEMENT: "a_rma",
}


def resolve_service_url(
    service: AstarteService,
    *,
    astarte_url: str | None,
    overrides: Mapping[AstarteService, str] | None = None,
) -> str:
    """Return the base URL for one service.

    An explicit per-service override is used verbatim. Otherwise the URL is
    derived from the global Astarte URL plus the service path suffix.
    """
    override = (overrides or {}).get(service)
    if override:
        return override
    if not astarte_url:
        raise ConfigurationError(f"either astarte-url or {service.value}-url have to be specified")
    return f"{astarte_url.rstrip('/')}{service.suffix}"


def resolve_service_urls(
    services: Iterable[AstarteService],
    *,
    astarte_url: str | None,
    overrides: Mapping[AstarteService, str] | None = None,
) -> dict[AstarteService, str]:
    needed = list(services)
    overrides = overrides or {}

    # AppEngine commands also reach Realm Management; overriding only the
    # latter still leaves AppEngine without a base to derive from.
    if (
        AstarteService.APPENGINE in needed
        and AstarteService.REALM_MANAGEMENT in needed
        and overrides.get(AstarteService.REALM_MANAGEMENT)
        and not overrides.get(AstarteService.APPENGINE)
        and not astarte_url
    ):
        raise ConfigurationError("either astarte-url or appengine-url have to be specified")

    return {
        service: resolve_service_url(service, astarte_url=astarte_url, overrides=overrides)
        for service in needed
    }


__all__ = ["AstarteService", "resolve_service_url", "resolve_service_urls"]
