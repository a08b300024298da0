"""Per-invocation session setup shared by every command group."""

from __future__ import annotations

from dataclasses import dataclass

from astartectl.auth import load_realm_key
from astartectl.cli.config import CLISettings
from astartectl.client import AstarteClient
from astartectl.errors import ConfigurationError
from astartectl.services import AstarteService, resolve_service_urls


@dataclass(frozen=True)
class CommandGroup:
    name: str
    help: str
    services: tuple[AstarteService, ...]


APPENGINE_GROUP = CommandGroup(
    name="appengine",
    help="Interact with AppEngine API",
    services=(AstarteService.APPENGINE, AstarteService.REALM_MANAGEMENT),
)
PAIRING_GROUP = CommandGroup(
    name="pairing",
    help="Interact with Pairing API to register devices or to work with device credentials",
    services=(AstarteService.PAIRING,),
)
REALM_MANAGEMENT_GROUP = CommandGroup(
    name="realm-management",
    help="Interact with Realm Management API",
    services=(AstarteService.REALM_MANAGEMENT,),
)

COMMAND_GROUPS = {
    group.name: group for group in (APPENGINE_GROUP, PAIRING_GROUP, REALM_MANAGEMENT_GROUP)
}


@dataclass(frozen=True)
class Session:
    realm: str
    client: AstarteClient
    to_curl: bool = False


def build_client(group: CommandGroup, settings: CLISettings) -> AstarteClient:
    urls = resolve_service_urls(
        group.services,
        astarte_url=settings.astarte_url,
        overrides=settings.individual_urls,
    )
    private_key = load_realm_key(key_pem=settings.realm_key, key_file=settings.realm_key_file)
    return AstarteClient(urls=urls, private_key=private_key, token_ttl=settings.token_ttl)


def prepare_session(group: CommandGroup, settings: CLISettings) -> Session:
    """Resolve URLs and credentials once, before any leaf command runs."""
    client = build_client(group, settings)
    if not settings.realm_name:
        raise ConfigurationError("realm is required")
    return Session(realm=settings.realm_name, client=client, to_curl=settings.to_curl)
