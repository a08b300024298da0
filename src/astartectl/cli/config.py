"""Configuration helpers for the astartectl CLI."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from astartectl.auth import DEFAULT_TOKEN_TTL_SECONDS
from astartectl.services import AstarteService

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "astartectl" / "config.toml"
ASTARTE_URL_ENV_VAR = "ASTARTE_URL"
REALM_NAME_ENV_VAR = "ASTARTE_REALM_NAME"
REALM_KEY_FILE_ENV_VAR = "ASTARTE_REALM_KEY_FILE"

_URL_KEYS = {
    "appengine": AstarteService.APPENGINE,
    "pairing": AstarteService.PAIRING,
    "realm_management": AstarteService.REALM_MANAGEMENT,
}


@dataclass(frozen=True)
class CLIConfig:
    astarte_url: str | None = None
    realm_name: str | None = None
    realm_key_file: str | None = None
    realm_key: str | None = None
    individual_urls: Mapping[AstarteService, str] = field(default_factory=dict)
    token_ttl: int = DEFAULT_TOKEN_TTL_SECONDS


@dataclass(frozen=True)
class CLISettings:
    """Effective settings for one invocation: flags over config over defaults."""

    astarte_url: str | None
    realm_name: str
    realm_key_file: str | None
    realm_key: str | None
    individual_urls: Mapping[AstarteService, str]
    token_ttl: int
    to_curl: bool = False


class ConfigError(ValueError):
    """Raised when CLI config is invalid."""


def _load_toml(path: Path) -> dict[str, Any]:
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read {path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise ConfigError(f"{path} is not valid UTF-8: {exc.reason}") from exc

    try:  # Python 3.11+
        import tomllib  # type: ignore[attr-defined]
        try:
            return tomllib.loads(raw)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc
    except ModuleNotFoundError:
        try:
            import tomli
        except ModuleNotFoundError as exc:
            raise ConfigError("toml parser unavailable; install tomli for Python < 3.11") from exc
        try:
            return tomli.loads(raw)
        except tomli.TOMLDecodeError as exc:
            raise ConfigError(f"invalid TOML in {path}: {exc}") from exc


def _table(parsed: dict[str, Any], name: str) -> dict[str, Any]:
    section = parsed.get(name, {})
    if not isinstance(section, dict):
        raise ConfigError(f"[{name}] must be a table")
    return section


def _optional_str(source: dict[str, Any], key: str, field_name: str) -> str | None:
    value = source.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigError(f"{field_name} must be a string")
    return value.strip() or None


def _env(name: str) -> str | None:
    value = os.getenv(name)
    return value.strip() or None if value else None


def load_cli_config(path: str | Path | None = None) -> CLIConfig:
    config_path = Path(path) if path else DEFAULT_CONFIG_PATH
    parsed = _load_toml(config_path) if config_path.exists() else {}

    astarte = _table(parsed, "astarte")
    realm = _table(parsed, "realm")
    urls = _table(parsed, "individual_urls")

    individual_urls: dict[AstarteService, str] = {}
    for key, value in urls.items():
        service = _URL_KEYS.get(key)
        if service is None:
            valid = ", ".join(sorted(_URL_KEYS))
            raise ConfigError(f"unknown key individual_urls.{key}; expected one of: {valid}")
        url = _optional_str(urls, key, f"individual_urls.{key}")
        if url:
            individual_urls[service] = url

    token_ttl = astarte.get("token_ttl", DEFAULT_TOKEN_TTL_SECONDS)
    if isinstance(token_ttl, bool) or not isinstance(token_ttl, int) or token_ttl < 0:
        raise ConfigError("astarte.token_ttl must be an int >= 0")

    return CLIConfig(
        astarte_url=_env(ASTARTE_URL_ENV_VAR) or _optional_str(astarte, "url", "astarte.url"),
        realm_name=_env(REALM_NAME_ENV_VAR) or _optional_str(realm, "name", "realm.name"),
        realm_key_file=_env(REALM_KEY_FILE_ENV_VAR)
        or _optional_str(realm, "key_file", "realm.key_file"),
        realm_key=_optional_str(realm, "key", "realm.key"),
        individual_urls=individual_urls,
        token_ttl=token_ttl,
    )


def resolve_settings(args, config: CLIConfig) -> CLISettings:
    """Layer explicit command-line flags over the loaded config."""
    individual_urls = dict(config.individual_urls)
    for service in AstarteService:
        override = getattr(args, f"{service.name.lower()}_url", None)
        if override:
            individual_urls[service] = override

    realm_key_file = getattr(args, "realm_key", None)
    return CLISettings(
        astarte_url=getattr(args, "astarte_url", None) or config.astarte_url,
        realm_name=(getattr(args, "realm_name", None) or config.realm_name or "").strip(),
        realm_key_file=realm_key_file or config.realm_key_file,
        # An explicit key file on the command line wins over an inline key.
        realm_key=None if realm_key_file else config.realm_key,
        individual_urls=individual_urls,
        token_ttl=config.token_ttl,
        to_curl=bool(getattr(args, "to_curl", False)),
    )
