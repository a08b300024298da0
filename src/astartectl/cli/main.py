"""Command-line interface for astartectl."""

from __future__ import annotations

import argparse
import json
import logging
import re
import sys
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from typing import Sequence

from astartectl.auth import generate_keypair, generate_token, load_realm_key
from astartectl.cli.config import CLIConfig, ConfigError, load_cli_config, resolve_settings
from astartectl.cli.operations import (
    RESOURCE_KINDS,
    delete_resource,
    install_resource,
    list_resource_versions,
    list_resources,
    render_json,
    render_names,
    render_ok,
    run_operation,
    show_resource,
)
from astartectl.cli.session import (
    APPENGINE_GROUP,
    COMMAND_GROUPS,
    PAIRING_GROUP,
    REALM_MANAGEMENT_GROUP,
    CommandGroup,
    Session,
    prepare_session,
)
from astartectl.devices import device_identifier_type_from_flag
from astartectl.errors import (
    ConfigurationError,
    CredentialError,
    DecodeError,
    InputFileError,
    ParseError,
    RemoteError,
)
from astartectl.services import AstarteService

EXIT_SUCCESS = 0
EXIT_VALIDATION_ERROR = 1
# 2 is left to argparse usage errors.
EXIT_PARSE_ERROR = 3
EXIT_REMOTE_ERROR = 4

_SENSITIVE_FIELDS = (
    "private_key",
    "realm_key",
    "credentials_secret",
    "secret",
    "token",
    "authorization",
)

_COMMAND_ALIASES = {
    "ls": "list",
    "del": "delete",
    "policy": "policies",
    "interface": "interfaces",
    "trigger": "triggers",
    "device": "devices",
}


def _sdk_version() -> str:
    try:
        return pkg_version("astartectl")
    except PackageNotFoundError:
        return "0.0.0+local"


def _group_flags(group: CommandGroup) -> argparse.ArgumentParser:
    # Accepted both on the group and on its leaf commands. Nothing is stored
    # unless given, so a leaf parser never resets a value set on the group.
    flags = argparse.ArgumentParser(add_help=False)
    flags.add_argument(
        "-k",
        "--realm-key",
        default=argparse.SUPPRESS,
        help="Path to realm private key used to generate JWT for authentication",
    )
    flags.add_argument(
        "-r",
        "--realm-name",
        default=argparse.SUPPRESS,
        help="The name of the realm that will be queried",
    )
    for service in group.services:
        flags.add_argument(
            service.flag,
            default=argparse.SUPPRESS,
            help=f"{service.value} API base URL. Defaults to <astarte-url>{service.suffix}.",
        )
    flags.add_argument(
        "-u",
        "--astarte-url",
        default=argparse.SUPPRESS,
        help="Base URL of the Astarte API",
    )
    flags.add_argument(
        "--to-curl",
        action="store_true",
        default=argparse.SUPPRESS,
        help="Print the equivalent curl command instead of sending the request",
    )
    return flags


def _add_resource_commands(sub, flags: argparse.ArgumentParser) -> None:
    for kind in RESOURCE_KINDS.values():
        kind_parser = sub.add_parser(
            kind.name,
            aliases=list(kind.aliases),
            help=f"Manage {kind.name}",
            description=f"List, show, install or delete {kind.description}s in your realm.",
        )
        kind_sub = kind_parser.add_subparsers(dest="resource_command", required=True)
        kind_sub.add_parser(
            "list",
            aliases=["ls"],
            parents=[flags],
            help=f"List {kind.description}s",
        )
        show = kind_sub.add_parser("show", parents=[flags], help=f"Show {kind.description}")
        show.add_argument("name", help=f"{kind.description} name")
        install = kind_sub.add_parser(
            "install",
            parents=[flags],
            help=f"Install {kind.description}",
            description=f"<file> must be a path to a JSON file containing a valid Astarte {kind.description}.",
        )
        install.add_argument("file", help=f"Path to a JSON {kind.description} document")
        delete = kind_sub.add_parser(
            "delete",
            aliases=["del"],
            parents=[flags],
            help=f"Delete {kind.description}",
        )
        delete.add_argument("name", help=f"{kind.description} name")
        if kind.versioned:
            show.add_argument("major", type=int, help="Interface major version")
            delete.add_argument("major", type=int, help="Interface major version")
            versions = kind_sub.add_parser(
                "versions",
                parents=[flags],
                help=f"List major versions of a {kind.description}",
            )
            versions.add_argument("name", help=f"{kind.description} name")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="astartectl")
    parser.add_argument(
        "--version",
        action="version",
        version=f"astartectl {_sdk_version()}",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to CLI config TOML (default: ~/.config/astartectl/config.toml)",
    )
    parser.add_argument(
        "-u",
        "--astarte-url",
        default=None,
        help="Base URL of the Astarte API, e.g. https://api.astarte.example.com",
    )
    parser.add_argument(
        "--to-curl",
        action="store_true",
        help="Print the equivalent curl command instead of sending the request",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log HTTP requests to stderr")

    sub = parser.add_subparsers(dest="command", required=True)

    version = sub.add_parser("version", help="Show astartectl version")
    version.add_argument("--json", action="store_true", help="Print version details as JSON")

    realm_management_flags = _group_flags(REALM_MANAGEMENT_GROUP)
    realm_management = sub.add_parser(
        REALM_MANAGEMENT_GROUP.name,
        parents=[realm_management_flags],
        help=REALM_MANAGEMENT_GROUP.help,
    )
    realm_management_sub = realm_management.add_subparsers(dest="resource_kind", required=True)
    _add_resource_commands(realm_management_sub, realm_management_flags)

    appengine_flags = _group_flags(APPENGINE_GROUP)
    appengine = sub.add_parser(
        APPENGINE_GROUP.name, parents=[appengine_flags], help=APPENGINE_GROUP.help
    )
    appengine_sub = appengine.add_subparsers(dest="appengine_command", required=True)
    devices = appengine_sub.add_parser("devices", aliases=["device"], help="Interact with devices")
    devices_sub = devices.add_subparsers(dest="devices_command", required=True)
    devices_sub.add_parser(
        "list", aliases=["ls"], parents=[appengine_flags], help="List devices in the realm"
    )
    devices_show = devices_sub.add_parser(
        "show", parents=[appengine_flags], help="Show the status of a device"
    )
    devices_show.add_argument("device", help="Astarte device id or alias")
    devices_show.add_argument(
        "--force-id-type",
        choices=("device-id", "alias"),
        default=None,
        help="Interpret the device identifier as a device id or an alias instead of guessing",
    )

    pairing_flags = _group_flags(PAIRING_GROUP)
    pairing = sub.add_parser(PAIRING_GROUP.name, parents=[pairing_flags], help=PAIRING_GROUP.help)
    pairing_sub = pairing.add_subparsers(dest="pairing_command", required=True)
    agent = pairing_sub.add_parser("agent", help="Register or unregister devices as an agent")
    agent_sub = agent.add_subparsers(dest="agent_command", required=True)
    register = agent_sub.add_parser(
        "register", parents=[pairing_flags], help="Register a device and print its credentials secret"
    )
    register.add_argument("device_id", help="Astarte device id")
    unregister = agent_sub.add_parser(
        "unregister",
        parents=[pairing_flags],
        help="Reset the registration of a device so it can register again",
    )
    unregister.add_argument("device_id", help="Astarte device id")

    utils = sub.add_parser("utils", help="Offline helpers for realm keys and tokens")
    utils_sub = utils.add_subparsers(dest="utils_command", required=True)
    gen_jwt = utils_sub.add_parser("gen-jwt", help="Generate a JWT for one or more Astarte services")
    gen_jwt.add_argument(
        "services",
        nargs="+",
        help="Services to grant access to: appengine, pairing, realm-management",
    )
    gen_jwt.add_argument(
        "-k",
        "--realm-key",
        default=None,
        help="Path to realm private key used to sign the token",
    )
    gen_jwt.add_argument(
        "-e",
        "--expiry",
        type=int,
        default=None,
        help="Token validity in seconds; 0 means no expiry (default from config)",
    )
    gen_keypair = utils_sub.add_parser("gen-keypair", help="Generate an EC key pair for a realm")
    gen_keypair.add_argument("realm", help="Realm name used to name the key files")
    gen_keypair.add_argument("--output-dir", default=".", help="Directory for the PEM files")

    return parser


def _sanitize_error_text(value: str) -> str:
    redacted = re.sub(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)", r"\1[REDACTED]", value)
    for field in _SENSITIVE_FIELDS:
        redacted = re.sub(
            rf"(?i)({field}\s*[=:]\s*)(?!bearer\s)([^,\s]+)",
            r"\1[REDACTED]",
            redacted,
        )
    return redacted


def _print_error(stderr, prefix: str, message: str, *, code: int) -> int:
    print(f"{prefix}: {_sanitize_error_text(message)}", file=stderr)
    return code


def _configure_logging(verbose: bool, stderr) -> None:
    if not verbose:
        return
    handler = logging.StreamHandler(stderr)
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    logger = logging.getLogger("astartectl")
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


def _run_version(*, as_json: bool, stdout) -> int:
    payload = {"cli": "astartectl", "version": _sdk_version()}
    if as_json:
        print(json.dumps(payload, sort_keys=True), file=stdout)
    else:
        print(f"astartectl {payload['version']}", file=stdout)
    return EXIT_SUCCESS


def _identity(args, kind) -> list:
    if kind.versioned:
        return [args.name, args.major]
    return [args.name]


def _run_realm_management(*, args, session: Session, stdout) -> int:
    kind = RESOURCE_KINDS[_COMMAND_ALIASES.get(args.resource_kind, args.resource_kind)]
    command = _COMMAND_ALIASES.get(args.resource_command, args.resource_command)
    if command == "list":
        list_resources(session, kind, stdout=stdout)
    elif command == "show":
        show_resource(session, kind, _identity(args, kind), stdout=stdout)
    elif command == "install":
        install_resource(session, kind, args.file, stdout=stdout)
    elif command == "delete":
        delete_resource(session, kind, _identity(args, kind), stdout=stdout)
    elif command == "versions":
        list_resource_versions(session, kind, args.name, stdout=stdout)
    return EXIT_SUCCESS


def _run_appengine(*, args, session: Session, stdout) -> int:
    command = _COMMAND_ALIASES.get(args.devices_command, args.devices_command)
    if command == "list":
        run_operation(
            session,
            lambda client, realm: client.list_devices(realm),
            render_names,
            stdout=stdout,
        )
        return EXIT_SUCCESS

    identifier_type = device_identifier_type_from_flag(args.device, args.force_id_type)
    run_operation(
        session,
        lambda client, realm: client.get_device_status(realm, args.device, identifier_type),
        render_json,
        stdout=stdout,
    )
    return EXIT_SUCCESS


def _run_pairing(*, args, session: Session, stdout) -> int:
    device_id = args.device_id
    if args.agent_command == "register":

        def _render_registration(secret: object, out) -> None:
            print(f"device_id: {device_id}", file=out)
            print(f"credentials_secret: {secret}", file=out)

        run_operation(
            session,
            lambda client, realm: client.register_device(realm, device_id),
            _render_registration,
            stdout=stdout,
        )
        return EXIT_SUCCESS

    run_operation(
        session,
        lambda client, realm: client.unregister_device(realm, device_id),
        render_ok,
        stdout=stdout,
    )
    return EXIT_SUCCESS


def _run_gen_jwt(*, args, config: CLIConfig, stdout) -> int:
    services = [AstarteService.from_name(name) for name in args.services]
    private_key = load_realm_key(
        key_pem=None if args.realm_key else config.realm_key,
        key_file=args.realm_key or config.realm_key_file,
    )
    ttl = config.token_ttl if args.expiry is None else args.expiry
    if ttl < 0:
        raise ConfigurationError("--expiry must be >= 0")
    print(generate_token(private_key, services, ttl_seconds=ttl), file=stdout)
    return EXIT_SUCCESS


def _run_gen_keypair(*, args, stdout) -> int:
    private_path, public_path = generate_keypair(args.realm, output_dir=args.output_dir)
    print(f"private_key_file: {private_path}", file=stdout)
    print(f"public_key_file: {public_path}", file=stdout)
    return EXIT_SUCCESS


def _dispatch(args, config: CLIConfig, *, stdout) -> int:
    if args.command == "version":
        return _run_version(as_json=args.json, stdout=stdout)

    if args.command == "utils":
        if args.utils_command == "gen-jwt":
            return _run_gen_jwt(args=args, config=config, stdout=stdout)
        return _run_gen_keypair(args=args, stdout=stdout)

    group = COMMAND_GROUPS[args.command]
    session = prepare_session(group, resolve_settings(args, config))

    try:
        if group is REALM_MANAGEMENT_GROUP:
            return _run_realm_management(args=args, session=session, stdout=stdout)
        if group is APPENGINE_GROUP:
            return _run_appengine(args=args, session=session, stdout=stdout)
        return _run_pairing(args=args, session=session, stdout=stdout)
    finally:
        session.client.close()


def main(argv: Sequence[str] | None = None, *, stdout=sys.stdout, stderr=sys.stderr) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = load_cli_config(args.config)
    except ConfigError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)

    _configure_logging(args.verbose, stderr)

    try:
        return _dispatch(args, config, stdout=stdout)
    except ConfigurationError as exc:
        return _print_error(stderr, "config error", str(exc), code=EXIT_VALIDATION_ERROR)
    except CredentialError as exc:
        return _print_error(stderr, "credential error", str(exc), code=EXIT_VALIDATION_ERROR)
    except InputFileError as exc:
        return _print_error(stderr, "input error", str(exc), code=EXIT_VALIDATION_ERROR)
    except DecodeError as exc:
        return _print_error(stderr, "decode error", str(exc), code=EXIT_VALIDATION_ERROR)
    except RemoteError as exc:
        return _print_error(stderr, "astarte error", str(exc), code=EXIT_REMOTE_ERROR)
    except ParseError as exc:
        return _print_error(stderr, "parse error", str(exc), code=EXIT_PARSE_ERROR)


if __name__ == "__main__":
    raise SystemExit(main())
