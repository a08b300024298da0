"""List/show/install/delete commands shared by every resource family."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Sequence, TextIO

from astartectl.cli.session import Session
from astartectl.client import AstarteClient, Call
from astartectl.errors import ConfigurationError, DecodeError, InputFileError

BuildCall = Callable[[AstarteClient, str], Call]
Renderer = Callable[[object, TextIO], None]


def render_names(value: object, stdout: TextIO) -> None:
    for name in value or ():
        print(name, file=stdout)


def render_json(value: object, stdout: TextIO) -> None:
    print(json.dumps(value, indent=2), file=stdout)


def render_ok(value: object, stdout: TextIO) -> None:  # noqa: ARG001
    print("ok", file=stdout)


def render_value(value: object, stdout: TextIO) -> None:
    print(value, file=stdout)


def run_operation(session: Session, build: BuildCall, render: Renderer, *, stdout: TextIO) -> None:
    """Build, optionally dump as curl, execute, parse and render one call.

    Errors propagate to the caller as typed exceptions; nothing here exits.
    """
    call = build(session.client, session.realm)
    if session.to_curl:
        print(call.to_curl(session.client), file=stdout)
        return
    response = call.run(session.client)
    render(response.parse(), stdout)


def load_document(path: str | Path) -> dict[str, Any]:
    document_path = Path(path)
    try:
        raw = document_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise InputFileError(f"cannot read {document_path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise DecodeError(f"{document_path} is not valid UTF-8: {exc.reason}") from exc
    try:
        document = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"invalid JSON in {document_path}: {exc}") from exc
    if not isinstance(document, dict):
        raise DecodeError(f"{document_path} must contain a JSON object")
    return document


@dataclass(frozen=True)
class ResourceKind:
    name: str
    description: str
    list: Callable[..., Call]
    show: Callable[..., Call]
    install: Callable[..., Call]
    delete: Callable[..., Call]
    aliases: tuple[str, ...] = ()
    versioned: bool = False
    versions: Callable[..., Call] | None = None


RESOURCE_KINDS = {
    kind.name: kind
    for kind in (
        ResourceKind(
            name="policies",
            description="trigger delivery policy",
            list=AstarteClient.list_trigger_delivery_policies,
            show=AstarteClient.get_trigger_delivery_policy,
            install=AstarteClient.install_trigger_delivery_policy,
            delete=AstarteClient.delete_trigger_delivery_policy,
            aliases=("policy",),
        ),
        ResourceKind(
            name="interfaces",
            description="interface",
            list=AstarteClient.list_interfaces,
            show=AstarteClient.get_interface,
            install=AstarteClient.install_interface,
            delete=AstarteClient.delete_interface,
            aliases=("interface",),
            versioned=True,
            versions=AstarteClient.list_interface_major_versions,
        ),
        ResourceKind(
            name="triggers",
            description="trigger",
            list=AstarteClient.list_triggers,
            show=AstarteClient.get_trigger,
            install=AstarteClient.install_trigger,
            delete=AstarteClient.delete_trigger,
            aliases=("trigger",),
        ),
    )
}


def list_resources(session: Session, kind: ResourceKind, *, stdout: TextIO) -> None:
    run_operation(session, lambda client, realm: kind.list(client, realm), render_names, stdout=stdout)


def list_resource_versions(session: Session, kind: ResourceKind, name: str, *, stdout: TextIO) -> None:
    if kind.versions is None:
        raise ConfigurationError(f"{kind.name} are not versioned")
    versions = kind.versions
    run_operation(session, lambda client, realm: versions(client, realm, name), render_value, stdout=stdout)


def show_resource(
    session: Session, kind: ResourceKind, identity: Sequence[str], *, stdout: TextIO
) -> None:
    run_operation(
        session, lambda client, realm: kind.show(client, realm, *identity), render_json, stdout=stdout
    )


def install_resource(session: Session, kind: ResourceKind, path: str, *, stdout: TextIO) -> None:
    body = load_document(path)
    run_operation(
        session, lambda client, realm: kind.install(client, realm, body), render_ok, stdout=stdout
    )


def delete_resource(
    session: Session, kind: ResourceKind, identity: Sequence[str], *, stdout: TextIO
) -> None:
    run_operation(
        session, lambda client, realm: kind.delete(client, realm, *identity), render_ok, stdout=stdout
    )
