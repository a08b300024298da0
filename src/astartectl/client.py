"""Authenticated client for the Astarte management APIs.

Every remote operation is split in two steps: a call builder on
``AstarteClient`` returns an immutable ``Call`` describing the request, and
``Call.run`` executes it and returns a ``Response`` whose ``parse`` method
yields the domain value for that operation.
"""

from __future__ import annotations

import copy
import json
import logging
import shlex
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping
from urllib.parse import quote

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from astartectl.auth import DEFAULT_TOKEN_TTL_SECONDS, RealmKey, generate_token
from astartectl.devices import DeviceIdentifierType, is_valid_device_id, resolve_identifier_type
from astartectl.errors import (
    ConfigurationError,
    DecodeError,
    ParseError,
    RemoteError,
    RemoteRequestError,
)
from astartectl.services import AstarteService

logger = logging.getLogger(__name__)


def _unwrap(payload: object) -> object:
    if not isinstance(payload, dict) or "data" not in payload:
        raise ParseError("response is missing the data envelope")
    return payload["data"]


def parse_raw(payload: object) -> object:
    return payload


def parse_acknowledgement(payload: object) -> object:
    if payload is None:
        return None
    return _unwrap(payload)


def parse_name_list(payload: object) -> list[str]:
    data = _unwrap(payload)
    if not isinstance(data, list) or not all(isinstance(item, str) for item in data):
        raise ParseError("expected a list of names")
    return data


def parse_version_list(payload: object) -> list[int]:
    data = _unwrap(payload)
    if not isinstance(data, list) or not all(
        isinstance(item, int) and not isinstance(item, bool) for item in data
    ):
        raise ParseError("expected a list of major versions")
    return data


def parse_mapping(payload: object) -> dict[str, Any]:
    data = _unwrap(payload)
    if not isinstance(data, dict):
        raise ParseError("expected an object")
    return data


def parse_credentials_secret(payload: object) -> str:
    data = parse_mapping(payload)
    secret = data.get("credentials_secret")
    if not isinstance(secret, str) or not secret:
        raise ParseError("response has no credentials_secret")
    return secret


@dataclass(frozen=True)
class Call:
    """A fully specified, not yet executed request."""

    service: AstarteService
    method: str
    path: str
    body: Mapping[str, Any] | None = None
    parser: Callable[[object], object] = field(default=parse_raw, compare=False, repr=False)
    expects_body: bool = True

    def __post_init__(self) -> None:
        if self.body is not None:
            object.__setattr__(self, "body", MappingProxyType(copy.deepcopy(dict(self.body))))

    @property
    def wire_body(self) -> dict[str, Any] | None:
        if self.body is None:
            return None
        return {"data": dict(self.body)}

    def run(self, client: "AstarteClient") -> "Response":
        return client.execute(self)

    def to_curl(self, client: "AstarteClient") -> str:
        return client.to_curl(self)


@dataclass(frozen=True)
class Response:
    call: Call
    status_code: int
    payload: object | None

    def parse(self) -> object:
        return self.call.parser(self.payload)


def _segment(value: str, what: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigurationError(f"{what} must be a non-empty string")
    return quote(value, safe="")


def _major(value: int | str) -> str:
    try:
        major = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"interface major version must be an integer, got {value!r}") from exc
    if major < 0:
        raise ConfigurationError("interface major version must be >= 0")
    return str(major)


def _device_id(value: str) -> str:
    if not isinstance(value, str) or not is_valid_device_id(value):
        raise ConfigurationError(f"{value} is not a valid Astarte device id")
    return value


def _document(body: object, what: str) -> Mapping[str, Any]:
    if not isinstance(body, Mapping):
        raise DecodeError(f"{what} must be a JSON object")
    return body


@dataclass
class AstarteClient:
    urls: Mapping[AstarteService, str]
    private_key: RealmKey
    token_ttl: int = DEFAULT_TOKEN_TTL_SECONDS
    timeout: float = 10.0
    retries: int = 2

    def __post_init__(self) -> None:
        self._session = requests.Session()
        retry = Retry(
            total=max(0, int(self.retries)),
            connect=max(0, int(self.retries)),
            read=max(0, int(self.retries)),
            status=max(0, int(self.retries)),
            status_forcelist=(502, 503, 504),
            backoff_factor=0.2,
            allowed_methods=("GET", "DELETE"),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retry)
        self._session.mount("http://", adapter)
        self._session.mount("https://", adapter)

    def _url(self, call: Call) -> str:
        base_url = self.urls.get(call.service)
        if not base_url:
            raise ConfigurationError(f"no base URL configured for {call.service.value}")
        return f"{base_url.rstrip('/')}/{call.path.lstrip('/')}"

    def token(self, service: AstarteService) -> str:
        return generate_token(self.private_key, [service], ttl_seconds=self.token_ttl)

    def _headers(self, call: Call) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.token(call.service)}",
            "Accept": "application/json",
        }
        if call.body is not None:
            headers["Content-Type"] = "application/json"
        return headers

    def execute(self, call: Call) -> Response:
        url = self._url(call)
        logger.debug("%s %s", call.method, url)
        try:
            response = self._session.request(
                call.method,
                url,
                json=call.wire_body,
                headers=self._headers(call),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise RemoteError(str(exc)) from exc
        logger.debug("%s %s -> %s", call.method, url, response.status_code)

        if response.status_code >= 400:
            body: object | None = None
            detail: object | None = None
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                errors = body.get("errors")
                if isinstance(errors, dict):
                    detail = errors.get("detail")
            if isinstance(detail, str):
                message = f"astarte request failed: {response.status_code} {detail}"
            else:
                message = f"astarte request failed: {response.status_code} {response.text}"
            raise RemoteRequestError(
                message,
                status_code=response.status_code,
                detail=detail,
                body=body,
            )

        if response.status_code == 204 or not (response.text or "").strip():
            return Response(call=call, status_code=response.status_code, payload=None)
        try:
            payload = response.json()
        except ValueError as exc:
            if not call.expects_body:
                # Acknowledgements only need the status; ignore what came with it.
                logger.debug("%s %s: ignoring non-JSON acknowledgement body", call.method, url)
                return Response(call=call, status_code=response.status_code, payload=None)
            raise ParseError(f"response body is not valid JSON: {exc}") from exc
        return Response(call=call, status_code=response.status_code, payload=payload)

    def close(self) -> None:
        self._session.close()

    def to_curl(self, call: Call) -> str:
        parts = ["curl", "-X", call.method]
        for name, value in self._headers(call).items():
            parts.extend(["-H", f"{name}: {value}"])
        if call.wire_body is not None:
            parts.extend(["--data", json.dumps(call.wire_body, sort_keys=True)])
        parts.append(self._url(call))
        return " ".join(shlex.quote(part) for part in parts)

    # Realm Management

    def list_trigger_delivery_policies(self, realm: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/policies",
            parser=parse_name_list,
        )

    def get_trigger_delivery_policy(self, realm: str, name: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/policies/{_segment(name, 'policy name')}",
            parser=parse_mapping,
        )

    def install_trigger_delivery_policy(self, realm: str, body: Mapping[str, Any]) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "POST",
            f"/v1/{_segment(realm, 'realm')}/policies",
            body=_document(body, "policy"),
            parser=parse_acknowledgement,
            expects_body=False,
        )

    def delete_trigger_delivery_policy(self, realm: str, name: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "DELETE",
            f"/v1/{_segment(realm, 'realm')}/policies/{_segment(name, 'policy name')}",
            parser=parse_acknowledgement,
            expects_body=False,
        )

    def list_interfaces(self, realm: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/interfaces",
            parser=parse_name_list,
        )

    def list_interface_major_versions(self, realm: str, name: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/interfaces/{_segment(name, 'interface name')}",
            parser=parse_version_list,
        )

    def get_interface(self, realm: str, name: str, major: int | str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/interfaces/{_segment(name, 'interface name')}/{_major(major)}",
            parser=parse_mapping,
        )

    def install_interface(self, realm: str, body: Mapping[str, Any]) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "POST",
            f"/v1/{_segment(realm, 'realm')}/interfaces",
            body=_document(body, "interface"),
            parser=parse_acknowledgement,
            expects_body=False,
        )

    def delete_interface(self, realm: str, name: str, major: int | str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "DELETE",
            f"/v1/{_segment(realm, 'realm')}/interfaces/{_segment(name, 'interface name')}/{_major(major)}",
            parser=parse_acknowledgement,
            expects_body=False,
        )

    def list_triggers(self, realm: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/triggers",
            parser=parse_name_list,
        )

    def get_trigger(self, realm: str, name: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/triggers/{_segment(name, 'trigger name')}",
            parser=parse_mapping,
        )

    def install_trigger(self, realm: str, body: Mapping[str, Any]) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "POST",
            f"/v1/{_segment(realm, 'realm')}/triggers",
            body=_document(body, "trigger"),
            parser=parse_acknowledgement,
            expects_body=False,
        )

    def delete_trigger(self, realm: str, name: str) -> Call:
        return Call(
            AstarteService.REALM_MANAGEMENT,
            "DELETE",
            f"/v1/{_segment(realm, 'realm')}/triggers/{_segment(name, 'trigger name')}",
            parser=parse_acknowledgement,
            expects_body=False,
        )

    # AppEngine

    def list_devices(self, realm: str) -> Call:
        return Call(
            AstarteService.APPENGINE,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/devices",
            parser=parse_name_list,
        )

    def get_device_status(
        self,
        realm: str,
        device_identifier: str,
        identifier_type: DeviceIdentifierType = DeviceIdentifierType.AUTODISCOVER,
    ) -> Call:
        identifier = _segment(device_identifier, "device identifier")
        resolved = resolve_identifier_type(device_identifier, identifier_type)
        collection = "devices" if resolved is DeviceIdentifierType.DEVICE_ID else "devices-by-alias"
        return Call(
            AstarteService.APPENGINE,
            "GET",
            f"/v1/{_segment(realm, 'realm')}/{collection}/{identifier}",
            parser=parse_mapping,
        )

    # Pairing

    def register_device(self, realm: str, device_id: str) -> Call:
        _device_id(device_id)
        return Call(
            AstarteService.PAIRING,
            "POST",
            f"/v1/{_segment(realm, 'realm')}/agent/devices",
            body={"hw_id": device_id},
            parser=parse_credentials_secret,
        )

    def unregister_device(self, realm: str, device_id: str) -> Call:
        return Call(
            AstarteService.PAIRING,
            "DELETE",
            f"/v1/{_segment(realm, 'realm')}/agent/devices/{_device_id(device_id)}",
            parser=parse_acknowledgement,
            expects_body=False,
        )


__all__ = ["AstarteClient", "Call", "Response"]
