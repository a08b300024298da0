from __future__ import annotations

import shlex
import types

import jwt
import pytest
import requests

from astartectl.client import AstarteClient
from astartectl.devices import DeviceIdentifierType
from astartectl.errors import (
    ConfigurationError,
    DecodeError,
    ParseError,
    RemoteError,
    RemoteRequestError,
)
from astartectl.services import AstarteService

URLS = {
    AstarteService.APPENGINE: "https://api.astarte.example.com/appengine",
    AstarteService.PAIRING: "https://api.astarte.example.com/pairing",
    AstarteService.REALM_MANAGEMENT: "https://api.astarte.example.com/realmmanagement/",
}


@pytest.fixture
def client(realm_private_key) -> AstarteClient:
    return AstarteClient(urls=URLS, private_key=realm_private_key, timeout=0.1)


def test_call_builders_produce_expected_requests(client) -> None:
    assert client.list_trigger_delivery_policies("test").path == "/v1/test/policies"
    assert client.get_trigger_delivery_policy("test", "my policy").path == "/v1/test/policies/my%20policy"
    assert client.delete_trigger_delivery_policy("test", "p").method == "DELETE"
    assert client.get_interface("test", "org.Example", "1").path == "/v1/test/interfaces/org.Example/1"
    assert client.list_interface_major_versions("test", "org.Example").path == (
        "/v1/test/interfaces/org.Example"
    )
    assert client.delete_trigger("test", "t").path == "/v1/test/triggers/t"

    install = client.install_trigger_delivery_policy("test", {"name": "p"})
    assert install.method == "POST"
    assert install.service is AstarteService.REALM_MANAGEMENT
    assert install.wire_body == {"data": {"name": "p"}}


def test_call_builders_validate_arguments_before_sending(client) -> None:
    with pytest.raises(ConfigurationError, match="realm"):
        client.list_triggers("")
    with pytest.raises(ConfigurationError, match="major version"):
        client.get_interface("test", "org.Example", "latest")
    with pytest.raises(DecodeError, match="JSON object"):
        client.install_interface("test", ["not", "a", "mapping"])
    with pytest.raises(ConfigurationError, match="not a valid Astarte device id"):
        client.register_device("test", "my-device")


def test_device_status_path_depends_on_identifier_type(client) -> None:
    device_id = "2TBn-jNESuuHamE2Zo1anA"
    assert client.get_device_status("test", device_id).path == f"/v1/test/devices/{device_id}"
    assert client.get_device_status("test", "kitchen").path == "/v1/test/devices-by-alias/kitchen"
    forced = client.get_device_status("test", device_id, DeviceIdentifierType.ALIAS)
    assert forced.path == f"/v1/test/devices-by-alias/{device_id}"
    assert forced.service is AstarteService.APPENGINE


def test_run_sends_fresh_token_for_the_call_service(client, fake_astarte, realm_private_key) -> None:
    fake_astarte.reply(200, {"data": ["a", "b"]})

    response = client.list_trigger_delivery_policies("test").run(client)

    assert response.parse() == ["a", "b"]
    [sent] = fake_astarte.calls
    assert sent["method"] == "GET"
    assert sent["url"] == "https://api.astarte.example.com/realmmanagement/v1/test/policies"
    assert sent["json"] is None
    assert sent["timeout"] == 0.1
    token = sent["headers"]["Authorization"].removeprefix("Bearer ")
    claims = jwt.decode(token, realm_private_key.public_key(), algorithms=["ES256"])
    assert claims["a_rma"] == [".*::.*"]
    assert "a_aea" not in claims


def test_install_wraps_body_in_data_envelope(client, fake_astarte) -> None:
    fake_astarte.reply(201, {"data": {"name": "p"}})

    call = client.install_trigger_delivery_policy("test", {"name": "p"})
    assert call.run(client).parse() == {"name": "p"}
    assert fake_astarte.calls[0]["json"] == {"data": {"name": "p"}}
    assert fake_astarte.calls[0]["headers"]["Content-Type"] == "application/json"


def test_no_content_response_parses_to_none(client, fake_astarte) -> None:
    fake_astarte.reply(204)
    assert client.delete_trigger_delivery_policy("test", "p").run(client).parse() is None


def test_http_error_carries_status_and_detail(client, fake_astarte) -> None:
    fake_astarte.reply(404, {"errors": {"detail": "Trigger policy not found"}})

    with pytest.raises(RemoteRequestError) as exc_info:
        client.get_trigger_delivery_policy("test", "missing_policy").run(client)

    assert exc_info.value.status_code == 404
    assert exc_info.value.detail == "Trigger policy not found"
    assert "404 Trigger policy not found" in str(exc_info.value)


def test_transport_failure_is_remote_error(client, monkeypatch) -> None:
    def _fail(*args, **kwargs):  # noqa: ANN002, ANN003
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(client._session, "request", _fail)

    with pytest.raises(RemoteError, match="connection refused"):
        client.list_interfaces("test").run(client)


def test_unexpected_response_shape_is_parse_error(client, fake_astarte) -> None:
    fake_astarte.reply(200, {"data": {"unexpected": True}})
    response = client.list_interfaces("test").run(client)
    with pytest.raises(ParseError, match="list of names"):
        response.parse()


def test_missing_data_envelope_is_parse_error(client, fake_astarte) -> None:
    fake_astarte.reply(200, ["a", "b"])
    with pytest.raises(ParseError, match="data envelope"):
        client.list_triggers("test").run(client).parse()


def test_register_device_returns_credentials_secret(client, fake_astarte) -> None:
    fake_astarte.reply(201, {"data": {"credentials_secret": "s3cr3t"}})

    call = client.register_device("test", "2TBn-jNESuuHamE2Zo1anA")

    assert call.run(client).parse() == "s3cr3t"
    assert fake_astarte.calls[0]["url"] == "https://api.astarte.example.com/pairing/v1/test/agent/devices"
    assert fake_astarte.calls[0]["json"] == {"data": {"hw_id": "2TBn-jNESuuHamE2Zo1anA"}}


def test_to_curl_renders_request_without_sending(client, fake_astarte) -> None:
    call = client.install_trigger("test", {"name": "t"})

    rendered = call.to_curl(client)

    assert fake_astarte.calls == []
    parts = shlex.split(rendered)
    assert parts[:3] == ["curl", "-X", "POST"]
    assert parts[-1] == "https://api.astarte.example.com/realmmanagement/v1/test/triggers"
    assert "--data" in parts
    assert parts[parts.index("--data") + 1] == '{"data": {"name": "t"}}'
    assert any(part.startswith("Authorization: Bearer ") for part in parts)


def test_call_for_unconfigured_service_is_configuration_error(realm_private_key) -> None:
    client = AstarteClient(
        urls={AstarteService.PAIRING: "http://localhost:4003"},
        private_key=realm_private_key,
    )
    with pytest.raises(ConfigurationError, match="no base URL configured for appengine"):
        client.list_devices("test").run(client)


def test_empty_created_reply_acknowledges_install(client, fake_astarte) -> None:
    fake_astarte.reply(201)

    response = client.install_interface("test", {"interface_name": "org.Example"}).run(client)

    assert response.status_code == 201
    assert response.parse() is None


def test_non_json_acknowledgement_body_is_ignored(client, monkeypatch) -> None:
    def _created(*args, **kwargs):  # noqa: ANN002, ANN003
        def _json():
            raise ValueError("Expecting value")

        return types.SimpleNamespace(status_code=201, json=_json, text="Created")

    monkeypatch.setattr(client._session, "request", _created)

    assert client.install_trigger("test", {"name": "t"}).run(client).parse() is None
    with pytest.raises(ParseError, match="not valid JSON"):
        client.list_triggers("test").run(client)


def test_empty_reply_to_a_query_is_parse_error(client, fake_astarte) -> None:
    fake_astarte.reply(200)
    with pytest.raises(ParseError, match="data envelope"):
        client.list_interfaces("test").run(client).parse()


def test_call_body_is_a_snapshot(client) -> None:
    body = {"name": "p", "error_handlers": [{"on": "any_error", "strategy": "discard"}]}

    call = client.install_trigger_delivery_policy("test", body)
    body["name"] = "changed"
    body["error_handlers"].append({"on": "client_error", "strategy": "retry"})

    assert call.wire_body == {
        "data": {"name": "p", "error_handlers": [{"on": "any_error", "strategy": "discard"}]}
    }
    with pytest.raises(TypeError):
        call.body["name"] = "changed"


def test_close_releases_http_session(client, monkeypatch) -> None:
    closed = []
    monkeypatch.setattr(client._session, "close", lambda: closed.append(True))

    client.close()

    assert closed == [True]
