from __future__ import annotations

import json as jsonlib
import types

import pytest
import requests
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)


class FakeAstarte:
    """Records outgoing requests and answers from a queue of canned responses."""

    def __init__(self) -> None:
        self.calls: list[dict[str, object]] = []
        self.responses: list[tuple[int, object]] = []

    def reply(self, status_code: int, payload: object = None) -> None:
        self.responses.append((status_code, payload))

    def request(self, session, method, url, *, json=None, headers=None, timeout=None):  # noqa: ANN001
        self.calls.append(
            {"method": method, "url": url, "json": json, "headers": headers, "timeout": timeout}
        )
        status_code, payload = self.responses.pop(0) if self.responses else (200, {"data": None})

        def _json():
            if payload is None:
                raise ValueError("no body")
            return payload

        text = "" if payload is None else jsonlib.dumps(payload)
        return types.SimpleNamespace(status_code=status_code, json=_json, text=text)


@pytest.fixture
def realm_private_key():
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def realm_key_file(tmp_path, realm_private_key):
    path = tmp_path / "test_private.pem"
    path.write_bytes(
        realm_private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    )
    return path


@pytest.fixture
def fake_astarte(monkeypatch):
    fake = FakeAstarte()

    def _request(self, method, url, **kwargs):  # noqa: ANN001
        return fake.request(self, method, url, **kwargs)

    monkeypatch.setattr(requests.Session, "request", _request)
    return fake


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch, tmp_path):
    for name in ("ASTARTE_URL", "ASTARTE_REALM_NAME", "ASTARTE_REALM_KEY_FILE"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr(
        "astartectl.cli.config.DEFAULT_CONFIG_PATH", tmp_path / "no-such-config.toml"
    )
