"""Realm key loading and Astarte JWT generation."""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Iterable, Union

import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
    load_pem_private_key,
)

from astartectl.errors import CredentialError
from astartectl.services import AstarteService

DEFAULT_TOKEN_TTL_SECONDS = 300
ALL_ACCESS_CLAIM = [".*::.*"]

RealmKey = Union[ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey]


def _chmod_owner_only(path: Path) -> None:
    if os.name != "posix":
        return
    path.chmod(0o600)


def load_realm_key(
    *,
    key_pem: str | bytes | None = None,
    key_file: str | Path | None = None,
) -> RealmKey:
    """Load the realm private key, preferring inline PEM over a key file."""
    if key_pem:
        raw = key_pem.encode("utf-8") if isinstance(key_pem, str) else key_pem
        source = "inline realm key"
    elif key_file:
        path = Path(key_file).expanduser()
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise CredentialError(f"cannot read realm key file {path}: {exc.strerror or exc}") from exc
        source = str(path)
    else:
        raise CredentialError("realm key is required: pass --realm-key or set realm.key_file")

    try:
        private_key = load_pem_private_key(raw, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise CredentialError(f"invalid realm private key: {source}") from exc

    if not isinstance(private_key, (ec.EllipticCurvePrivateKey, rsa.RSAPrivateKey)):
        raise CredentialError("realm key must be an EC or RSA private key")
    return private_key


def signing_algorithm(private_key: RealmKey) -> str:
    if isinstance(private_key, ec.EllipticCurvePrivateKey):
        return "ES256"
    return "RS256"


def generate_token(
    private_key: RealmKey,
    services: Iterable[AstarteService],
    *,
    ttl_seconds: int = DEFAULT_TOKEN_TTL_SECONDS,
    now: int | None = None,
) -> str:
    """Sign a short-lived JWT granting full access to the given services."""
    issued_at = int(time.time()) if now is None else int(now)
    claims: dict[str, object] = {"iat": issued_at}
    if ttl_seconds > 0:
        claims["exp"] = issued_at + int(ttl_seconds)
    for service in services:
        claims[service.claim] = list(ALL_ACCESS_CLAIM)
    return jwt.encode(claims, private_key, algorithm=signing_algorithm(private_key))


def generate_keypair(realm: str, *, output_dir: str | Path = ".") -> tuple[Path, Path]:
    """Write a fresh EC P-256 realm key pair as PEM files."""
    if not realm:
        raise CredentialError("realm name is required to name the key pair")

    root = Path(output_dir)
    root.mkdir(parents=True, exist_ok=True)
    private_path = root / f"{realm}_private.pem"
    public_path = root / f"{realm}_public.pem"
    if private_path.exists():
        raise CredentialError(f"refusing to overwrite existing key file: {private_path}")

    private_key = ec.generate_private_key(ec.SECP256R1())
    private_path.write_bytes(
        private_key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    )
    _chmod_owner_only(private_path)
    public_path.write_bytes(
        private_key.public_key().public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    )
    return private_path, public_path


__all__ = [
    "DEFAULT_TOKEN_TTL_SECONDS",
    "RealmKey",
    "generate_keypair",
    "generate_token",
    "load_realm_key",
    "signing_algorithm",
]
