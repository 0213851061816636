"""Credential derivation and authenticated encryption for sync payloads.

The key and the storage identifier are both derived from ``username`` and
``passphrase`` alone, so a returning user finds their blob again without the
server keeping any mapping from people to identifiers.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import CryptoError

logger = logging.getLogger("vaultsync.crypto")

PBKDF2_ITERATIONS = 310_000
KEY_LENGTH = 32  # AES-256
IV_LENGTH = 12  # 96-bit GCM nonce
SALT = b"ei-the-answer-is-42"
ID_PLAINTEXT = b"the_answer_is_42"


@dataclass(frozen=True)
class SyncCredentials:
    """What the user types in: never stored server-side."""

    username: str
    passphrase: str

    def __repr__(self) -> str:
        return f"SyncCredentials(username={self.username!r}, passphrase='***')"


@dataclass(frozen=True)
class DerivedCredentials:
    """Symmetric key plus the pseudonymous identifier it maps to."""

    key: bytes
    identifier: str

    def __repr__(self) -> str:
        return f"DerivedCredentials(identifier={self.identifier[:8]!r}..., key=***)"


@dataclass(frozen=True)
class EncryptedPayload:
    """``{iv, ciphertext}`` envelope, both base64 encoded."""

    iv: str
    ciphertext: str

    def to_dict(self) -> Dict[str, Any]:
        return {"iv": self.iv, "ciphertext": self.ciphertext}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EncryptedPayload":
        try:
            iv = data["iv"]
            ciphertext = data["ciphertext"]
        except (KeyError, TypeError) as exc:
            raise CryptoError(f"Malformed envelope: {exc}") from exc
        if not isinstance(iv, str) or not isinstance(ciphertext, str):
            raise CryptoError("Malformed envelope: iv and ciphertext must be strings")
        return cls(iv=iv, ciphertext=ciphertext)

    @classmethod
    def from_json(cls, raw: str) -> "EncryptedPayload":
        try:
            data = json.loads(raw)
        except (TypeError, ValueError) as exc:
            raise CryptoError(f"Malformed envelope: {exc}") from exc
        return cls.from_dict(data)


def derive_key(credentials: SyncCredentials, iterations: int = PBKDF2_ITERATIONS) -> bytes:
    """Stretch ``username:passphrase`` into a 256-bit AES key."""
    kdf = PBKDF2HMAC(
        algorithm=SHA256(),
        length=KEY_LENGTH,
        salt=SALT,
        iterations=iterations,
    )
    material = f"{credentials.username}:{credentials.passphrase}".encode("utf-8")
    return kdf.derive(material)


def identifier_for_key(key: bytes) -> str:
    """Encrypt the fixed plaintext under a zero IV and encode it URL-safely.

    The zero IV is reused on purpose: the plaintext never changes, so the
    output is a stable fingerprint of the key. Only this function may do
    that; every other encryption goes through :func:`encrypt`.
    """
    ciphertext = AESGCM(key).encrypt(bytes(IV_LENGTH), ID_PLAINTEXT, None)
    return base64.urlsafe_b64encode(ciphertext).decode("ascii").rstrip("=")


def derive_credentials(
    credentials: SyncCredentials,
    iterations: int = PBKDF2_ITERATIONS,
) -> DerivedCredentials:
    """Derive the key and identifier for a username/passphrase pair."""
    key = derive_key(credentials, iterations=iterations)
    identifier = identifier_for_key(key)
    logger.debug("Derived sync identifier %s...", identifier[:8])
    return DerivedCredentials(key=key, identifier=identifier)


def encrypt(plaintext: str, key: bytes) -> EncryptedPayload:
    """AES-256-GCM encrypt ``plaintext`` under a fresh random IV."""
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    return EncryptedPayload(
        iv=base64.b64encode(iv).decode("ascii"),
        ciphertext=base64.b64encode(ciphertext).decode("ascii"),
    )


def decrypt(payload: EncryptedPayload, key: bytes) -> str:
    """Decrypt and authenticate; raise :class:`CryptoError` on any mismatch."""
    try:
        iv = base64.b64decode(payload.iv, validate=True)
        ciphertext = base64.b64decode(payload.ciphertext, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise CryptoError(f"Envelope is not valid base64: {exc}") from exc

    if len(iv) != IV_LENGTH:
        raise CryptoError(f"Expected a {IV_LENGTH}-byte IV, got {len(iv)} bytes")

    try:
        plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
    except InvalidTag as exc:
        raise CryptoError("Authentication tag mismatch (wrong credentials or corrupted data)") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise CryptoError(f"Decrypted payload is not UTF-8: {exc}") from exc


__all__ = [
    "DerivedCredentials",
    "EncryptedPayload",
    "ID_PLAINTEXT",
    "PBKDF2_ITERATIONS",
    "SALT",
    "SyncCredentials",
    "decrypt",
    "derive_credentials",
    "derive_key",
    "encrypt",
    "identifier_for_key",
]
