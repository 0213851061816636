"""Wire protocol shared by the sync client and the sync server.

Every request addresses ``<base>/<identifier>``; bodies are JSON. A stored
blob is the JSON text of an :class:`~vaultsync.crypto.EncryptedPayload`
whose plaintext is the gzip-compressed JSON of a ``StorageState``.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from ..compression import compress, decode_payload
from ..crypto import EncryptedPayload, decrypt, encrypt
from ..errors import CorruptPayloadError, ValidationError
from ..models import StorageState

IF_MATCH_HEADER = "If-Match"
ETAG_HEADER = "ETag"
LAST_MODIFIED_HEADER = "Last-Modified"
RETRY_AFTER_HEADER = "Retry-After"

MAX_IDENTIFIER_LENGTH = 512
DEFAULT_RETRY_AFTER = 3600
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

CONFLICT_ERROR = "conflict"
NOT_CONFIGURED_ERROR = "Not configured"
NOT_FOUND_ERROR = "No remote state found"
CANCELLED_ERROR = "cancelled"


def validate_identifier(identifier: str, max_length: int = MAX_IDENTIFIER_LENGTH) -> str:
    """Reject anything outside the URL-safe base64 alphabet or too long."""
    if not identifier:
        raise ValidationError("Missing identifier")
    if len(identifier) > max_length:
        raise ValidationError("Identifier too long")
    if not IDENTIFIER_PATTERN.match(identifier):
        raise ValidationError("Invalid identifier format")
    return identifier


def compute_etag(blob: str) -> str:
    """Quoted SHA-256 of the stored blob."""
    return '"' + hashlib.sha256(blob.encode("utf-8")).hexdigest() + '"'


def normalize_etag(value: Optional[str]) -> Optional[str]:
    """Strip weak prefixes and quotes so tags compare by content hash."""
    if value is None:
        return None
    value = value.strip()
    if value.startswith("W/"):
        value = value[2:]
    return value.strip('"') or None


@dataclass
class RemoteTimestamp:
    """Result of a metadata-only existence check."""

    exists: bool
    last_modified: Optional[datetime] = None


@dataclass
class SyncResult:
    """Outcome of a conditional upload."""

    success: bool
    error: Optional[str] = None
    retry_after: Optional[int] = None

    @property
    def is_conflict(self) -> bool:
        return self.error == CONFLICT_ERROR

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.error is not None:
            result["error"] = self.error
        if self.retry_after is not None:
            result["retryAfter"] = self.retry_after
        return result


@dataclass
class FetchResult:
    """Outcome of downloading another device's snapshot."""

    success: bool
    state: Optional[StorageState] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": self.success}
        if self.state is not None:
            result["state"] = self.state.to_dict()
        if self.error is not None:
            result["error"] = self.error
        return result


def seal_state(state: StorageState, key: bytes) -> str:
    """Serialize, compress and encrypt ``state`` into the stored blob text."""
    compressed = compress(json.dumps(state.to_dict()))
    return encrypt(compressed, key).to_json()


def open_state(blob: str, key: bytes) -> StorageState:
    """Inverse of :func:`seal_state`; raises on any decode failure."""
    plaintext = decrypt(EncryptedPayload.from_json(blob), key)
    document = decode_payload(plaintext)
    try:
        data = json.loads(document)
    except ValueError as exc:
        raise CorruptPayloadError(f"Decrypted state is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise CorruptPayloadError("Decrypted state is not a JSON object")
    try:
        return StorageState.from_dict(data)
    except (KeyError, TypeError, AttributeError) as exc:
        raise CorruptPayloadError(f"Decrypted state has an unexpected shape: {exc}") from exc


def encode_body(blob: str) -> bytes:
    return json.dumps({"data": blob}).encode("utf-8")


def decode_body(raw: bytes) -> str:
    """Extract ``data`` from a request/response body or raise ValidationError."""
    try:
        body = json.loads(raw.decode("utf-8")) if raw else None
    except (UnicodeDecodeError, ValueError) as exc:
        raise ValidationError(f"Body is not valid JSON: {exc}") from exc
    if not isinstance(body, dict) or not isinstance(body.get("data"), str):
        raise ValidationError('Invalid request body. Expected: {"data": "encrypted_blob"}')
    return body["data"]


__all__ = [
    "CANCELLED_ERROR",
    "CONFLICT_ERROR",
    "DEFAULT_RETRY_AFTER",
    "ETAG_HEADER",
    "FetchResult",
    "IF_MATCH_HEADER",
    "LAST_MODIFIED_HEADER",
    "MAX_IDENTIFIER_LENGTH",
    "NOT_CONFIGURED_ERROR",
    "NOT_FOUND_ERROR",
    "RETRY_AFTER_HEADER",
    "RemoteTimestamp",
    "SyncResult",
    "compute_etag",
    "decode_body",
    "encode_body",
    "normalize_etag",
    "open_state",
    "seal_state",
    "validate_identifier",
]
