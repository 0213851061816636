"""Gzip + base64 compression applied to plaintext before encryption."""

from __future__ import annotations

import base64
import binascii
import gzip
import zlib
from enum import Enum

from .errors import CorruptPayloadError

# Base64 of the gzip magic bytes 0x1f 0x8b 0x08
COMPRESSED_PREFIX = "H4sI"


class PayloadFormat(str, Enum):
    """How a decrypted payload is encoded."""
    COMPRESSED = "compressed"
    LEGACY_PLAINTEXT = "legacy_plaintext"


def compress(text: str) -> str:
    """Gzip ``text`` and return the result as a base64 string."""
    raw = gzip.compress(text.encode("utf-8"), mtime=0)
    return base64.b64encode(raw).decode("ascii")


def decompress(value: str) -> str:
    """Inverse of :func:`compress`."""
    try:
        raw = base64.b64decode(value, validate=True)
        return gzip.decompress(raw).decode("utf-8")
    except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError) as exc:
        raise CorruptPayloadError(f"Compressed payload could not be decoded: {exc}") from exc


def is_compressed(value: str) -> bool:
    """True if ``value`` starts with the base64-encoded gzip header."""
    return value.startswith(COMPRESSED_PREFIX)


def detect_format(value: str) -> PayloadFormat:
    if is_compressed(value):
        return PayloadFormat.COMPRESSED
    return PayloadFormat.LEGACY_PLAINTEXT


def decode_payload(value: str) -> str:
    """Return the JSON text carried by a decrypted payload.

    Payloads written before compression was introduced are plain JSON and
    are returned as-is.
    """
    payload_format = detect_format(value)
    if payload_format is PayloadFormat.COMPRESSED:
        return decompress(value)
    return value


__all__ = [
    "COMPRESSED_PREFIX",
    "PayloadFormat",
    "compress",
    "decode_payload",
    "decompress",
    "detect_format",
    "is_compressed",
]
