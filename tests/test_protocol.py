"""Tests for wire-level helpers shared by client and server."""

from __future__ import annotations

import hashlib
import json

import pytest

from vaultsync.crypto import SyncCredentials, derive_key
from vaultsync.errors import CorruptPayloadError, CryptoError, RateLimitError, ValidationError
from vaultsync.models import Quote, StorageState
from vaultsync.sync.protocol import (
    compute_etag,
    decode_body,
    encode_body,
    normalize_etag,
    open_state,
    seal_state,
    validate_identifier,
)

KEY = derive_key(SyncCredentials("alice", "pw"), iterations=1_000)


@pytest.mark.parametrize("identifier", ["abc", "A-b_9", "x" * 512])
def test_valid_identifiers(identifier: str):
    assert validate_identifier(identifier) == identifier


@pytest.mark.parametrize("identifier", ["", "a/b", "a.b", "a=b", "ä", "x" * 513])
def test_invalid_identifiers(identifier: str):
    with pytest.raises(ValidationError):
        validate_identifier(identifier)


def test_etag_is_quoted_sha256():
    assert compute_etag("blob") == '"' + hashlib.sha256(b"blob").hexdigest() + '"'


def test_normalize_etag():
    assert normalize_etag('"abc"') == "abc"
    assert normalize_etag('W/"abc"') == "abc"
    assert normalize_etag(" abc ") == "abc"
    assert normalize_etag(None) is None
    assert normalize_etag('""') is None


def test_seal_and_open_state():
    state = StorageState()
    state.human.quotes.append(Quote(id="q1", text="plaintext-marker-quote"))

    blob = seal_state(state, KEY)

    assert "plaintext-marker-quote" not in blob
    assert open_state(blob, KEY).to_dict() == state.to_dict()


def test_open_state_with_wrong_key_raises_crypto_error():
    blob = seal_state(StorageState(), KEY)
    other = derive_key(SyncCredentials("alice", "other"), iterations=1_000)

    with pytest.raises(CryptoError):
        open_state(blob, other)


def test_open_state_rejects_non_object_json():
    from vaultsync.crypto import encrypt

    with pytest.raises(CorruptPayloadError):
        open_state(encrypt("[1, 2]", KEY).to_json(), KEY)
    with pytest.raises(CorruptPayloadError):
        open_state(encrypt("{broken", KEY).to_json(), KEY)


def test_body_helpers():
    assert decode_body(encode_body("blob")) == "blob"
    assert decode_body(json.dumps({"data": "blob", "extra": 1}).encode()) == "blob"

    for raw in (b"", b"nope", b"[]", b'{"data": 1}', b"\xff\xfe"):
        with pytest.raises(ValidationError):
            decode_body(raw)


def test_error_strings_carry_codes():
    error = RateLimitError(0)

    assert error.retry_after == 1
    assert str(error).startswith("[RATE_LIMITED]")
    assert str(ValidationError("bad")) == "[VALIDATION_FAILED] bad"
