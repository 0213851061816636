"""Tests for the sync client against the in-process server."""

from __future__ import annotations

import io
import json
import threading
from urllib.error import HTTPError, URLError

import pytest

from vaultsync.crypto import DerivedCredentials, SyncCredentials, encrypt
from vaultsync.models import DataItem, HumanEntity, StorageState
from vaultsync.sync.client import SyncClient, SyncSettings
from vaultsync.sync.protocol import (
    CANCELLED_ERROR,
    CONFLICT_ERROR,
    NOT_CONFIGURED_ERROR,
    NOT_FOUND_ERROR,
    compute_etag,
)

SERVER_URL = "http://testserver/sync"


def _state(fact: str = "f1", when: str = "2024-01-01T00:00:00.000Z") -> StorageState:
    return StorageState(
        timestamp=when,
        human=HumanEntity(facts=[DataItem(id=fact, name=fact, last_updated=when)]),
    )


def _failing_opener(error: Exception):
    def _open(request, timeout=None):
        raise error
    return _open


def test_requires_server_url():
    with pytest.raises(ValueError):
        SyncClient(SyncSettings(server_url=""))


def test_configure_rejects_wrong_type():
    client = SyncClient(SyncSettings(server_url=SERVER_URL))

    with pytest.raises(ValueError):
        client.configure(("alice", "pw"))


def test_unconfigured_client_never_touches_network(opener):
    client = SyncClient(SyncSettings(server_url=SERVER_URL), opener=opener)

    assert client.sync(_state()).error == NOT_CONFIGURED_ERROR
    assert client.fetch().error == NOT_CONFIGURED_ERROR
    assert client.check_remote().exists is False
    assert opener.requests == []


def test_sync_then_fetch_round_trip(make_client):
    client = make_client()
    state = _state()

    result = client.sync(state)
    fetched = client.fetch()

    assert result.success
    assert fetched.success
    assert fetched.state.to_dict() == state.to_dict()


def test_second_device_with_same_credentials_sees_state(make_client):
    make_client().sync(_state("from-a"))

    fetched = make_client().fetch()

    assert fetched.success
    assert fetched.state.human.facts[0].id == "from-a"


def test_other_credentials_have_separate_storage(make_client):
    alice = make_client()
    alice.sync(_state("alice-only"))

    bob = make_client(username="bob")

    assert bob.identifier != alice.identifier
    assert bob.fetch().error == NOT_FOUND_ERROR
    assert bob.check_remote().exists is False


def test_server_only_sees_ciphertext(make_client, sync_store):
    client = make_client()
    client.sync(_state("very-secret-fact"))

    stored = sync_store.get(client.identifier).data

    assert "very-secret-fact" not in stored
    assert set(json.loads(stored)) == {"iv", "ciphertext"}


def test_check_remote_reports_existence_and_tracks_etag(make_client, sync_store):
    writer = make_client()
    writer.sync(_state())
    reader = make_client()

    remote = reader.check_remote()

    assert remote.exists
    assert remote.last_modified is not None
    assert reader.last_known_etag == sync_store.get(reader.identifier).etag


def test_stale_writer_gets_conflict(make_client):
    first = make_client()
    second = make_client()
    first.sync(_state("v1"))
    second.fetch()
    first.sync(_state("v2"))

    result = second.sync(_state("v3"))

    assert not result.success
    assert result.error == CONFLICT_ERROR
    assert result.is_conflict


def test_rate_limit_surfaces_retry_after(make_client, clock):
    client = make_client()
    for n in range(3):
        assert client.sync(_state(f"v{n}")).success
        clock.advance(100)

    result = client.sync(_state("v3"))

    assert not result.success
    assert result.error == "Rate limit exceeded"
    assert result.retry_after == 3600 - 300
    assert result.to_dict()["retryAfter"] == 3600 - 300


def test_wrong_passphrase_fetch_fails_cleanly(make_client, opener, sync_store):
    owner = make_client()
    owner.sync(_state())
    intruder = make_client()
    # Same identifier, different key: simulate a key mismatch on decrypt
    intruder._derived = DerivedCredentials(key=bytes(32), identifier=owner.identifier)

    fetched = intruder.fetch()

    assert not fetched.success
    assert "CRYPTO_FAILED" in fetched.error


def test_connection_error_is_reported_not_raised():
    client = SyncClient(
        SyncSettings(server_url=SERVER_URL),
        opener=_failing_opener(URLError("connection refused")),
    )
    client.configure(SyncCredentials("alice", "pw"))

    result = client.sync(_state())

    assert not result.success
    assert result.error == "Connection error: connection refused"
    assert client.fetch().error.startswith("Connection error")
    assert client.check_remote().exists is False


def test_unexpected_status_is_server_error():
    error = HTTPError(SERVER_URL, 503, "Unavailable", {}, io.BytesIO(b""))
    client = SyncClient(SyncSettings(server_url=SERVER_URL), opener=_failing_opener(error))
    client.configure(SyncCredentials("alice", "pw"))

    assert client.sync(_state()).error == "Server error: 503"
    assert client.fetch().error == "Server error: 503"


def test_cancelled_before_request(make_client, opener):
    client = make_client()
    cancel = threading.Event()
    cancel.set()

    assert client.sync(_state(), cancel=cancel).error == CANCELLED_ERROR
    assert client.fetch(cancel=cancel).error == CANCELLED_ERROR
    assert client.check_remote(cancel=cancel).exists is False
    assert opener.requests == []


def test_cancel_during_push_still_records_new_etag(make_client, opener, sync_store):
    client = make_client()
    cancel = threading.Event()
    inner = opener.__call__

    def _cancel_mid_flight(request, timeout=None):
        response = inner(request, timeout=timeout)
        cancel.set()
        return response

    client._opener = _cancel_mid_flight
    result = client.sync(_state(), cancel=cancel)

    assert result.error == CANCELLED_ERROR
    assert client.last_known_etag == sync_store.get(client.identifier).etag


def test_legacy_uncompressed_blob_is_readable(make_client, sync_store):
    client = make_client()
    legacy = _state("legacy")
    blob = encrypt(json.dumps(legacy.to_dict()), client._derived.key).to_json()
    sync_store.put(client.identifier, blob)

    fetched = client.fetch()

    assert fetched.success
    assert fetched.state.human.facts[0].id == "legacy"


def test_unknown_body_keys_are_ignored(make_client, sync_store):
    client = make_client()
    client.sync(_state())
    blob = sync_store.get(client.identifier).data

    class _Resp:
        headers = {"ETag": compute_etag(blob)}

        def read(self):
            return json.dumps({"data": blob, "server": "legacy"}).encode("utf-8")

        def __enter__(self):
            return self

        def __exit__(self, *_):
            return None

    client._opener = lambda request, timeout=None: _Resp()

    assert client.fetch().success


def test_clear_forgets_key_and_etag(make_client):
    client = make_client()
    client.sync(_state())

    client.clear()

    assert not client.is_configured()
    assert client.identifier is None
    assert client.last_known_etag is None
