"""Shared fixtures: an in-process sync server and a urllib bridge into it."""

from __future__ import annotations

import io
from functools import partial
from pathlib import Path
from typing import List
from urllib.error import HTTPError
from urllib.parse import urlsplit

import pytest
from starlette.testclient import TestClient

from vaultsync import crypto
from vaultsync.api.server import create_app
from vaultsync.api.store import BlobStore, MetadataStore, SyncStore
from vaultsync.api.ratelimit import SlidingWindow
from vaultsync.sync import client as client_module
from vaultsync.sync.client import SyncClient, SyncSettings

SERVER_URL = "http://testserver/sync"
FAST_ITERATIONS = 1_000


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _BridgedResponse:
    def __init__(self, response) -> None:
        self.status = response.status_code
        self.headers = response.headers
        self._body = response.content

    def read(self) -> bytes:
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *_exc) -> None:
        return None


class BridgeOpener:
    """urlopen-compatible callable that serves requests from a TestClient."""

    def __init__(self, http: TestClient) -> None:
        self.http = http
        self.requests: List[str] = []

    def __call__(self, request, timeout=None):
        path = urlsplit(request.full_url).path
        method = request.get_method()
        self.requests.append(method)
        response = self.http.request(
            method,
            path,
            content=request.data,
            headers=dict(request.header_items()),
        )
        if response.status_code >= 400:
            raise HTTPError(
                request.full_url,
                response.status_code,
                response.reason_phrase,
                response.headers,
                io.BytesIO(response.content),
            )
        return _BridgedResponse(response)


@pytest.fixture(autouse=True)
def fast_key_derivation(monkeypatch):
    """Keep PBKDF2 cheap for everything that goes through the client."""
    monkeypatch.setattr(
        client_module,
        "derive_credentials",
        partial(crypto.derive_credentials, iterations=FAST_ITERATIONS),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sync_store(tmp_path: Path, clock: FakeClock) -> SyncStore:
    store = SyncStore(
        blobs=BlobStore(tmp_path / "server" / "blobs"),
        metadata=MetadataStore(tmp_path / "server" / "metadata.sqlite3"),
        limiter=SlidingWindow(max_requests=3, window_seconds=3600),
        clock=clock,
    )
    store.initialize()
    return store


@pytest.fixture
def http(sync_store: SyncStore) -> TestClient:
    return TestClient(create_app(sync_store))


@pytest.fixture
def opener(http: TestClient) -> BridgeOpener:
    return BridgeOpener(http)


@pytest.fixture
def make_client(opener: BridgeOpener):
    """Build configured clients that talk to the in-process server."""

    def _make(username: str = "alice", passphrase: str = "correct horse") -> SyncClient:
        client = SyncClient(SyncSettings(enabled=True, server_url=SERVER_URL), opener=opener)
        client.configure(crypto.SyncCredentials(username=username, passphrase=passphrase))
        return client

    return _make
