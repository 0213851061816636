"""Sync client: one round trip per call, never raises for expected outcomes."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from typing import Any, Callable, Dict, Optional
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from ..crypto import DerivedCredentials, SyncCredentials, derive_credentials
from ..errors import VaultSyncError
from ..models import StorageState
from .protocol import (
    CANCELLED_ERROR,
    CONFLICT_ERROR,
    DEFAULT_RETRY_AFTER,
    ETAG_HEADER,
    IF_MATCH_HEADER,
    LAST_MODIFIED_HEADER,
    NOT_CONFIGURED_ERROR,
    NOT_FOUND_ERROR,
    RETRY_AFTER_HEADER,
    FetchResult,
    RemoteTimestamp,
    SyncResult,
    decode_body,
    encode_body,
    open_state,
    seal_state,
)

logger = logging.getLogger("vaultsync.sync.client")

Opener = Callable[..., Any]


@dataclass
class SyncSettings:
    """Settings for sync operations."""

    enabled: bool = False
    server_url: str = ""
    timeout: float = 30.0
    username: str = ""
    passphrase: str = ""

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        raw = config.get("sync", {}) if config else {}
        return cls(
            enabled=bool(raw.get("enabled", False)),
            server_url=str(raw.get("server_url", "")),
            timeout=float(raw.get("timeout", 30.0)),
            username=str(raw.get("username", "")),
            passphrase=str(raw.get("passphrase", "")),
        )

    @property
    def credentials(self) -> Optional[SyncCredentials]:
        if not self.username:
            return None
        return SyncCredentials(username=self.username, passphrase=self.passphrase)


class SyncClient:
    """Client for the encrypted blob endpoint.

    Holds the derived key, the identifier and the last version tag seen from
    the server. Retries and backoff are left to the caller.
    """

    def __init__(self, settings: SyncSettings, opener: Optional[Opener] = None) -> None:
        if not settings.server_url:
            raise ValueError("SyncSettings.server_url is required")
        self.settings = settings
        self._opener = opener or urlopen
        self._derived: Optional[DerivedCredentials] = None
        self._last_etag: Optional[str] = None

    def configure(self, credentials: SyncCredentials) -> None:
        """Derive the key and identifier for ``credentials``."""
        if not isinstance(credentials, SyncCredentials):
            raise ValueError("configure() expects SyncCredentials")
        self._derived = derive_credentials(credentials)
        self._last_etag = None
        logger.info("Sync client configured for identifier %s...", self._derived.identifier[:8])

    def is_configured(self) -> bool:
        return self._derived is not None

    @property
    def identifier(self) -> Optional[str]:
        return self._derived.identifier if self._derived else None

    @property
    def last_known_etag(self) -> Optional[str]:
        return self._last_etag

    def clear(self) -> None:
        self._derived = None
        self._last_etag = None

    def check_remote(self, cancel: Optional[threading.Event] = None) -> RemoteTimestamp:
        """Check whether a remote blob exists and when it was last written."""
        if self._derived is None or _cancelled(cancel):
            return RemoteTimestamp(exists=False)

        try:
            with self._open(self._request("HEAD")) as resp:
                if _cancelled(cancel):
                    return RemoteTimestamp(exists=False)
                self._last_etag = resp.headers.get(ETAG_HEADER)
                return RemoteTimestamp(
                    exists=True,
                    last_modified=_parse_http_date(resp.headers.get(LAST_MODIFIED_HEADER)),
                )
        except HTTPError as e:
            if e.code != 404:
                logger.warning("Remote check failed: HTTP %s", e.code)
            return RemoteTimestamp(exists=False)
        except (URLError, OSError) as e:
            logger.warning("Remote check failed: %s", e)
            return RemoteTimestamp(exists=False)
        except Exception:
            logger.exception("Remote check failed")
            return RemoteTimestamp(exists=False)

    def sync(self, state: StorageState, cancel: Optional[threading.Event] = None) -> SyncResult:
        """Upload ``state``, conditional on the last version tag seen."""
        if self._derived is None:
            return SyncResult(success=False, error=NOT_CONFIGURED_ERROR)
        if _cancelled(cancel):
            return SyncResult(success=False, error=CANCELLED_ERROR)

        try:
            blob = seal_state(state, self._derived.key)
            headers = {"Content-Type": "application/json"}
            if self._last_etag:
                headers[IF_MATCH_HEADER] = self._last_etag
            request = self._request("POST", data=encode_body(blob), headers=headers)

            with self._open(request) as resp:
                # The write landed, so keep its tag even if the caller gave up
                self._last_etag = resp.headers.get(ETAG_HEADER)
            if _cancelled(cancel):
                return SyncResult(success=False, error=CANCELLED_ERROR)
            logger.info("Pushed snapshot %s", state.timestamp)
            return SyncResult(success=True)

        except HTTPError as e:
            if e.code == 412:
                logger.info("Push rejected: remote changed since last sync")
                return SyncResult(success=False, error=CONFLICT_ERROR)
            if e.code == 429:
                retry_after = _parse_retry_after(e.headers.get(RETRY_AFTER_HEADER) if e.headers else None)
                logger.warning("Push rate limited; retry in %ss", retry_after)
                return SyncResult(success=False, error="Rate limit exceeded", retry_after=retry_after)
            return SyncResult(success=False, error=f"Server error: {e.code}")
        except (URLError, OSError) as e:
            logger.warning("Push failed: %s", e)
            return SyncResult(success=False, error=f"Connection error: {_reason(e)}")
        except VaultSyncError as e:
            logger.error("Push failed: %s", e)
            return SyncResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Push failed")
            return SyncResult(success=False, error=f"Sync failed: {e}")

    def fetch(self, cancel: Optional[threading.Event] = None) -> FetchResult:
        """Download, decrypt and decode the remote snapshot."""
        if self._derived is None:
            return FetchResult(success=False, error=NOT_CONFIGURED_ERROR)
        if _cancelled(cancel):
            return FetchResult(success=False, error=CANCELLED_ERROR)

        try:
            with self._open(self._request("GET")) as resp:
                raw = resp.read()
                etag = resp.headers.get(ETAG_HEADER)
            if _cancelled(cancel):
                return FetchResult(success=False, error=CANCELLED_ERROR)

            state = open_state(decode_body(raw), self._derived.key)
            self._last_etag = etag
            logger.info("Fetched remote snapshot %s", state.timestamp)
            return FetchResult(success=True, state=state)

        except HTTPError as e:
            if e.code == 404:
                return FetchResult(success=False, error=NOT_FOUND_ERROR)
            return FetchResult(success=False, error=f"Server error: {e.code}")
        except (URLError, OSError) as e:
            logger.warning("Fetch failed: %s", e)
            return FetchResult(success=False, error=f"Connection error: {_reason(e)}")
        except VaultSyncError as e:
            logger.error("Fetch aborted: %s", e)
            return FetchResult(success=False, error=str(e))
        except Exception as e:
            logger.exception("Fetch failed")
            return FetchResult(success=False, error=f"Fetch failed: {e}")

    def _request(
        self,
        method: str,
        data: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> Request:
        url = f"{self.settings.server_url.rstrip('/')}/{quote(self._derived.identifier, safe='')}"
        return Request(url, data=data, headers=headers or {}, method=method)

    def _open(self, request: Request) -> Any:
        return self._opener(request, timeout=self.settings.timeout)


def _cancelled(cancel: Optional[threading.Event]) -> bool:
    return cancel is not None and cancel.is_set()


def _reason(error: Exception) -> str:
    return str(getattr(error, "reason", error))


def _parse_retry_after(value: Optional[str]) -> int:
    try:
        return max(1, int(value)) if value else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


def _parse_http_date(value: Optional[str]):
    if not value:
        return None
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None


__all__ = ["SyncClient", "SyncSettings"]
