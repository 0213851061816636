"""Error taxonomy shared by the sync client, the server and the local store."""

from __future__ import annotations

from typing import Optional

__all__ = [
    "VaultSyncError",
    "ValidationError",
    "ConflictError",
    "RateLimitError",
    "CryptoError",
    "StorageError",
    "NotFoundError",
    "CorruptPayloadError",
]


class VaultSyncError(Exception):
    """Base class for all vaultsync errors."""

    code = "VAULTSYNC_ERROR"

    def __init__(self, message: str = "") -> None:
        self.message = message or self.__class__.__doc__ or self.code
        super().__init__(f"[{self.code}] {self.message}")


class ValidationError(VaultSyncError):
    """Malformed identifier, request body or checkpoint slot."""

    code = "VALIDATION_FAILED"


class ConflictError(VaultSyncError):
    """The stored version no longer matches the version the writer last saw."""

    code = "SYNC_CONFLICT"

    def __init__(self, message: str = "", current_etag: Optional[str] = None) -> None:
        self.current_etag = current_etag
        super().__init__(message)


class RateLimitError(VaultSyncError):
    """Too many writes for one identifier inside the rate-limit window."""

    code = "RATE_LIMITED"

    def __init__(self, retry_after: int, message: str = "") -> None:
        self.retry_after = max(1, int(retry_after))
        super().__init__(message or f"Rate limit exceeded; retry in {self.retry_after}s")


class CryptoError(VaultSyncError):
    """Authenticated decryption failed: wrong credentials or corrupted data."""

    code = "CRYPTO_FAILED"


class StorageError(VaultSyncError):
    """Disk, quota, lock or database failure."""

    code = "STORAGE_FAILED"


class NotFoundError(VaultSyncError):
    """No state is stored under this identifier."""

    code = "NOT_FOUND"


class CorruptPayloadError(VaultSyncError):
    """Decrypted payload could not be decompressed or parsed."""

    code = "PAYLOAD_CORRUPT"
