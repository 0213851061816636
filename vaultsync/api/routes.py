"""Route handlers for the sync API server."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from email.utils import formatdate
from typing import TYPE_CHECKING, Dict

from starlette.concurrency import run_in_threadpool
from starlette.responses import JSONResponse, Response

from ..errors import (
    ConflictError,
    NotFoundError,
    RateLimitError,
    StorageError,
    ValidationError,
)
from ..sync.protocol import (
    ETAG_HEADER,
    IF_MATCH_HEADER,
    LAST_MODIFIED_HEADER,
    RETRY_AFTER_HEADER,
    decode_body,
    validate_identifier,
)

if TYPE_CHECKING:
    from starlette.requests import Request

    from .store import StoredBlob, SyncStore

logger = logging.getLogger("vaultsync.api.routes")


async def health_handler(request: "Request") -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse({
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "vaultsync",
    })


async def blob_handler(request: "Request") -> Response:
    """GET / HEAD / POST ``/{identifier}``."""
    identifier = request.path_params.get("identifier", "")
    max_length = request.app.state.max_identifier_length

    # Identifier becomes part of a filesystem path; check it before any lookup
    try:
        validate_identifier(identifier, max_length)
    except ValidationError as e:
        return _error(400, e.message)

    store: "SyncStore" = request.app.state.sync_store
    try:
        if request.method == "POST":
            return await _handle_post(request, store, identifier)
        return await _handle_read(request, store, identifier)
    except StorageError as e:
        logger.error("Storage failure for %s...: %s", identifier[:8], e)
        return _error(500, "Internal server error")
    except Exception:
        logger.exception("Unhandled error for %s...", identifier[:8])
        return _error(500, "Internal server error")


async def _handle_read(request: "Request", store: "SyncStore", identifier: str) -> Response:
    head_only = request.method == "HEAD"
    try:
        blob = await run_in_threadpool(store.get, identifier)
    except NotFoundError:
        if head_only:
            return Response(status_code=404)
        return _error(404, "Not found")

    headers = _version_headers(blob)
    if head_only:
        return Response(status_code=200, headers=headers)
    return JSONResponse({"data": blob.data}, headers=headers)


async def _handle_post(request: "Request", store: "SyncStore", identifier: str) -> Response:
    try:
        data = decode_body(await request.body())
    except ValidationError as e:
        return _error(400, e.message)

    if_match = request.headers.get(IF_MATCH_HEADER)
    try:
        blob = await run_in_threadpool(store.put, identifier, data, if_match)
    except RateLimitError as e:
        return JSONResponse(
            {"error": "Rate limit exceeded", "retry_after": e.retry_after},
            status_code=429,
            headers={RETRY_AFTER_HEADER: str(e.retry_after)},
        )
    except ConflictError as e:
        headers = {ETAG_HEADER: e.current_etag} if e.current_etag else {}
        return JSONResponse({"error": "Version conflict"}, status_code=412, headers=headers)

    return JSONResponse({"success": True}, headers=_version_headers(blob))


def _version_headers(blob: "StoredBlob") -> Dict[str, str]:
    return {
        ETAG_HEADER: blob.etag,
        LAST_MODIFIED_HEADER: formatdate(blob.last_modified, usegmt=True),
    }


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


__all__ = ["blob_handler", "health_handler"]
