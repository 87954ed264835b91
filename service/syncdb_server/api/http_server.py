"""
HTTP server implementation for SyncDB.

This module exposes the record store through the REST contract spoken by
SyncedDB clients:

    GET    /{store}?size=N&after=T&after_id=I   change-feed page
    POST   /{store}                             create
    GET    /{store}/{id}                        read one
    PUT    /{store}/{id}                        update (version = current + 1)
    DELETE /{store}/{id}                        tombstone

Invariants:
    - Store names are validated before the body is read or storage touched
    - Every response, errors included, carries CORS headers
    - A version conflict answers 409 with the current record as body

How to change safely:
    - The status codes and body shapes are what clients key their retry
      logic on; do not change them
    - New endpoints must not collide with /{store} paths
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ..config import HttpConfig
from ..store import (
    AlreadyExistsError,
    Cursor,
    InvalidNameError,
    MalformedInputError,
    NotFoundError,
    RecordStore,
    StorageIOError,
    StoreError,
    VersionConflictError,
)
from ..store.types import validate_store_name

logger = logging.getLogger(__name__)

ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type"
PREFLIGHT_MAX_AGE = "86400"

_STATUS_BY_ERROR: dict[type[StoreError], int] = {
    InvalidNameError: 400,
    MalformedInputError: 400,
    AlreadyExistsError: 409,
    NotFoundError: 404,
    VersionConflictError: 409,
    StorageIOError: 500,
}


def create_http_app(
    record_store: RecordStore,
    config: HttpConfig | None = None,
) -> web.Application:
    """Create an HTTP application for SyncDB.

    Args:
        record_store: RecordStore instance
        config: HTTP server configuration

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    app = web.Application(client_max_size=config.max_body_bytes)

    app.router.add_get("/{store}", lambda r: handle_list(r, record_store))
    app.router.add_post("/{store}", lambda r: handle_create(r, record_store))
    app.router.add_get("/{store}/{record_id}", lambda r: handle_get(r, record_store))
    app.router.add_put("/{store}/{record_id}", lambda r: handle_update(r, record_store))
    app.router.add_delete("/{store}/{record_id}", lambda r: handle_delete(r, record_store))
    app.router.add_route("*", "/{tail:.*}", handle_fallback)

    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response(status=204)
            response.headers["Access-Control-Max-Age"] = PREFLIGHT_MAX_AGE
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                _apply_cors_headers(request, e, config)
                raise

        _apply_cors_headers(request, response, config)
        return response

    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except VersionConflictError as e:
            return web.json_response(e.current.to_dict(), status=409)
        except StoreError as e:
            status = _STATUS_BY_ERROR.get(type(e), 500)
            if status >= 500:
                logger.error(f"Storage failure: {e.message}", extra=e.details)
            return error_response(e.message, e.code, status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return error_response("Internal Server Error", "INTERNAL", 500)

    # CORS outermost so error responses carry the headers too
    app.middlewares.append(cors_middleware)
    app.middlewares.append(error_middleware)

    return app


def _apply_cors_headers(
    request: web.Request,
    response: web.StreamResponse,
    config: HttpConfig,
) -> None:
    origin = request.headers.get("Origin")
    if "*" in config.cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin or "*"
    elif origin in config.cors_origins:
        response.headers["Access-Control-Allow-Origin"] = origin
    response.headers["Access-Control-Allow-Methods"] = ALLOWED_METHODS
    response.headers["Access-Control-Allow-Headers"] = ALLOWED_HEADERS


def error_response(message: str, code: str, status: int) -> web.Response:
    """JSON error body used for every non-conflict failure."""
    return web.json_response({"error": message, "error_code": code}, status=status)


def no_content() -> web.Response:
    return web.Response(status=204)


def path_store(request: web.Request) -> str:
    """Store name from the path, validated before anything else happens.

    Raises:
        InvalidNameError: If the name is not [A-Za-z0-9_-]+
    """
    return validate_store_name(request.match_info["store"])


async def read_json_object(request: web.Request) -> dict[str, Any]:
    """Parse the request body as a JSON object.

    Raises:
        MalformedInputError: If the body is not valid JSON or not an object
    """
    try:
        body = await request.json()
    except ValueError:
        raise MalformedInputError("Invalid JSON body")
    if not isinstance(body, dict):
        raise MalformedInputError("JSON body must be an object")
    return body


def parse_size(raw: str | None) -> int | None:
    """Parse the `size` query parameter; clamping happens in the store.

    Raises:
        MalformedInputError: If size is present but not an integer
    """
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise MalformedInputError(f"Invalid size: {raw!r}", field_name="size")


async def handle_list(request: web.Request, record_store: RecordStore) -> web.Response:
    """Handle GET /{store} - Change-feed page."""
    store = path_store(request)
    size = parse_size(request.query.get("size"))
    cursor = Cursor.from_params(request.query.get("after"), request.query.get("after_id"))

    page = await record_store.list(store, cursor=cursor, limit=size)
    return web.json_response(page.to_dict())


async def handle_create(request: web.Request, record_store: RecordStore) -> web.Response:
    """Handle POST /{store} - Create record."""
    store = path_store(request)
    body = await read_json_object(request)

    await record_store.create(store, body)
    return no_content()


async def handle_get(request: web.Request, record_store: RecordStore) -> web.Response:
    """Handle GET /{store}/{id} - Read one record."""
    store = path_store(request)
    record = await record_store.get(store, request.match_info["record_id"])
    return web.json_response(record.to_dict())


async def handle_update(request: web.Request, record_store: RecordStore) -> web.Response:
    """Handle PUT /{store}/{id} - Update with version check."""
    store = path_store(request)
    body = await read_json_object(request)

    await record_store.update(store, request.match_info["record_id"], body)
    return no_content()


async def handle_delete(request: web.Request, record_store: RecordStore) -> web.Response:
    """Handle DELETE /{store}/{id} - Tombstone."""
    store = path_store(request)
    await record_store.delete(store, request.match_info["record_id"])
    return no_content()


async def handle_fallback(request: web.Request) -> web.Response:
    """Anything the routes above did not match.

    Store names are checked before the method, so an invalid name is a
    400 whatever the method.
    """
    segments = [s for s in request.path.split("/") if s]
    if len(segments) in (1, 2):
        validate_store_name(segments[0])
        return error_response("Method Not Allowed", "METHOD_NOT_ALLOWED", 405)
    return error_response("Not found", "NOT_FOUND", 404)
