"""
Request dispatcher for the serverless deployment.

Firebase hands each invocation a Flask request; this module routes it to the
snapshot store and always answers with JSON plus CORS headers.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from firebase_functions import https_fn

from tracker.auth import authenticate
from tracker.config import Settings, get_settings
from tracker.cors import cors_headers
from tracker.dependencies import get_serverless_snapshot_store, get_token_verifier
from tracker.errors import NotFound, TrackerError, ValidationError

logger = logging.getLogger(__name__)

SNAPSHOTS_PATH = "/snapshots"


def resolve_route_path(path: str) -> str:
    """
    Return the route part of a request path.

    Hosting rewrites may keep an ``/api`` (or ``/functions/api``) prefix; the
    route is whatever follows the ``api`` segment.
    """
    parts = [p for p in (path or "").split("/") if p]
    if "api" in parts:
        parts = parts[parts.index("api") + 1 :]
    return "/" + "/".join(parts)


def _json(status: int, body: dict, headers: dict) -> https_fn.Response:
    return https_fn.Response(
        json.dumps(body),
        status=status,
        headers=headers,
        content_type="application/json",
    )


def _route(request: https_fn.Request, path: str) -> tuple[int, dict]:
    method = request.method
    if method == "GET" and path == "/health":
        return 200, {"status": "ok"}

    sub = authenticate(request.headers.get("Authorization"), get_token_verifier())

    if method == "GET" and path == "/me":
        return 200, {"sub": sub}

    if method == "GET" and path == SNAPSHOTS_PATH:
        store = get_serverless_snapshot_store()
        return 200, {"snapshots": store.list_snapshots(sub)}

    if method == "POST" and path == SNAPSHOTS_PATH:
        body = request.get_json(silent=True)
        if not isinstance(body, dict):
            raise ValidationError("request body is not a JSON object")
        store = get_serverless_snapshot_store()
        store.upsert_snapshot(sub, body.get("snapshot"))
        return 201, {"ok": True}

    if method == "DELETE" and path.startswith(SNAPSHOTS_PATH + "/"):
        date = path[len(SNAPSHOTS_PATH) + 1 :]
        if not date:
            raise NotFound()
        store = get_serverless_snapshot_store()
        store.delete_snapshot(sub, date)
        return 200, {"ok": True}

    raise NotFound(f"{method} {path}")


def handle_request(
    request: https_fn.Request, settings: Optional[Settings] = None
) -> https_fn.Response:
    settings = settings or get_settings()
    headers = cors_headers(request.headers.get("Origin"), settings.allowed_origin_list)

    if request.method == "OPTIONS":
        return https_fn.Response(status=204, headers=headers)

    path = resolve_route_path(request.path)
    try:
        status, body = _route(request, path)
    except TrackerError as exc:
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, path, exc, exc_info=exc)
        return _json(exc.status_code, {"error": exc.public_message}, headers)
    except Exception:
        logger.exception("Unhandled error on %s %s", request.method, path)
        return _json(500, {"error": "Server error"}, headers)
    return _json(status, body, headers)
