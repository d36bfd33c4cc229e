"""
HTTP routes for the tracker API.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from tracker.dependencies import get_current_subject, get_snapshot_store
from tracker.errors import ValidationError
from tracker.schemas import (
    HealthResponse,
    MeResponse,
    OkResponse,
    SnapshotListResponse,
)
from tracker.store import SnapshotStore

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
def health():
    return HealthResponse()


@router.get("/me", response_model=MeResponse)
def me(sub: str = Depends(get_current_subject)):
    return MeResponse(sub=sub)


# The subject dependency is listed first so unauthenticated requests never
# reach the store.
@router.get("/snapshots", response_model=SnapshotListResponse)
def list_snapshots(
    sub: str = Depends(get_current_subject),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    return SnapshotListResponse(snapshots=store.list_snapshots(sub))


async def snapshot_from_body(request: Request) -> Any:
    """Read ``snapshot`` from the JSON body; the store validates its contents."""
    try:
        body = await request.json()
    except ValueError as exc:
        raise ValidationError(f"request body is not valid JSON: {exc}") from exc
    if not isinstance(body, dict):
        raise ValidationError("request body must be an object")
    return body.get("snapshot")


# The body is read as a dependency after the subject so a request without a
# token gets 401 even when its body is malformed.
@router.post("/snapshots", response_model=OkResponse, status_code=201)
def upsert_snapshot(
    sub: str = Depends(get_current_subject),
    snapshot: Any = Depends(snapshot_from_body),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    store.upsert_snapshot(sub, snapshot)
    return OkResponse()


@router.delete("/snapshots/{date}", response_model=OkResponse)
def delete_snapshot(
    date: str,
    sub: str = Depends(get_current_subject),
    store: SnapshotStore = Depends(get_snapshot_store),
):
    store.delete_snapshot(sub, date)
    return OkResponse()
