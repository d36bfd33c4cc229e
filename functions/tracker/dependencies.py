"""
Dependency wiring for the FastAPI app and the serverless handler.

The store and token verifier are process-wide singletons: created on first
use, reused for the life of the process (or across warm serverless
invocations), and dropped by ``reset_dependencies``.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from fastapi import Depends, Header

from tracker.auth import JwksTokenVerifier, TokenVerifier, authenticate
from tracker.config import Settings, StorageBackend, get_settings
from tracker.errors import ConfigurationError
from tracker.store import InMemorySnapshotStore, JsonFileSnapshotStore, SnapshotStore

logger = logging.getLogger(__name__)

_snapshot_store: SnapshotStore | None = None
_token_verifier: TokenVerifier | None = None
_lock = threading.Lock()


def _firestore_client():
    import firebase_admin
    from firebase_admin import firestore

    try:
        firebase_admin.get_app()
    except ValueError:
        firebase_admin.initialize_app()
    return firestore.client()


def build_snapshot_store(settings: Settings, backend: StorageBackend) -> SnapshotStore:
    if backend == "memory":
        return InMemorySnapshotStore()
    if backend == "json":
        return JsonFileSnapshotStore(settings.data_file)
    if backend == "sql":
        if not settings.database_url:
            raise ConfigurationError("STORAGE_BACKEND=sql requires DATABASE_URL")
        from tracker.db import SqlSnapshotStore

        return SqlSnapshotStore(settings.database_url)
    if backend == "firestore":
        from tracker.firestore_store import FirestoreSnapshotStore

        return FirestoreSnapshotStore(
            _firestore_client(), collection=settings.firestore_collection
        )
    raise ConfigurationError(f"unknown storage backend: {backend}")


def _get_or_create_store(fallback: StorageBackend) -> SnapshotStore:
    global _snapshot_store
    if _snapshot_store is not None:
        return _snapshot_store
    with _lock:
        if _snapshot_store is None:
            settings = get_settings()
            backend = settings.resolve_storage_backend(fallback)
            _snapshot_store = build_snapshot_store(settings, backend)
            logger.info("Snapshot store ready (backend=%s)", backend)
    return _snapshot_store


def get_snapshot_store() -> SnapshotStore:
    """
    Return the singleton store for the long-running service (JSON file unless
    configured otherwise).
    """
    return _get_or_create_store("json")


def get_serverless_snapshot_store() -> SnapshotStore:
    """Like get_snapshot_store, but defaults to Firestore."""
    return _get_or_create_store("firestore")


def get_token_verifier() -> TokenVerifier:
    global _token_verifier
    if _token_verifier is not None:
        return _token_verifier
    with _lock:
        if _token_verifier is None:
            settings = get_settings()
            _token_verifier = JwksTokenVerifier(
                settings.auth0_issuer_base_url,
                settings.auth0_audience,
                algorithms=[settings.auth0_token_signing_alg],
                cache_lifespan=settings.jwks_cache_lifespan,
            )
    return _token_verifier


def get_current_subject(
    authorization: Optional[str] = Header(default=None),
    verifier: TokenVerifier = Depends(get_token_verifier),
) -> str:
    return authenticate(authorization, verifier)


def reset_dependencies() -> None:
    """Close and forget the cached store and verifier."""
    global _snapshot_store, _token_verifier
    with _lock:
        store, _snapshot_store = _snapshot_store, None
        _token_verifier = None
    if store is not None:
        store.close()
