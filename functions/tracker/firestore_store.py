"""
Firestore-backed snapshot store used by the serverless deployment.

Unit tests mock the client. The transactional upsert under contention is
exercised against the Firestore emulator when FIRESTORE_EMULATOR_HOST is set.
"""

from __future__ import annotations

import hashlib
from typing import Any

from google.api_core import exceptions
from google.cloud.firestore_v1 import transactional
from google.cloud.firestore_v1.base_query import FieldFilter

from tracker.errors import StorageUnavailable
from tracker.store import Clock, public_record, sort_by_date, utcnow, validate_snapshot


def snapshot_document_id(sub: str, date: str) -> str:
    """Deterministic document id, so Firestore itself keeps (sub, date) unique."""
    return hashlib.sha256(f"{sub}\x00{date}".encode("utf-8")).hexdigest()


def _merge_snapshot(transaction, doc_ref, document: dict, now) -> None:
    existing = doc_ref.get(transaction=transaction)
    created_at = now
    if existing.exists:
        created_at = (existing.to_dict() or {}).get("createdAt") or now
    transaction.set(doc_ref, {**document, "createdAt": created_at, "updatedAt": now})


# Firestore re-runs the function on contention, so concurrent writers never merge.
_write_snapshot = transactional(_merge_snapshot)


class FirestoreSnapshotStore:
    """One document per (sub, date) in a single collection."""

    def __init__(self, client, collection: str = "snapshots", clock: Clock = utcnow):
        self.client = client
        self.collection = collection
        self.clock = clock

    def _doc_ref(self, sub: str, date: str):
        return self.client.collection(self.collection).document(
            snapshot_document_id(sub, date)
        )

    def list_snapshots(self, sub: str) -> list[dict]:
        query = self.client.collection(self.collection).where(
            filter=FieldFilter("sub", "==", sub)
        )
        try:
            docs = list(query.stream())
        except exceptions.GoogleAPIError as exc:
            raise StorageUnavailable(f"list failed: {exc}") from exc
        return sort_by_date([public_record(doc.to_dict() or {}) for doc in docs])

    def upsert_snapshot(self, sub: str, snapshot: Any) -> None:
        fields = validate_snapshot(snapshot)
        document = {**fields, "sub": sub}
        doc_ref = self._doc_ref(sub, fields["date"])
        try:
            _write_snapshot(self.client.transaction(), doc_ref, document, self.clock())
        except (exceptions.GoogleAPIError, ValueError) as exc:
            # ValueError: transaction retries exhausted
            raise StorageUnavailable(f"upsert failed: {exc}") from exc

    def delete_snapshot(self, sub: str, date: str) -> None:
        try:
            self._doc_ref(sub, date).delete()
        except exceptions.GoogleAPIError as exc:
            raise StorageUnavailable(f"delete failed: {exc}") from exc

    def close(self) -> None:
        self.client.close()
