"""
Snapshot store abstraction with in-memory and JSON-file implementations.

Every operation is scoped to a subject identifier supplied by the
authenticator. A subject owns at most one snapshot per date.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Protocol

from pydantic import ValidationError as PydanticValidationError

from tracker.errors import StorageUnavailable, ValidationError
from tracker.schemas import SnapshotPayload

logger = logging.getLogger(__name__)

# Keys the server owns; a client cannot set them through the payload.
RESERVED_FIELDS = ("sub", "createdAt", "updatedAt", "_id")

Clock = Callable[[], datetime]


class SnapshotStore(Protocol):
    """Operations the API needs from snapshot storage."""

    def list_snapshots(self, sub: str) -> list[dict]:
        ...

    def upsert_snapshot(self, sub: str, snapshot: Any) -> None:
        ...

    def delete_snapshot(self, sub: str, date: str) -> None:
        ...

    def close(self) -> None:
        ...


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(value: Any) -> Any:
    """Render datetimes as ISO-8601 UTC with millisecond precision."""
    if not isinstance(value, datetime):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def validate_snapshot(snapshot: Any) -> dict:
    """
    Check a client snapshot and return the fields to persist.

    Raises ValidationError unless ``snapshot`` is an object with a non-empty
    string ``date`` and a numeric ``netWorth``. Server-owned keys are dropped.
    """
    if not isinstance(snapshot, dict):
        raise ValidationError("snapshot must be an object")
    try:
        payload = SnapshotPayload.model_validate(snapshot)
    except PydanticValidationError as exc:
        raise ValidationError(str(exc)) from exc
    fields = payload.model_dump()
    for key in RESERVED_FIELDS:
        fields.pop(key, None)
    return fields


def public_record(record: dict) -> dict:
    """Strip owner and storage identifiers and format timestamps."""
    result = {"date": record.get("date")}
    for key, value in record.items():
        if key in ("sub", "_id", "date"):
            continue
        result[key] = format_timestamp(value)
    return result


def sort_by_date(records: list[dict]) -> list[dict]:
    return sorted(records, key=lambda r: str(r.get("date", "")))


class InMemorySnapshotStore:
    """Simple in-memory store for development and tests."""

    def __init__(self, clock: Clock = utcnow):
        self.clock = clock
        self.records: Dict[tuple[str, str], dict] = {}
        self._lock = threading.Lock()

    def list_snapshots(self, sub: str) -> list[dict]:
        with self._lock:
            owned = [
                copy.deepcopy(record)
                for (owner, _), record in self.records.items()
                if owner == sub
            ]
        return sort_by_date([public_record(r) for r in owned])

    def upsert_snapshot(self, sub: str, snapshot: Any) -> None:
        fields = validate_snapshot(snapshot)
        now = self.clock()
        key = (sub, fields["date"])
        with self._lock:
            existing = self.records.get(key)
            created_at = existing["createdAt"] if existing else now
            self.records[key] = {
                **copy.deepcopy(fields),
                "createdAt": created_at,
                "updatedAt": now,
            }

    def delete_snapshot(self, sub: str, date: str) -> None:
        with self._lock:
            self.records.pop((sub, date), None)

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.records.clear()

    def close(self) -> None:
        pass


class JsonFileSnapshotStore:
    """
    Stores every user's snapshots in one JSON document:

        {"users": {"<sub>": {"snapshots": [...]}}}

    Each read-modify-write cycle holds the store lock, and the file is replaced
    atomically so readers never observe a partial write. Only one process may
    own the file.
    """

    def __init__(self, path: str | os.PathLike, clock: Clock = utcnow):
        self.path = Path(path)
        self.clock = clock
        self._lock = threading.Lock()
        with self._lock:
            self._ensure_file()

    def _ensure_file(self) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            if not self.path.exists():
                self._write_all({"users": {}})
                logger.info("Created snapshot data file %s", self.path)
        except OSError as exc:
            raise StorageUnavailable(f"cannot create {self.path}: {exc}") from exc

    def _read_all(self) -> dict:
        self._ensure_file()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except OSError as exc:
            raise StorageUnavailable(f"cannot read {self.path}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StorageUnavailable(f"{self.path} is not valid JSON: {exc}") from exc
        if not isinstance(data, dict) or not isinstance(data.get("users", {}), dict):
            raise StorageUnavailable(f"{self.path} has an unexpected layout")
        data.setdefault("users", {})
        return data

    def _write_all(self, data: dict) -> None:
        tmp_path = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_path = tmp.name
                json.dump(data, tmp, indent=2, allow_nan=False)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_path, self.path)
        except (OSError, ValueError) as exc:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise StorageUnavailable(f"cannot write {self.path}: {exc}") from exc

    def list_snapshots(self, sub: str) -> list[dict]:
        with self._lock:
            data = self._read_all()
        user = data["users"].get(sub) or {}
        return sort_by_date([public_record(r) for r in user.get("snapshots") or []])

    def upsert_snapshot(self, sub: str, snapshot: Any) -> None:
        fields = validate_snapshot(snapshot)
        date = fields["date"]
        now = format_timestamp(self.clock())
        with self._lock:
            data = self._read_all()
            user = data["users"].setdefault(sub, {})
            existing = user.get("snapshots") or []
            same_date = [r for r in existing if r.get("date") == date]
            created_at = min(
                (r["createdAt"] for r in same_date if r.get("createdAt")),
                default=now,
            )
            kept = [r for r in existing if r.get("date") != date]
            kept.append({**fields, "createdAt": created_at, "updatedAt": now})
            user["snapshots"] = kept
            self._write_all(data)

    def delete_snapshot(self, sub: str, date: str) -> None:
        with self._lock:
            data = self._read_all()
            user = data["users"].get(sub)
            if not user:
                return
            existing = user.get("snapshots") or []
            kept = [r for r in existing if r.get("date") != date]
            if len(kept) == len(existing):
                return
            user["snapshots"] = kept
            self._write_all(data)

    def close(self) -> None:
        pass
