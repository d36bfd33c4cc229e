import json
import os
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone

from tracker.db import SqlSnapshotStore
from tracker.errors import StorageUnavailable, ValidationError
from tracker.store import (
    InMemorySnapshotStore,
    JsonFileSnapshotStore,
    format_timestamp,
    validate_snapshot,
)


class FakeClock:
    """Advances one second per call so createdAt and updatedAt differ."""

    def __init__(self):
        self.current = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class SnapshotStoreContract:
    """Behaviour every store must share. Subclasses provide make_store()."""

    def make_store(self, clock=None):
        raise NotImplementedError

    def setUp(self):
        self.clock = FakeClock()
        self.store = self.make_store(self.clock)

    def test_empty_collection(self):
        self.assertEqual(self.store.list_snapshots("nobody"), [])

    def test_list_sorted_by_date(self):
        for date in ["2024-03-01", "2024-01-01", "2024-02-01"]:
            self.store.upsert_snapshot("user-a", {"date": date, "netWorth": 1})
        dates = [s["date"] for s in self.store.list_snapshots("user-a")]
        self.assertEqual(dates, ["2024-01-01", "2024-02-01", "2024-03-01"])

    def test_subjects_are_isolated(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        self.store.upsert_snapshot("user-b", {"date": "2024-01-01", "netWorth": 2})
        self.store.upsert_snapshot("user-b", {"date": "2024-05-01", "netWorth": 3})

        records = self.store.list_snapshots("user-a")
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["netWorth"], 1)

    def test_upsert_replaces_and_keeps_created_at(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 100})
        first = self.store.list_snapshots("user-a")[0]
        for value in (200, 300.5):
            self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": value})

        records = self.store.list_snapshots("user-a")
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["netWorth"], 300.5)
        self.assertEqual(records[0]["createdAt"], first["createdAt"])
        self.assertGreater(records[0]["updatedAt"], first["updatedAt"])

    def test_upsert_replaces_extra_fields(self):
        self.store.upsert_snapshot(
            "user-a", {"date": "2024-01-01", "netWorth": 10, "cash": 5, "note": "x"}
        )
        self.store.upsert_snapshot(
            "user-a", {"date": "2024-01-01", "netWorth": 20, "stocks": 15}
        )
        record = self.store.list_snapshots("user-a")[0]
        self.assertEqual(record["stocks"], 15)
        self.assertNotIn("cash", record)
        self.assertNotIn("note", record)

    def test_records_hide_owner_and_ids(self):
        self.store.upsert_snapshot(
            "user-a", {"date": "2024-01-01", "netWorth": 1, "sub": "user-b", "_id": "x"}
        )
        record = self.store.list_snapshots("user-a")[0]
        self.assertNotIn("sub", record)
        self.assertNotIn("_id", record)
        self.assertEqual(
            set(record), {"date", "netWorth", "createdAt", "updatedAt"}
        )
        self.assertEqual(self.store.list_snapshots("user-b"), [])

    def test_timestamps_are_iso_strings(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        record = self.store.list_snapshots("user-a")[0]
        self.assertEqual(record["createdAt"], "2024-01-01T12:00:01.000Z")
        self.assertEqual(record["updatedAt"], record["createdAt"])

    def test_client_timestamps_are_ignored(self):
        self.store.upsert_snapshot(
            "user-a",
            {"date": "2024-01-01", "netWorth": 1, "createdAt": "1999-01-01T00:00:00.000Z"},
        )
        record = self.store.list_snapshots("user-a")[0]
        self.assertEqual(record["createdAt"], "2024-01-01T12:00:01.000Z")

    def test_delete_is_idempotent(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        self.store.upsert_snapshot("user-a", {"date": "2024-02-01", "netWorth": 2})

        self.store.delete_snapshot("user-a", "2024-01-01")
        self.store.delete_snapshot("user-a", "2024-01-01")

        dates = [s["date"] for s in self.store.list_snapshots("user-a")]
        self.assertEqual(dates, ["2024-02-01"])

    def test_delete_missing_is_noop(self):
        self.store.delete_snapshot("user-a", "2030-01-01")
        self.assertEqual(self.store.list_snapshots("user-a"), [])

    def test_delete_only_touches_owner(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        self.store.delete_snapshot("user-b", "2024-01-01")
        self.assertEqual(len(self.store.list_snapshots("user-a")), 1)

    def test_invalid_upsert_leaves_storage_unchanged(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        before = self.store.list_snapshots("user-a")

        with self.assertRaises(ValidationError):
            self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": "abc"})

        self.assertEqual(self.store.list_snapshots("user-a"), before)

    def test_concurrent_upserts_leave_one_record(self):
        barrier = threading.Barrier(2)
        errors = []

        def write(value):
            try:
                barrier.wait()
                self.store.upsert_snapshot(
                    "user-a", {"date": "2024-01-01", "netWorth": value, "tag": str(value)}
                )
            except Exception as exc:  # surfaced by the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=write, args=(v,)) for v in (100, 200)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        records = self.store.list_snapshots("user-a")
        self.assertEqual(len(records), 1)
        self.assertIn(records[0]["netWorth"], (100, 200))
        self.assertEqual(records[0]["tag"], str(records[0]["netWorth"]))


class InMemorySnapshotStoreTests(SnapshotStoreContract, unittest.TestCase):
    def make_store(self, clock=None):
        return InMemorySnapshotStore(clock=clock)

    def test_reset(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        self.store.reset()
        self.assertEqual(self.store.list_snapshots("user-a"), [])


class JsonFileSnapshotStoreTests(SnapshotStoreContract, unittest.TestCase):
    def make_store(self, clock=None):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        self.path = os.path.join(self.tmpdir.name, "nested", "data.json")
        return JsonFileSnapshotStore(self.path, clock=clock)

    def _read_file(self):
        with open(self.path, "r", encoding="utf-8") as f:
            return json.load(f)

    def test_creates_file_with_empty_users(self):
        self.assertEqual(self._read_file(), {"users": {}})

    def test_file_layout(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 5})
        data = self._read_file()
        snapshots = data["users"]["user-a"]["snapshots"]
        self.assertEqual(len(snapshots), 1)
        self.assertEqual(snapshots[0]["date"], "2024-01-01")
        self.assertEqual(snapshots[0]["netWorth"], 5)
        self.assertNotIn("sub", snapshots[0])

    def test_collapses_legacy_duplicates(self):
        legacy = {
            "users": {
                "user-a": {
                    "snapshots": [
                        {"date": "2024-01-01", "netWorth": 1, "createdAt": "2023-06-01T00:00:00.000Z"},
                        {"date": "2024-01-01", "netWorth": 2, "createdAt": "2023-07-01T00:00:00.000Z"},
                        {"date": "2024-02-01", "netWorth": 3},
                    ]
                }
            }
        }
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(legacy, f)

        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 9})

        records = self.store.list_snapshots("user-a")
        self.assertEqual([r["date"] for r in records], ["2024-01-01", "2024-02-01"])
        self.assertEqual(records[0]["netWorth"], 9)
        self.assertEqual(records[0]["createdAt"], "2023-06-01T00:00:00.000Z")

    def test_corrupt_file_is_not_overwritten(self):
        with open(self.path, "w", encoding="utf-8") as f:
            f.write("{not json")

        with self.assertRaises(StorageUnavailable):
            self.store.list_snapshots("user-a")
        with self.assertRaises(StorageUnavailable):
            self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})

        with open(self.path, "r", encoding="utf-8") as f:
            self.assertEqual(f.read(), "{not json")

    def test_persists_across_instances(self):
        self.store.upsert_snapshot("user-a", {"date": "2024-01-01", "netWorth": 1})
        reopened = JsonFileSnapshotStore(self.path)
        self.assertEqual(len(reopened.list_snapshots("user-a")), 1)

    def test_recreates_deleted_file(self):
        os.remove(self.path)
        self.assertEqual(self.store.list_snapshots("user-a"), [])
        self.assertEqual(self._read_file(), {"users": {}})


class SqlSnapshotStoreTests(SnapshotStoreContract, unittest.TestCase):
    """
    Uses a file-backed SQLite database so worker threads share one database.
    """

    def make_store(self, clock=None):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmpdir.cleanup)
        url = f"sqlite+pysqlite:///{os.path.join(self.tmpdir.name, 'snapshots.db')}"
        store = SqlSnapshotStore(url, clock=clock)
        self.addCleanup(store.close)
        return store


class ValidateSnapshotTests(unittest.TestCase):
    def test_accepts_minimal_snapshot(self):
        self.assertEqual(
            validate_snapshot({"date": "2024-01-01", "netWorth": 0}),
            {"date": "2024-01-01", "netWorth": 0},
        )

    def test_keeps_extra_fields(self):
        fields = validate_snapshot(
            {"date": "2024-01-01", "netWorth": 1.5, "cash": 1000, "label": "Q1"}
        )
        self.assertEqual(fields["cash"], 1000)
        self.assertEqual(fields["label"], "Q1")

    def test_drops_server_owned_fields(self):
        fields = validate_snapshot(
            {"date": "2024-01-01", "netWorth": 1, "sub": "x", "updatedAt": "y"}
        )
        self.assertNotIn("sub", fields)
        self.assertNotIn("updatedAt", fields)

    def test_rejects_bad_payloads(self):
        bad = [
            None,
            [],
            "snapshot",
            {},
            {"netWorth": 1},
            {"date": "", "netWorth": 1},
            {"date": "   ", "netWorth": 1},
            {"date": 20240101, "netWorth": 1},
            {"date": "2024-01-01"},
            {"date": "2024-01-01", "netWorth": "abc"},
            {"date": "2024-01-01", "netWorth": "100"},
            {"date": "2024-01-01", "netWorth": None},
            {"date": "2024-01-01", "netWorth": True},
            {"date": "2024-01-01", "netWorth": float("nan")},
        ]
        for payload in bad:
            with self.subTest(payload=payload):
                with self.assertRaises(ValidationError):
                    validate_snapshot(payload)

    def test_rejects_non_finite_numbers_in_any_field(self):
        bad = [
            {"date": "2024-01-01", "netWorth": 1, "cash": float("nan")},
            {"date": "2024-01-01", "netWorth": 1, "cash": float("inf")},
            {"date": "2024-01-01", "netWorth": 1, "accounts": {"bank": float("-inf")}},
            {"date": "2024-01-01", "netWorth": 1, "history": [1.0, [float("nan")]]},
        ]
        for payload in bad:
            with self.subTest(payload=payload):
                with self.assertRaises(ValidationError):
                    validate_snapshot(payload)
        fields = validate_snapshot(
            {"date": "2024-01-01", "netWorth": 1, "accounts": {"bank": 2.5}, "tags": ["a"]}
        )
        self.assertEqual(fields["accounts"], {"bank": 2.5})

    def test_format_timestamp(self):
        naive = datetime(2024, 1, 2, 3, 4, 5, 678000)
        self.assertEqual(format_timestamp(naive), "2024-01-02T03:04:05.678Z")
        self.assertEqual(format_timestamp("as-is"), "as-is")


if __name__ == "__main__":
    unittest.main()
