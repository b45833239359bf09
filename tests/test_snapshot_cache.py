import sqlite3
import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from calky.fingerprint import fingerprint
from calky.models import CachedSnapshot
from calky.snapshot_cache import MemorySnapshotCache, SqliteSnapshotCache

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FingerprintTests(unittest.TestCase):
    def test_weak_sha256_tag(self) -> None:
        self.assertEqual(
            fingerprint(""),
            'W/"e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"',
        )
        self.assertEqual(fingerprint("BEGIN:VCALENDAR"), fingerprint("BEGIN:VCALENDAR"))
        self.assertNotEqual(fingerprint("a\r\n"), fingerprint("a\n"))


class SnapshotFreshnessTests(unittest.TestCase):
    def test_is_fresh_window(self) -> None:
        snapshot = CachedSnapshot(document="x", etag=None, updated_at=NOW)
        window = timedelta(minutes=40)
        self.assertTrue(snapshot.is_fresh(NOW + timedelta(minutes=39), window))
        self.assertFalse(snapshot.is_fresh(NOW + timedelta(minutes=40), window))
        self.assertFalse(snapshot.is_fresh(NOW + timedelta(minutes=41), window))


class CacheBehaviour:
    def make_cache(self):
        raise NotImplementedError

    def test_set_get_overwrite(self) -> None:
        cache = self.make_cache()
        self.assertIsNone(cache.get("owner", "cal"))
        cache.set("owner", "cal", CachedSnapshot(document="one", etag='W/"1"', updated_at=NOW))
        cache.set("owner", "cal", CachedSnapshot(document="two", etag=None, updated_at=NOW + timedelta(minutes=1)))
        snapshot = cache.get("owner", "cal")
        self.assertEqual(snapshot.document, "two")
        self.assertIsNone(snapshot.etag)
        self.assertEqual(snapshot.updated_at, NOW + timedelta(minutes=1))

    def test_entries_are_scoped_by_owner(self) -> None:
        cache = self.make_cache()
        cache.set("alice", "cal", CachedSnapshot(document="a", etag="e1", updated_at=NOW))
        cache.set("alice", "other", CachedSnapshot(document="b", etag="e2", updated_at=NOW))
        cache.set("bob", "cal", CachedSnapshot(document="c", etag="e3", updated_at=NOW))

        cache.delete("alice", "cal")
        self.assertIsNone(cache.get("alice", "cal"))
        self.assertEqual(cache.get("bob", "cal").document, "c")

        cache.clear_owner("alice")
        self.assertIsNone(cache.get("alice", "other"))
        self.assertEqual(cache.get("bob", "cal").document, "c")


class MemorySnapshotCacheTests(CacheBehaviour, unittest.TestCase):
    def make_cache(self):
        return MemorySnapshotCache()


class SqliteSnapshotCacheTests(CacheBehaviour, unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def make_cache(self):
        return SqliteSnapshotCache(str(Path(self.tmp.name) / "nested" / "cache.db"))

    def test_persists_across_instances(self) -> None:
        self.make_cache().set("owner", "cal", CachedSnapshot(document="kept", etag="e", updated_at=NOW))
        snapshot = self.make_cache().get("owner", "cal")
        self.assertEqual(snapshot.document, "kept")
        self.assertEqual(snapshot.updated_at, NOW)

    def test_unreadable_timestamp_is_a_miss(self) -> None:
        cache = self.make_cache()
        cache.set("owner", "cal", CachedSnapshot(document="x", etag="e", updated_at=NOW))
        with sqlite3.connect(cache.db_path) as conn:
            conn.execute("UPDATE ics_snapshots SET updated_at = 'yesterday'")
            conn.commit()
        self.assertIsNone(cache.get("owner", "cal"))


if __name__ == "__main__":
    unittest.main()
