#!/usr/bin/env python3
"""
Unit tests for the in-memory job registry and duplicate detection.
"""

import sys
import tempfile
import threading
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from fetchtube.core.constants import JobStatus
from fetchtube.core.job_store import JobStore
from fetchtube.core.models import JobRecord
from fetchtube.core.url_parse import find_existing_job


def _record(job_id, video_id="dQw4w9WgXcQ", created_at=1, **kw):
    return JobRecord(job_id=job_id, video_id=video_id,
                     source_url=f"https://youtu.be/{video_id}",
                     quality="720p", created_at=created_at, **kw)


class TestJobStore(unittest.TestCase):

    def setUp(self):
        self.store = JobStore()

    def test_put_and_get(self):
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1"))
        self.assertEqual(self.store.get("dQw4w9WgXcQ_1").video_id, "dQw4w9WgXcQ")
        self.assertIsNone(self.store.get("missing"))
        self.assertIn("dQw4w9WgXcQ_1", self.store)
        self.assertEqual(len(self.store), 1)

    def test_update_returns_new_record(self):
        original = _record("dQw4w9WgXcQ_1")
        self.store.put(original.job_id, original)
        updated = self.store.update(original.job_id, status=JobStatus.DOWNLOADING, progress=40)
        self.assertEqual(updated.progress, 40)
        # Records are immutable snapshots
        self.assertEqual(original.progress, 0)
        self.assertEqual(original.status, JobStatus.QUEUED)

    def test_update_missing_is_noop(self):
        self.assertIsNone(self.store.update("nope_1", progress=5))
        self.assertEqual(len(self.store), 0)

    def test_resolve_order(self):
        self.store.put("dQw4w9WgXcQ_5", _record("dQw4w9WgXcQ_5"))
        self.store.put("playlist_PLAYLIST001_6",
                       _record("playlist_PLAYLIST001_6", video_id="PLAYLIST001"))

        self.assertEqual(self.store.resolve("dQw4w9WgXcQ_5").job_id, "dQw4w9WgXcQ_5")
        # key prefix
        self.assertEqual(self.store.resolve("dQw4w9WgXcQ").job_id, "dQw4w9WgXcQ_5")
        # video_id field (playlist keys do not start with the video id)
        self.assertEqual(self.store.resolve("PLAYLIST001").job_id, "playlist_PLAYLIST001_6")
        self.assertIsNone(self.store.resolve("unknown"))
        self.assertIsNone(self.store.resolve(""))

    def test_prefix_requires_separator(self):
        self.store.put("dQw4w9WgXcQ_5", _record("dQw4w9WgXcQ_5"))
        self.assertIsNone(self.store.find_by_prefix("dQw4w9"))

    def test_delete_by_video_id(self):
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1"))
        self.store.put("dQw4w9WgXcQ_2", _record("dQw4w9WgXcQ_2", created_at=2))
        self.store.put("other000000_3", _record("other000000_3", video_id="other000000"))

        self.assertEqual(self.store.delete_by_video_id("dQw4w9WgXcQ"), 2)
        self.assertEqual([r.job_id for r in self.store.list_all()], ["other000000_3"])
        self.assertEqual(self.store.delete_by_video_id("dQw4w9WgXcQ"), 0)

    def test_concurrent_mutations_are_serialized(self):
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1"))

        def bump():
            for _ in range(500):
                self.store.mutate("dQw4w9WgXcQ_1",
                                  lambda r: r.with_changes(progress=r.progress + 1))

        threads = [threading.Thread(target=bump) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        self.assertEqual(self.store.get("dQw4w9WgXcQ_1").progress, 2000)

    def test_list_all_is_snapshot(self):
        self.store.put("a0000000000_1", _record("a0000000000_1", video_id="a0000000000"))
        listing = self.store.list_all()
        self.store.put("b0000000000_2", _record("b0000000000_2", video_id="b0000000000"))
        self.assertEqual(len(listing), 1)


class TestFindExistingJob(unittest.TestCase):

    def setUp(self):
        self.store = JobStore()
        self.tmpdir = tempfile.TemporaryDirectory()
        self.file = Path(self.tmpdir.name) / "clip.mp4"

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_completed_with_file_wins(self):
        self.file.write_bytes(b"x")
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1", status=JobStatus.DOWNLOADING))
        self.store.put("dQw4w9WgXcQ_2", _record("dQw4w9WgXcQ_2", status=JobStatus.COMPLETED,
                                                progress=100, file_path=str(self.file)))
        self.assertEqual(find_existing_job(self.store, "dQw4w9WgXcQ").job_id, "dQw4w9WgXcQ_2")

    def test_completed_without_file_is_ignored(self):
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1", status=JobStatus.COMPLETED,
                                                progress=100, file_path=str(self.file)))
        self.assertIsNone(find_existing_job(self.store, "dQw4w9WgXcQ"))

    def test_active_job_is_reused(self):
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1", status=JobStatus.PROCESSING))
        self.assertEqual(find_existing_job(self.store, "dQw4w9WgXcQ").job_id, "dQw4w9WgXcQ_1")

    def test_errored_job_is_not_reused(self):
        self.store.put("dQw4w9WgXcQ_1", _record("dQw4w9WgXcQ_1", status=JobStatus.ERROR))
        self.assertIsNone(find_existing_job(self.store, "dQw4w9WgXcQ"))


if __name__ == "__main__":
    unittest.main()
