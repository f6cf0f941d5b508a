"""
In-memory job registry for FetchTube.

Readers never take a lock: records are immutable and the mapping is
only ever read through single dict operations or a snapshot copy.
Writers take a per-job lock, so updates to unrelated jobs never wait
on each other.
"""

import logging
import threading
from typing import Callable, Optional

from fetchtube.core.constants import JOB_ID_SEPARATOR
from fetchtube.core.models import JobRecord

logger = logging.getLogger(__name__)


class JobStore:
    """Concurrent key-value registry of JobRecords keyed by job id."""

    def __init__(self):
        self._records: dict[str, JobRecord] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    # ── Helpers ───────────────────────────────────────────────────────

    def _lock_for(self, job_id: str) -> threading.Lock:
        lock = self._locks.get(job_id)
        if lock is None:
            with self._locks_guard:
                lock = self._locks.setdefault(job_id, threading.Lock())
        return lock

    def _snapshot(self) -> list[tuple[str, JobRecord]]:
        return list(self._records.copy().items())

    # ── Writes ────────────────────────────────────────────────────────

    def put(self, job_id: str, record: JobRecord):
        with self._lock_for(job_id):
            self._records[job_id] = record

    def mutate(self, job_id: str,
               fn: Callable[[JobRecord], JobRecord]) -> Optional[JobRecord]:
        """
        Atomically replace a record with fn(record).
        Returns the new record, or None if the job no longer exists.
        """
        with self._lock_for(job_id):
            current = self._records.get(job_id)
            if current is None:
                return None
            updated = fn(current)
            self._records[job_id] = updated
            return updated

    def update(self, job_id: str, **changes) -> Optional[JobRecord]:
        return self.mutate(job_id, lambda record: record.with_changes(**changes))

    def delete(self, job_id: str) -> bool:
        with self._lock_for(job_id):
            removed = self._records.pop(job_id, None)
        with self._locks_guard:
            self._locks.pop(job_id, None)
        return removed is not None

    def delete_by_video_id(self, video_id: str) -> int:
        """Remove every record sharing video_id. Returns the number removed."""
        doomed = [job_id for job_id, record in self._snapshot()
                  if record.video_id == video_id]
        removed = sum(1 for job_id in doomed if self.delete(job_id))
        logger.info("Removed %d job record(s) for video %s", removed, video_id)
        return removed

    # ── Reads ─────────────────────────────────────────────────────────

    def get(self, job_id: str) -> Optional[JobRecord]:
        return self._records.get(job_id)

    def find_by_prefix(self, partial_id: str) -> Optional[JobRecord]:
        prefix = partial_id + JOB_ID_SEPARATOR
        for job_id, record in self._snapshot():
            if job_id.startswith(prefix):
                return record
        return None

    def find_by_video_id(self, video_id: str) -> Optional[JobRecord]:
        for _, record in self._snapshot():
            if record.video_id == video_id:
                return record
        return None

    def records_for_video(self, video_id: str) -> list[JobRecord]:
        return [record for _, record in self._snapshot()
                if record.video_id == video_id]

    def list_all(self) -> list[JobRecord]:
        return [record for _, record in self._snapshot()]

    def resolve(self, identity: str) -> Optional[JobRecord]:
        """
        Look up a record by full job id, then by video-id prefix of the
        key, then by the record's video_id field. First match wins.
        """
        if not identity:
            return None
        record = self.get(identity)
        if record is not None:
            return record
        record = self.find_by_prefix(identity)
        if record is not None:
            logger.debug("Resolved %s by job id prefix -> %s", identity, record.job_id)
            return record
        record = self.find_by_video_id(identity)
        if record is not None:
            logger.debug("Resolved %s by video id -> %s", identity, record.job_id)
            return record
        logger.debug("No job found for %s", identity)
        return None

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._records
