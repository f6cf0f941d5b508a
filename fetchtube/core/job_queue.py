"""
Download Manager and per-job Worker.
Each accepted download runs on its own worker thread; pollers read the
shared JobStore at any time.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from fetchtube.core.config import AppConfig
from fetchtube.core.constants import (
    JobStatus, ErrorCode, ACTIVE_STATUSES, COMPLETE_PROGRESS,
    DEFAULT_QUALITY, VIDEO_EXTENSIONS, MERGE_OUTPUT_FORMAT, TERMINATE_GRACE_SEC,
)
from fetchtube.core.error_codes import JobError, NotFoundError
from fetchtube.core.formats import select_format
from fetchtube.core.job_store import JobStore
from fetchtube.core.media_probe import (
    fetch_title, list_formats, probe_resolution, quality_message,
)
from fetchtube.core.models import JobRecord, ProgressEvent, EventKind
from fetchtube.core.progress_parser import ProgressParser, playlist_overall_progress
from fetchtube.core.security_utils import (
    sanitize_title, safe_destination, artifact_exists, remove_artifact, remove_partial_outputs,
)
from fetchtube.core.supervisor import Supervisor, DownloadProcess
from fetchtube.core.url_parse import (
    validate_request_url, resolve_video_id, find_existing_job, build_job_id, now_ms,
)

logger = logging.getLogger(__name__)


class JobWorker:
    """
    Drives one job from processing to a terminal state: title lookup,
    up to max_attempts yt-dlp launches with exponential backoff, then the
    post-download quality check.
    """

    def __init__(self, manager: "DownloadManager", job_id: str):
        self.manager = manager
        self.store = manager.store
        self.job_id = job_id
        self._cancel = threading.Event()
        self._process_lock = threading.Lock()
        self._process: Optional[DownloadProcess] = None
        self._fatal: Optional[ProgressEvent] = None
        self._item_index: Optional[int] = None
        self._item_count: Optional[int] = None
        self._thread = threading.Thread(target=self._run, name=f"job-{job_id}", daemon=True)

    # ── Thread control ────────────────────────────────────────────────

    def start(self):
        self._thread.start()

    def join(self, timeout: float | None = None) -> bool:
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self):
        """Stop the job: wake any backoff wait and terminate the subprocess."""
        self._cancel.set()
        with self._process_lock:
            process = self._process
        if process is not None:
            logger.info("Terminating yt-dlp pid %s for job %s", process.pid, self.job_id)
            process.terminate()

    def _backoff(self, delay: float) -> bool:
        """Wait between attempts. Returns True if the job was cancelled meanwhile."""
        return self._cancel.wait(delay)

    # ── Pipeline ──────────────────────────────────────────────────────

    def _run(self):
        try:
            record = self.store.get(self.job_id)
            if record is None:
                return

            title = self._resolve_title(record)
            if self.cancelled:
                return

            destination = self._destination(record, title)
            self.store.update(self.job_id,
                              title=title,
                              file_path=str(destination),
                              message=f"Starting download: {title}")

            artifact = self._download(record, destination)
            if artifact is not None:
                self._complete(record, artifact)

        except JobError as e:
            if not self.cancelled:
                self.manager._fail(self.job_id, e)
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", self.job_id, e, exc_info=True)
            if not self.cancelled:
                self.manager._fail(self.job_id, JobError(ErrorCode.UNEXPECTED, str(e)[:2000],
                                                         retryable=False))
        finally:
            self.manager._unregister(self)

    def _resolve_title(self, record: JobRecord) -> str:
        config = self.manager.config
        raw = fetch_title(record.source_url, record.is_playlist,
                          ytdlp_path=config.ytdlp_path,
                          timeout=config.get('probe_timeout_sec'))
        title = sanitize_title(raw or "")
        if not title:
            prefix = "playlist" if record.is_playlist else "video"
            title = f"{prefix}_{record.video_id}"
        logger.info("Job %s title: %s", self.job_id, title)
        return title

    def _destination(self, record: JobRecord, title: str) -> Path:
        suffix = "" if record.is_playlist else f".{MERGE_OUTPUT_FORMAT}"
        return safe_destination(self.manager.output_root, title, record.video_id,
                                record.created_at, suffix)

    def _download(self, record: JobRecord, destination: Path) -> Optional[Path]:
        """Run attempts until one succeeds. Returns the artifact, or None if cancelled."""
        selector = select_format(record.quality)
        max_attempts = self.manager.max_attempts
        base_delay = self.manager.retry_backoff_sec

        for attempt in range(1, max_attempts + 1):
            if self.cancelled:
                return None
            self.store.update(self.job_id, attempts=attempt)
            try:
                return self._attempt(record, selector, destination)
            except JobError as e:
                if self.cancelled:
                    return None
                if not e.retryable or attempt >= max_attempts:
                    raise
                delay = base_delay * (2 ** (attempt - 1))
                logger.warning("Job %s attempt %d/%d failed: %s — retrying in %ss",
                               self.job_id, attempt, max_attempts, e.message, delay)
                self.store.update(self.job_id,
                                  message=f"Attempt {attempt}/{max_attempts} failed: "
                                          f"{e.message}. Retrying in {delay:g}s")
                if self._backoff(delay):
                    return None
        return None

    def _attempt(self, record: JobRecord, selector: str, destination: Path) -> Path:
        self._fatal = None
        parser = ProgressParser()

        def on_line(stream: str, line: str):
            for event in parser.consume_line(line):
                self._apply(record, event)

        process = self.manager.supervisor.launch(
            record.source_url, selector, destination, record.is_playlist,
            on_line, quality=record.quality,
        )
        with self._process_lock:
            self._process = process
        if self.cancelled:
            process.terminate()

        try:
            code = process.wait(timeout=self.manager.download_timeout_sec)
        finally:
            with self._process_lock:
                self._process = None

        if self.cancelled:
            raise JobError(ErrorCode.DOWNLOAD_FAILED, "Download cancelled", retryable=False)

        if code == 0:
            return self._locate_artifact(record, destination)

        if self._fatal is not None:
            raise JobError(self._fatal.error_code, self._fatal.message, retryable=False)

        detail = process.last_error_line
        message = f"Download failed with code {code}"
        if detail:
            message = f"{message}: {detail[:300]}"
        raise JobError(ErrorCode.DOWNLOAD_FAILED, message)

    def _locate_artifact(self, record: JobRecord, destination: Path) -> Path:
        if record.is_playlist:
            if destination.is_dir() and _video_files(destination):
                return destination
            raise JobError(ErrorCode.DOWNLOAD_FAILED,
                           "yt-dlp exited cleanly but the playlist folder has no videos")

        if destination.exists():
            return destination
        # Fallback selectors can produce another container
        stem = destination.with_suffix("").name
        if destination.parent.is_dir():
            for candidate in sorted(destination.parent.iterdir()):
                if candidate.is_file() and candidate.stem == stem:
                    return candidate
        raise JobError(ErrorCode.DOWNLOAD_FAILED,
                       "yt-dlp exited cleanly but no output file was found")

    # ── Event application ─────────────────────────────────────────────

    def _apply(self, record: JobRecord, event: ProgressEvent):
        if event.kind == EventKind.FATAL:
            if self._fatal is None:
                self._fatal = event
                logger.warning("Job %s: %s (%s)", self.job_id, event.message, event.detail)
            self._set_message(event.message)
            return

        if event.kind == EventKind.PLAYLIST_ITEM:
            self._item_index, self._item_count = event.item_index, event.item_count
            self._advance(playlist_overall_progress(self._item_index, self._item_count, 0.0),
                          f"Downloading video {self._item_index}/{self._item_count}")
            return

        if event.kind == EventKind.PROGRESS:
            if record.is_playlist and self._item_count:
                overall = playlist_overall_progress(self._item_index, self._item_count,
                                                    event.percent)
                message = (f"Downloading video {self._item_index}/{self._item_count} "
                           f"({event.percent:.0f}%)")
            else:
                overall = int(event.percent)
                message = f"Downloading: {event.percent:.1f}%"
            self._advance(overall, message)
            return

        if event.kind == EventKind.DESTINATION:
            logger.debug("Job %s writing %s", self.job_id, event.detail)
            return

        if event.kind == EventKind.FORMAT_SELECTED:
            logger.info("Job %s selected format %s", self.job_id, event.detail)

        if event.message:
            self._set_message(event.message)

    def _advance(self, progress: int, message: str):
        """processing -> downloading on first progress; progress never goes backwards."""
        def fn(current: JobRecord) -> JobRecord:
            if current.status not in ACTIVE_STATUSES:
                return current
            return current.with_changes(
                status=JobStatus.DOWNLOADING,
                progress=max(current.progress, progress),
                message=message,
            )
        self.store.mutate(self.job_id, fn)

    def _set_message(self, message: str):
        def fn(current: JobRecord) -> JobRecord:
            if current.status not in ACTIVE_STATUSES:
                return current
            return current.with_changes(message=message)
        self.store.mutate(self.job_id, fn)

    # ── Completion ────────────────────────────────────────────────────

    def _complete(self, record: JobRecord, artifact: Path):
        if record.is_playlist:
            count = len(_video_files(artifact))
            message = f"Playlist download completed: {count} videos"
        else:
            actual = probe_resolution(artifact, ffprobe_path=self.manager.config.ffprobe_path,
                                      timeout=self.manager.config.get('probe_timeout_sec'))
            message = quality_message(record.quality, actual)
            if record.quality != "best" and actual not in ("unknown", record.quality):
                logger.info("Job %s quality mismatch: requested %s, got %s",
                            self.job_id, record.quality, actual)

        if self.cancelled:
            return
        self.store.update(self.job_id,
                          status=JobStatus.COMPLETED,
                          progress=COMPLETE_PROGRESS,
                          file_path=str(artifact),
                          message=message,
                          error_code=None)
        logger.info("Job %s completed: %s", self.job_id, artifact)


def _video_files(directory: Path) -> list[Path]:
    return sorted(
        p for p in directory.iterdir()
        if p.is_file() and p.suffix.lower() in VIDEO_EXTENSIONS
    )


class DownloadManager:
    """
    Owns the job registry and the worker threads.
    The transport layer calls into this; nothing here is process-global.
    """

    def __init__(self, store: JobStore | None = None, config: AppConfig | None = None,
                 supervisor: Supervisor | None = None):
        self.store = store if store is not None else JobStore()
        self.config = config or AppConfig()
        self.supervisor = supervisor or Supervisor(self.config.ytdlp_path)
        self._workers: dict[str, JobWorker] = {}
        self._workers_lock = threading.Lock()
        self._video_locks: dict[str, threading.Lock] = {}
        self._video_locks_guard = threading.Lock()

    # ── Config helpers ────────────────────────────────────────────────

    @property
    def output_root(self) -> Path:
        return self.config.output_root

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    @property
    def retry_backoff_sec(self) -> float:
        return self.config.retry_backoff_sec

    @property
    def download_timeout_sec(self) -> int:
        return self.config.download_timeout_sec

    @property
    def default_quality(self) -> str:
        return self.config.get('default_quality', DEFAULT_QUALITY)

    # ── Worker bookkeeping ────────────────────────────────────────────

    def _video_lock(self, video_id: str) -> threading.Lock:
        with self._video_locks_guard:
            return self._video_locks.setdefault(video_id, threading.Lock())

    def _unregister(self, worker: JobWorker):
        with self._workers_lock:
            if self._workers.get(worker.job_id) is worker:
                del self._workers[worker.job_id]

    def _cancel_worker(self, job_id: str):
        with self._workers_lock:
            worker = self._workers.get(job_id)
        if worker is not None:
            worker.cancel()
            if not worker.join(timeout=TERMINATE_GRACE_SEC * 2):
                logger.warning("Worker for job %s did not stop in time", job_id)

    def active_job_ids(self) -> list[str]:
        with self._workers_lock:
            return list(self._workers)

    def wait(self, job_id: str, timeout: float | None = None) -> bool:
        """Block until the job's worker has finished. True if it has."""
        with self._workers_lock:
            worker = self._workers.get(job_id)
        return worker.join(timeout) if worker is not None else True

    def shutdown(self):
        """Cancel every running job (server shutdown)."""
        for job_id in self.active_job_ids():
            self._cancel_worker(job_id)

    def _fail(self, job_id: str, error: JobError):
        logger.error("Job %s failed [%s]: %s", job_id, error.code, error.message)
        self.store.update(job_id,
                          status=JobStatus.ERROR,
                          message=error.message[:2000],
                          error_code=error.code)

    # ── Submission ────────────────────────────────────────────────────

    def submit(self, url: str | None, quality: str | None = None,
               playlist: bool = False) -> str:
        """
        Accept a download request and return its job id immediately.
        A completed or in-flight job for the same video is reused.
        """
        url = validate_request_url(url)
        quality = (quality or self.default_quality).strip().lower()
        video_id = resolve_video_id(url)

        with self._video_lock(video_id):
            existing = find_existing_job(self.store, video_id)
            if existing is not None:
                logger.info("Reusing job %s (%s) for %s", existing.job_id, existing.status, url)
                return existing.job_id

            created_at = now_ms()
            job_id = build_job_id(video_id, created_at, playlist)
            while job_id in self.store:
                created_at += 1
                job_id = build_job_id(video_id, created_at, playlist)

            self.store.put(job_id, JobRecord(
                job_id=job_id,
                video_id=video_id,
                source_url=url,
                quality=quality,
                is_playlist=bool(playlist),
                created_at=created_at,
                message="Queued",
            ))
            self.store.update(job_id, status=JobStatus.PROCESSING,
                              message="Getting video information")

            worker = JobWorker(self, job_id)
            with self._workers_lock:
                self._workers[job_id] = worker
            worker.start()

        logger.info("Accepted job %s: %s (quality=%s, playlist=%s)",
                    job_id, url, quality, playlist)
        return job_id

    def redownload(self, identity: str) -> str:
        """Re-submit a job's source URL, e.g. after its artifact disappeared."""
        record = self.get(identity)
        if record.status in ACTIVE_STATUSES:
            return record.job_id
        return self.submit(record.source_url, record.quality, record.is_playlist)

    # ── Reads (with read-repair) ──────────────────────────────────────

    def _repair(self, record: JobRecord) -> JobRecord:
        """A completed job whose artifact vanished goes back to queued at 0%."""
        if record.status != JobStatus.COMPLETED or artifact_exists(record.file_path):
            return record

        def fn(current: JobRecord) -> JobRecord:
            if current.status != JobStatus.COMPLETED or artifact_exists(current.file_path):
                return current
            return current.with_changes(status=JobStatus.QUEUED, progress=0,
                                        message="File needs to be re-downloaded")

        logger.info("Artifact missing for job %s (%s) — marking for re-download",
                    record.job_id, record.file_path)
        return self.store.mutate(record.job_id, fn) or record

    def find(self, identity: str) -> Optional[JobRecord]:
        record = self.store.resolve(identity)
        return self._repair(record) if record is not None else None

    def get(self, identity: str) -> JobRecord:
        record = self.find(identity)
        if record is None:
            raise NotFoundError(f"Download not found: {identity}", reason="Download not found")
        return record

    def get_status(self, identity: str) -> dict:
        return self.get(identity).to_status()

    def list_all(self) -> list[JobRecord]:
        return [self._repair(record) for record in self.store.list_all()]

    def check(self, identity: str) -> dict:
        record = self.store.resolve(identity)
        if record is None:
            return {'exists': False, 'reason': "Download not found"}
        if record.status != JobStatus.COMPLETED:
            return {'exists': False, 'reason': f"Download status is {record.status}"}
        if not record.file_path:
            return {'exists': False, 'reason': "File path not available"}
        if self._repair(record).status != JobStatus.COMPLETED:
            return {'exists': False, 'reason': "File needs to be re-downloaded"}
        return {'exists': True}

    def artifact_path(self, identity: str) -> Path:
        """Path of a finished single-video download, ready to be served."""
        record = self.get(identity)
        if record.is_playlist:
            raise JobError(ErrorCode.INVALID_REQUEST,
                           "Playlist downloads are served per file via the playlist endpoints")
        if record.status in ACTIVE_STATUSES:
            raise NotFoundError("Download not completed",
                                reason=f"Download status is {record.status}",
                                code=ErrorCode.FILE_MISSING)
        if record.status != JobStatus.COMPLETED:
            raise NotFoundError("File needs to be re-downloaded",
                                reason=f"Download status is {record.status}",
                                code=ErrorCode.FILE_MISSING,
                                should_redownload=True)
        return Path(record.file_path)

    def playlist_files(self, identity: str) -> tuple[JobRecord, list[dict]]:
        record = self.get(identity)
        if not record.is_playlist:
            raise JobError(ErrorCode.NOT_PLAYLIST, "This download is not a playlist")
        directory = Path(record.file_path) if record.file_path else None
        if directory is None or not directory.is_dir():
            raise NotFoundError("Playlist directory not found", code=ErrorCode.FILE_MISSING)

        files = [
            {'index': i, 'name': p.name, 'path': str(p), 'size': p.stat().st_size}
            for i, p in enumerate(_video_files(directory))
        ]
        return record, files

    def playlist_file(self, identity: str, index: int) -> Path:
        _, files = self.playlist_files(identity)
        if not 0 <= index < len(files):
            raise JobError(ErrorCode.INVALID_REQUEST, "Invalid file index")
        path = Path(files[index]['path'])
        if not path.exists():
            raise NotFoundError("File not found", code=ErrorCode.FILE_MISSING)
        return path

    # ── Deletion ──────────────────────────────────────────────────────

    def delete(self, identity: str) -> int:
        """
        Bulk delete by video identity: stop live workers, remove the most
        recent job's artifact, then drop every record for that video.
        """
        record = self.store.resolve(identity)
        video_id = record.video_id if record is not None else identity

        # Held against submit() so no job for this video starts mid-delete
        with self._video_lock(video_id):
            records = self.store.records_for_video(video_id)
            if not records:
                raise NotFoundError(f"Download not found: {identity}", reason="Download not found")

            latest = max(records, key=lambda r: r.created_at)
            for r in records:
                self._cancel_worker(r.job_id)

            remove_artifact(latest.file_path)
            if not latest.is_playlist:
                remove_partial_outputs(latest.file_path)
            removed = self.store.delete_by_video_id(video_id)
        logger.info("Deleted %d job(s) for video %s (latest %s)", removed, video_id, latest.job_id)
        return removed

    # ── Format listing ────────────────────────────────────────────────

    def list_formats(self, url: str | None) -> list[str]:
        url = validate_request_url(url)
        return list_formats(url, ytdlp_path=self.config.ytdlp_path,
                            timeout=self.config.get('format_list_timeout_sec'))
