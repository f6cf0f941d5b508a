"""
YouTube URL parsing and job identity resolution.
"""

import re
import time
from urllib.parse import urlparse, parse_qs
from typing import Optional

from fetchtube.core.constants import (
    YOUTUBE_URL_PATTERNS, SYNTHETIC_VIDEO_PREFIX, JOB_ID_SEPARATOR,
    PLAYLIST_JOB_PREFIX, JobStatus, ACTIVE_STATUSES, COMPLETE_PROGRESS,
)
from fetchtube.core.error_codes import JobError, ErrorCode
from fetchtube.core.job_store import JobStore
from fetchtube.core.models import JobRecord
from fetchtube.core.security_utils import artifact_exists

_VIDEO_ID_RE = re.compile(r'^[a-zA-Z0-9_-]{11}$')


def now_ms() -> int:
    return int(time.time() * 1000)


def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a YouTube URL.
    Returns None if the URL is not a recognised YouTube URL.
    """
    url = (url or "").strip()
    if not url:
        return None

    # Try regex patterns
    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.search(pattern, url)
        if m:
            return m.group(1)

    # Fallback: parse query string for 'v' parameter
    parsed = urlparse(url)
    if 'youtube.com' in parsed.netloc or 'youtu.be' in parsed.netloc:
        v = parse_qs(parsed.query).get('v', [None])[0]
        if v and _VIDEO_ID_RE.match(v):
            return v

    return None


def resolve_video_id(url: str) -> str:
    """
    Stable identity for the content behind a URL.
    Unparseable URLs get a timestamp placeholder so the pipeline never
    blocks, at the cost of deduplication for that URL.
    """
    video_id = extract_video_id(url)
    if video_id:
        return video_id
    return f"{SYNTHETIC_VIDEO_PREFIX}{JOB_ID_SEPARATOR}{now_ms()}"


def validate_request_url(url: str | None) -> str:
    """Reject empty and non-http(s) URLs. Returns the stripped URL."""
    url = (url or "").strip()
    if not url:
        raise JobError(ErrorCode.INVALID_URL, "YouTube URL is required")
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise JobError(ErrorCode.INVALID_URL, f"Not a valid http(s) URL: {url}")
    return url


def build_job_id(video_id: str, created_at: int, is_playlist: bool = False) -> str:
    parts = [video_id, str(created_at)]
    if is_playlist:
        parts.insert(0, PLAYLIST_JOB_PREFIX)
    return JOB_ID_SEPARATOR.join(parts)


def find_existing_job(store: JobStore, video_id: str) -> Optional[JobRecord]:
    """
    Reuse work for video_id: a completed job whose artifact is on disk
    wins, then any in-flight job. None means the caller must create one.
    """
    records = store.records_for_video(video_id)

    for record in records:
        if (record.status == JobStatus.COMPLETED
                and record.progress == COMPLETE_PROGRESS
                and artifact_exists(record.file_path)):
            return record

    for record in records:
        if record.status in ACTIVE_STATUSES:
            return record

    return None
