"""
Data models (plain dataclasses) for FetchTube.

JobRecord is immutable: every update builds a new record with
dataclasses.replace, so a reader holding a record never sees it change.
"""

from dataclasses import dataclass, replace
from typing import Optional

from fetchtube.core.constants import JobStatus


@dataclass(frozen=True)
class JobRecord:
    job_id: str                      # <video_id>_<created_at> or playlist_<video_id>_<created_at>
    video_id: str
    source_url: str
    quality: str
    is_playlist: bool = False
    created_at: int = 0              # epoch milliseconds
    status: str = JobStatus.QUEUED
    progress: int = 0
    title: Optional[str] = None
    message: Optional[str] = None
    file_path: Optional[str] = None
    error_code: Optional[str] = None
    attempts: int = 0

    def with_changes(self, **changes) -> "JobRecord":
        return replace(self, **changes)

    def to_status(self) -> dict:
        return {
            'status': self.status,
            'progress': self.progress,
            'message': self.message,
            'title': self.title,
        }

    def to_dict(self) -> dict:
        return {
            'downloadId': self.job_id,
            'videoId': self.video_id,
            'status': self.status,
            'progress': self.progress,
            'title': self.title,
            'message': self.message,
            'filePath': self.file_path,
            'sourceUrl': self.source_url,
            'quality': self.quality,
            'isPlaylist': self.is_playlist,
            'createdAt': self.created_at,
            'errorCode': self.error_code,
            'attempts': self.attempts,
        }


class EventKind:
    PROGRESS = "progress"
    PLAYLIST_ITEM = "playlist_item"
    FORMAT_SELECTED = "format_selected"
    DESTINATION = "destination"
    MERGING = "merging"
    ALREADY_DOWNLOADED = "already_downloaded"
    FATAL = "fatal"


@dataclass(frozen=True)
class ProgressEvent:
    kind: str
    percent: Optional[float] = None
    item_index: Optional[int] = None
    item_count: Optional[int] = None
    detail: Optional[str] = None
    error_code: Optional[str] = None
    message: Optional[str] = None
