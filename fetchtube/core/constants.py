"""
Shared constants for FetchTube.
Single source of truth — imported by every other module.
"""

import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "FetchTube"
APP_DISPLAY_NAME = "FetchTube Download Server"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_SUPPORT_DIR = HOME / ".fetchtube"
DEFAULT_OUTPUT_ROOT = APP_SUPPORT_DIR / "downloads"
DEFAULT_LOG_DIR = APP_SUPPORT_DIR / "logs"
CONFIG_PATH = APP_SUPPORT_DIR / "config.json"
CONFIG_ENV_VAR = "FETCHTUBE_CONFIG"

# ── External tools ───────────────────────────────────────────────────
DEFAULT_YTDLP_PATH = "yt-dlp"
DEFAULT_FFPROBE_PATH = "ffprobe"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus:
    QUEUED = "queued"
    PROCESSING = "processing"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    ERROR = "error"

ACTIVE_STATUSES = (JobStatus.PROCESSING, JobStatus.DOWNLOADING)

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Request / lookup
    INVALID_URL = "ERR_INVALID_URL"
    INVALID_REQUEST = "ERR_INVALID_REQUEST"
    NOT_FOUND = "ERR_NOT_FOUND"
    FILE_MISSING = "ERR_FILE_MISSING"
    NOT_PLAYLIST = "ERR_NOT_PLAYLIST"

    # Content availability (never retried)
    VIDEO_UNAVAILABLE = "ERR_VIDEO_UNAVAILABLE"
    AGE_RESTRICTED = "ERR_AGE_RESTRICTED"
    GEO_BLOCKED = "ERR_GEO_BLOCKED"
    VIDEO_REMOVED = "ERR_VIDEO_REMOVED"

    # Retryable
    DOWNLOAD_FAILED = "ERR_DOWNLOAD_FAILED"
    DOWNLOAD_TIMEOUT = "ERR_DOWNLOAD_TIMEOUT"

    # Tooling
    TOOL_MISSING = "ERR_TOOL_MISSING"
    FORMAT_LIST_FAILED = "ERR_FORMAT_LIST_FAILED"
    UNEXPECTED = "ERR_UNEXPECTED"

RETRYABLE_ERRORS = {
    ErrorCode.DOWNLOAD_FAILED,
    ErrorCode.DOWNLOAD_TIMEOUT,
}

CONTENT_ERRORS = {
    ErrorCode.VIDEO_UNAVAILABLE,
    ErrorCode.AGE_RESTRICTED,
    ErrorCode.GEO_BLOCKED,
    ErrorCode.VIDEO_REMOVED,
}

# ── Download pipeline defaults ────────────────────────────────────────
DOWNLOAD_TIMEOUT_SEC = 600
MAX_ATTEMPTS = 3
RETRY_BACKOFF_SEC = 5
PROBE_TIMEOUT_SEC = 60
FORMAT_LIST_TIMEOUT_SEC = 60
TERMINATE_GRACE_SEC = 5

DEFAULT_QUALITY = "1080p"
MERGE_OUTPUT_FORMAT = "mp4"
VIDEO_EXTENSIONS = (".mp4",)

# Progress is pinned below 100 until the controller verifies a clean exit
MAX_RUNNING_PROGRESS = 99
COMPLETE_PROGRESS = 100

# ── Quality tiers → yt-dlp format selectors ───────────────────────────
QUALITY_FORMATS = {
    "1080p": "bestvideo[height=1080][ext=mp4]+bestaudio[ext=m4a]/137+251/137+140",
    "720p": "bestvideo[height=720][ext=mp4]+bestaudio[ext=m4a]/22/136+140",
    "540p": "bestvideo[height=540][ext=mp4]+bestaudio[ext=m4a]",
    "480p": "bestvideo[height=480][ext=mp4]+bestaudio[ext=m4a]/135+140",
    "360p": "bestvideo[height=360][ext=mp4]+bestaudio[ext=m4a]/18",
}
BEST_FORMAT = "bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best"
QUALITY_TIERS = tuple(QUALITY_FORMATS) + ("best",)

# ── Identity ──────────────────────────────────────────────────────────
JOB_ID_SEPARATOR = "_"
PLAYLIST_JOB_PREFIX = "playlist"
SYNTHETIC_VIDEO_PREFIX = "video"

YOUTUBE_URL_PATTERNS = [
    r'(?:https?://)?(?:www\.)?youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?youtu\.be/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube(?:-nocookie)?\.com/embed/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/v/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?(?:www\.)?youtube\.com/shorts/([a-zA-Z0-9_-]{11})',
    r'(?:https?://)?m\.youtube\.com/watch\?(?:.*&)?v=([a-zA-Z0-9_-]{11})',
]

# Characters forbidden in file names (Windows-safe superset)
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_TITLE_LEN = 150
