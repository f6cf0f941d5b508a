"""
Short-lived yt-dlp / ffprobe calls: title lookup, format listing and
post-download quality verification.
"""

import logging
import subprocess
from pathlib import Path

from fetchtube.core.constants import (
    ErrorCode, DEFAULT_YTDLP_PATH, DEFAULT_FFPROBE_PATH,
    PROBE_TIMEOUT_SEC, FORMAT_LIST_TIMEOUT_SEC,
)
from fetchtube.core.error_codes import JobError
from fetchtube.core.formats import build_title_args, build_list_formats_args
from fetchtube.core.models import EventKind, ProgressEvent
from fetchtube.core.progress_parser import ProgressParser
from fetchtube.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)


def classify_failure(stderr: str) -> ProgressEvent | None:
    """Return the first content-availability marker found in stderr."""
    parser = ProgressParser()
    for line in (stderr or "").splitlines():
        for event in parser.consume_line(line):
            if event.kind == EventKind.FATAL:
                return event
    return None


def fetch_title(url: str, is_playlist: bool = False,
                ytdlp_path: str = DEFAULT_YTDLP_PATH,
                timeout: int = PROBE_TIMEOUT_SEC) -> str | None:
    """
    Ask yt-dlp for the display title (the playlist title for playlists).
    Content-availability failures raise a non-retryable JobError; any other
    failure returns None so the caller can fall back to a generated name.
    """
    args = build_title_args(url, is_playlist, ytdlp_path)
    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except FileNotFoundError:
        raise JobError(ErrorCode.TOOL_MISSING,
                       f"yt-dlp not found at {ytdlp_path!r}", retryable=False)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning("Title lookup failed for %s: %s", url, e)
        return None

    if result.returncode != 0:
        fatal = classify_failure(result.stderr)
        if fatal is not None:
            raise JobError(fatal.error_code, fatal.message, retryable=False)
        logger.warning("Title lookup rc=%s for %s: %s",
                       result.returncode, url, (result.stderr or "")[:300])
        return None

    lines = [line.strip() for line in (result.stdout or "").splitlines() if line.strip()]
    if not lines or lines[0] == "NA":
        return None
    return lines[0]


def list_formats(url: str, ytdlp_path: str = DEFAULT_YTDLP_PATH,
                 timeout: int = FORMAT_LIST_TIMEOUT_SEC) -> list[str]:
    """Raw format table rows reported by `yt-dlp -F` (header and log lines dropped)."""
    args = build_list_formats_args(url, ytdlp_path)
    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except FileNotFoundError:
        raise JobError(ErrorCode.TOOL_MISSING,
                       f"yt-dlp not found at {ytdlp_path!r}", retryable=False)
    except (subprocess.TimeoutExpired, OSError) as e:
        raise JobError(ErrorCode.FORMAT_LIST_FAILED, f"Format listing failed: {e}",
                       retryable=False)

    if result.returncode != 0:
        fatal = classify_failure(result.stderr)
        if fatal is not None:
            raise JobError(fatal.error_code, fatal.message, retryable=False)
        raise JobError(ErrorCode.FORMAT_LIST_FAILED,
                       f"yt-dlp -F failed (rc={result.returncode}): {(result.stderr or '')[:300]}",
                       retryable=False)

    return [
        line for line in (result.stdout or "").splitlines()
        if line.strip() and not line.startswith('[') and 'format code' not in line
    ]


def probe_resolution(file_path: Path, ffprobe_path: str = DEFAULT_FFPROBE_PATH,
                     timeout: int = PROBE_TIMEOUT_SEC) -> str:
    """Encoded resolution of the first video stream as '<height>p', or 'unknown'."""
    args = [
        ffprobe_path,
        "-v", "error",
        "-select_streams", "v:0",
        "-show_entries", "stream=width,height",
        "-of", "csv=s=x:p=0",
        str(file_path),
    ]
    try:
        result = run_subprocess_capture(args, timeout=timeout)
    except (subprocess.TimeoutExpired, OSError) as e:
        logger.warning("ffprobe failed for %s: %s", file_path, e)
        return "unknown"

    if result.returncode != 0:
        return "unknown"
    try:
        _width, height = result.stdout.strip().splitlines()[0].split('x')[:2]
        return f"{int(height)}p"
    except (IndexError, ValueError):
        return "unknown"


def quality_message(requested: str, actual: str) -> str:
    """Completion message carrying the informational quality check."""
    if requested == "best" or actual == "unknown":
        return f"Download completed ({actual})"
    if actual == requested:
        return f"Download completed ({actual}) - Exact Quality Match"
    return f"Download completed ({actual}) - Quality Mismatch (requested {requested})"
