"""
Security utilities for FetchTube.
- Filename sanitization
- Path traversal protection for download destinations
- Safe subprocess execution (argument arrays only)
"""

import re
import shutil
import subprocess
import pathlib
import logging

from fetchtube.core.constants import UNSAFE_FILENAME_CHARS, MAX_TITLE_LEN

logger = logging.getLogger(__name__)


# ── Filename / path safety ────────────────────────────────────────────

def sanitize_title(title: str) -> str:
    """Sanitize a video title for use in a file or folder name."""
    if not title:
        return ""
    # Replace unsafe characters with underscore
    safe = re.sub(UNSAFE_FILENAME_CHARS, '_', title.strip())
    # Remove path traversal sequences
    safe = safe.replace('..', '')
    # Collapse whitespace
    safe = re.sub(r'\s+', ' ', safe).strip()
    # Truncate
    if len(safe) > MAX_TITLE_LEN:
        safe = safe[:MAX_TITLE_LEN].rstrip()
    # Remove leading/trailing dots (hidden files, Windows trailing dot)
    safe = safe.strip('. ')
    return safe if safe else ""


def safe_destination(output_root: pathlib.Path, title: str, video_id: str,
                     created_at: int, suffix: str = "") -> pathlib.Path:
    """
    Build <output_root>/<title>_<video_id>_<created_at><suffix>.
    The title, video id and timestamp together keep concurrent jobs
    on disjoint paths. realpath(result) must stay under output_root;
    otherwise falls back to 'video_<video_id>_<created_at>'.
    """
    sanitized = sanitize_title(title) or "video"
    name = f"{sanitized}_{video_id}_{created_at}{suffix}"

    candidate = output_root / name
    real_root = output_root.resolve(strict=False)
    real_candidate = candidate.resolve(strict=False)
    if real_candidate.parent != real_root:
        logger.warning("Rejected unsafe destination %s", candidate)
        candidate = output_root / f"video_{sanitize_title(video_id)}_{created_at}{suffix}"

    return candidate


def artifact_exists(file_path: str | None) -> bool:
    return bool(file_path) and pathlib.Path(file_path).exists()


def remove_artifact(file_path: str | None) -> bool:
    """
    Delete a downloaded file, or a playlist directory recursively.
    Failures are logged, never raised. Returns True if something was removed.
    """
    if not file_path:
        return False
    path = pathlib.Path(file_path)
    if not path.exists():
        return False
    try:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink()
        logger.info("Deleted artifact: %s", path)
        return True
    except OSError as e:
        logger.error("Failed to delete artifact %s: %s", path, e)
        return False


def remove_partial_outputs(file_path: str | None) -> int:
    """
    Delete yt-dlp leftovers next to a single-video destination
    (<stem>.f137.mp4, <stem>.f140.m4a, <stem>.mp4.ytdl ...).
    Returns the number of files removed.
    """
    if not file_path:
        return 0
    path = pathlib.Path(file_path)
    if not path.parent.is_dir():
        return 0
    prefix = path.with_suffix("").name + "."
    removed = 0
    for candidate in path.parent.iterdir():
        if candidate.is_file() and candidate.name.startswith(prefix):
            try:
                candidate.unlink()
                removed += 1
                logger.info("Deleted partial output: %s", candidate)
            except OSError as e:
                logger.error("Failed to delete partial output %s: %s", candidate, e)
    return removed


# ── Subprocess safety ─────────────────────────────────────────────────

def _check_args(args):
    if not isinstance(args, (list, tuple)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")


def run_subprocess(args: list[str], **kwargs) -> subprocess.CompletedProcess:
    """
    Execute a subprocess using argument arrays only.
    shell=True is explicitly forbidden.
    """
    _check_args(args)

    # Force shell=False: drop any caller-supplied value, then set it once
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.run(args, shell=False, **kwargs)


def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run subprocess and capture stdout/stderr."""
    return run_subprocess(
        args,
        capture_output=True,
        text=True,
        encoding='utf-8',
        errors='replace',
        timeout=timeout,
        **kwargs,
    )


def popen_streaming(args: list[str], **kwargs) -> subprocess.Popen:
    """Start a long-running subprocess with binary stdout/stderr pipes."""
    _check_args(args)
    kwargs.pop('shell', None)

    logger.debug("Starting subprocess: %s", ' '.join(str(a) for a in args))
    return subprocess.Popen(
        args,
        shell=False,
        stdin=subprocess.DEVNULL,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        **kwargs,
    )
