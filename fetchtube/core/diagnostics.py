"""
Diagnostics: tool version detection and system checks.
"""

import logging
import shutil
from pathlib import Path

from fetchtube.core.constants import APP_VERSION, DEFAULT_YTDLP_PATH, DEFAULT_FFPROBE_PATH
from fetchtube.core.security_utils import run_subprocess_capture

logger = logging.getLogger(__name__)


def get_ytdlp_version(ytdlp_path: str = DEFAULT_YTDLP_PATH) -> str:
    """Return yt-dlp version string, or error message."""
    try:
        result = run_subprocess_capture([ytdlp_path, "--version"], timeout=10)
        if result.returncode == 0:
            return result.stdout.strip()
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def get_ffprobe_version(ffprobe_path: str = DEFAULT_FFPROBE_PATH) -> str:
    """Return ffprobe version string, or error message."""
    try:
        result = run_subprocess_capture([ffprobe_path, "-version"], timeout=10)
        if result.returncode == 0:
            return result.stdout.strip().splitlines()[0]
        return f"Error (rc={result.returncode})"
    except FileNotFoundError:
        return "Not installed"
    except Exception as e:
        return f"Error: {e}"


def check_output_root(output_root: Path) -> dict:
    """Report whether the download directory exists and how much space is left."""
    info = {"path": str(output_root), "exists": output_root.is_dir(), "free_bytes": None}
    if info["exists"]:
        info["free_bytes"] = shutil.disk_usage(output_root).free
    return info


def get_diagnostics(config, active_jobs: int = 0, total_jobs: int = 0) -> dict:
    """Gather all diagnostic information."""
    return {
        "version": APP_VERSION,
        "ytdlp_version": get_ytdlp_version(config.ytdlp_path),
        "ffprobe_version": get_ffprobe_version(config.ffprobe_path),
        "output_root": check_output_root(config.output_root),
        "jobs": {"active": active_jobs, "total": total_jobs},
    }
