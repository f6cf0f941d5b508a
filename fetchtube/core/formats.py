"""
Quality tiers and yt-dlp command construction.
"""

import logging
from pathlib import Path

from fetchtube.core.constants import (
    QUALITY_FORMATS, BEST_FORMAT, MERGE_OUTPUT_FORMAT, DEFAULT_YTDLP_PATH,
)

logger = logging.getLogger(__name__)

# Output template fields for files written inside a playlist directory
PLAYLIST_ITEM_TEMPLATE = "%(playlist_index)03d - %(title)s.%(ext)s"


def select_format(quality: str | None) -> str:
    """
    Map a quality tier to a format selector with fallback alternatives.
    Unrecognised tiers get the generic best-effort selector.
    """
    selector = QUALITY_FORMATS.get((quality or "").strip().lower())
    if selector is None:
        if quality and quality != "best":
            logger.info("Unknown quality tier %r — using best available", quality)
        return BEST_FORMAT
    return selector


def tier_height(quality: str | None) -> int | None:
    """'720p' -> 720; None for 'best' and unknown tiers."""
    q = (quality or "").strip().lower()
    if q in QUALITY_FORMATS:
        return int(q.rstrip('p'))
    return None


def format_sort_args(quality: str | None) -> list[str]:
    args = [
        "--format-sort", "ext:mp4:m4a",
        "--format-sort", "vcodec:h264",
    ]
    height = tier_height(quality)
    if height is not None:
        args.extend(["--format-sort", f"res:{height}"])
    return args


def output_template(output_path: Path, is_playlist: bool) -> str:
    """
    Single videos are written next to output_path with the extension the
    merge produces; playlists write numbered items inside the directory.
    """
    if is_playlist:
        return str(output_path / PLAYLIST_ITEM_TEMPLATE)
    return str(output_path.with_suffix("")) + ".%(ext)s"


def build_download_args(url: str, format_selector: str, output_path: Path,
                        is_playlist: bool, quality: str | None = None,
                        ytdlp_path: str = DEFAULT_YTDLP_PATH) -> list[str]:
    args = [
        ytdlp_path,
        "-f", format_selector,
        *format_sort_args(quality),
        "-o", output_template(output_path, is_playlist),
        "--merge-output-format", MERGE_OUTPUT_FORMAT,
        "--no-part",
        "--no-keep-video",
        "--no-mtime",
        "--no-cache-dir",
        "--newline",
        "--windows-filenames",
        "--yes-playlist" if is_playlist else "--no-playlist",
        url,
    ]
    return args


def build_title_args(url: str, is_playlist: bool,
                     ytdlp_path: str = DEFAULT_YTDLP_PATH) -> list[str]:
    if is_playlist:
        return [ytdlp_path, "--flat-playlist", "--playlist-items", "1",
                "--print", "playlist_title", url]
    return [ytdlp_path, "--print", "title", "--no-playlist", url]


def build_list_formats_args(url: str, ytdlp_path: str = DEFAULT_YTDLP_PATH) -> list[str]:
    return [ytdlp_path, "-F", "--no-playlist", url]
