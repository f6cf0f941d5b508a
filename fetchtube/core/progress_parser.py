"""
Incremental parsing of yt-dlp output into ProgressEvents.

Matching is table-driven: each ParseRule pairs a regex with the event
kind it produces, so supporting a new line shape means adding a rule.
"""

import codecs
import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from fetchtube.core.constants import ErrorCode, MAX_RUNNING_PROGRESS
from fetchtube.core.models import EventKind, ProgressEvent

logger = logging.getLogger(__name__)

_ANSI_ESCAPE_RE = re.compile(r"\x1B\[[0-?]*[ -/]*[@-~]")
_LINE_SPLIT_RE = re.compile(r"\r\n|\r|\n")


class LineBuffer:
    """
    Accumulates raw stream chunks and yields complete lines.
    A line is only emitted once its terminator (\\n, \\r or \\r\\n) arrives;
    multi-byte characters split across chunks are decoded correctly.
    """

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, chunk: bytes | str) -> list[str]:
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []
        parts = _LINE_SPLIT_RE.split(self._pending + chunk)
        self._pending = parts.pop()
        return [p for p in parts if p.strip()]

    def flush(self) -> list[str]:
        tail = self._pending + self._decoder.decode(b"", final=True)
        self._pending = ""
        return [tail] if tail.strip() else []


@dataclass(frozen=True)
class ParseRule:
    pattern: re.Pattern
    kind: str
    build: Callable[[re.Match], ProgressEvent]


def _clamp_percent(value: float) -> float:
    return max(0.0, min(float(MAX_RUNNING_PROGRESS), value))


def _progress(m: re.Match) -> ProgressEvent:
    return ProgressEvent(EventKind.PROGRESS, percent=_clamp_percent(float(m.group('pct'))))


def _playlist_item(m: re.Match) -> ProgressEvent:
    return ProgressEvent(EventKind.PLAYLIST_ITEM,
                         item_index=int(m.group('index')),
                         item_count=int(m.group('count')))


def _format_selected(m: re.Match) -> ProgressEvent:
    return ProgressEvent(EventKind.FORMAT_SELECTED, detail=m.group('fmt').strip(),
                         message="Selecting video format")


def _destination(m: re.Match) -> ProgressEvent:
    return ProgressEvent(EventKind.DESTINATION, detail=m.group('path').strip())


def _merging(m: re.Match) -> ProgressEvent:
    return ProgressEvent(EventKind.MERGING, message="Merging video and audio...")


def _already(m: re.Match) -> ProgressEvent:
    return ProgressEvent(EventKind.ALREADY_DOWNLOADED, detail=m.group('path').strip(),
                         message="Video was already downloaded")


def _fatal(code: str, message: str) -> Callable[[re.Match], ProgressEvent]:
    def build(m: re.Match) -> ProgressEvent:
        return ProgressEvent(EventKind.FATAL, error_code=code, message=message,
                             detail=m.string.strip())
    return build


# Fatal rules come first and the more specific "removed" precedes
# "unavailable", since yt-dlp often prints both on one line.
DEFAULT_RULES: tuple[ParseRule, ...] = (
    ParseRule(re.compile(r"^ERROR:.*(?:has been removed|account associated with this video has been terminated)", re.I),
              EventKind.FATAL,
              _fatal(ErrorCode.VIDEO_REMOVED, "This video has been removed by the content owner.")),
    ParseRule(re.compile(r"^ERROR:.*(?:Sign in to confirm your age|age[- ]restricted)", re.I),
              EventKind.FATAL,
              _fatal(ErrorCode.AGE_RESTRICTED, "This video requires age verification. Please try a different video.")),
    ParseRule(re.compile(r"^ERROR:.*(?:available in your country|geo[- ]?restrict)", re.I),
              EventKind.FATAL,
              _fatal(ErrorCode.GEO_BLOCKED, "This video is not available in your country due to regional restrictions.")),
    ParseRule(re.compile(r"^ERROR:.*(?:Video unavailable|Private video|This video is private)", re.I),
              EventKind.FATAL,
              _fatal(ErrorCode.VIDEO_UNAVAILABLE, "This video is unavailable. It may be private or deleted.")),
    ParseRule(re.compile(r"^\[download\]\s+Downloading (?:item|video) (?P<index>\d+) of (?P<count>\d+)"),
              EventKind.PLAYLIST_ITEM, _playlist_item),
    ParseRule(re.compile(r"^\[download\]\s+(?P<pct>\d+(?:\.\d+)?)%"),
              EventKind.PROGRESS, _progress),
    ParseRule(re.compile(r"^\[info\].*?(?:Downloading \d+ format\(s\):|Selected format:)\s*(?P<fmt>.+)$"),
              EventKind.FORMAT_SELECTED, _format_selected),
    ParseRule(re.compile(r"^\[download\]\s+Destination:\s*(?P<path>.+)$"),
              EventKind.DESTINATION, _destination),
    ParseRule(re.compile(r"^\[Merger\]"),
              EventKind.MERGING, _merging),
    ParseRule(re.compile(r"^\[download\]\s+(?P<path>.+) has already been downloaded"),
              EventKind.ALREADY_DOWNLOADED, _already),
)


def clean_line(line: str) -> str:
    return _ANSI_ESCAPE_RE.sub("", line).strip()


class ProgressParser:
    """Line-oriented parser; one instance per subprocess attempt."""

    def __init__(self, rules: tuple[ParseRule, ...] = DEFAULT_RULES):
        self.rules = rules
        self._buffer = LineBuffer()

    def consume_line(self, line: str) -> list[ProgressEvent]:
        text = clean_line(line)
        if not text:
            return []
        for rule in self.rules:
            m = rule.pattern.search(text)
            if m:
                return [rule.build(m)]
        logger.debug("yt-dlp: %s", text)
        return []

    def feed(self, chunk: bytes | str) -> list[ProgressEvent]:
        events = []
        for line in self._buffer.feed(chunk):
            events.extend(self.consume_line(line))
        return events

    def flush(self) -> list[ProgressEvent]:
        events = []
        for line in self._buffer.flush():
            events.extend(self.consume_line(line))
        return events


def playlist_overall_progress(item_index: Optional[int], item_count: Optional[int],
                              percent: float) -> int:
    """
    Fold the current item's percentage into whole-playlist progress.
    Item 2 of 4 at 50% -> 37. Never exceeds the running cap.
    """
    if not item_index or not item_count:
        return int(_clamp_percent(percent))
    done = (item_index - 1) / item_count * 100
    overall = done + percent / item_count
    return int(_clamp_percent(overall))
