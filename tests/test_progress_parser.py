#!/usr/bin/env python3
"""
Unit tests for yt-dlp output parsing.
"""

import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from fetchtube.core.constants import ErrorCode
from fetchtube.core.models import EventKind
from fetchtube.core.progress_parser import (
    LineBuffer, ProgressParser, playlist_overall_progress, clean_line,
)


class TestLineBuffer(unittest.TestCase):

    def test_partial_line_is_held(self):
        buf = LineBuffer()
        self.assertEqual(buf.feed(b"[download]  45.2% of"), [])
        self.assertEqual(buf.feed(b" 10MiB\n"), ["[download]  45.2% of 10MiB"])

    def test_carriage_return_terminates(self):
        buf = LineBuffer()
        self.assertEqual(buf.feed(b"a\rb\r\nc\n"), ["a", "b", "c"])

    def test_split_multibyte_character(self):
        buf = LineBuffer()
        data = "café\n".encode("utf-8")
        self.assertEqual(buf.feed(data[:4]), [])
        self.assertEqual(buf.feed(data[4:]), ["café"])

    def test_flush_returns_tail(self):
        buf = LineBuffer()
        buf.feed(b"no newline")
        self.assertEqual(buf.flush(), ["no newline"])
        self.assertEqual(buf.flush(), [])


class TestProgressParser(unittest.TestCase):

    def setUp(self):
        self.parser = ProgressParser()

    def _one(self, line):
        events = self.parser.consume_line(line)
        self.assertEqual(len(events), 1, line)
        return events[0]

    def test_progress_line(self):
        event = self._one("[download]  45.2% of  10.00MiB at  1.00MiB/s ETA 00:05")
        self.assertEqual(event.kind, EventKind.PROGRESS)
        self.assertAlmostEqual(event.percent, 45.2)

    def test_progress_capped_below_complete(self):
        event = self._one("[download] 100% of  10.00MiB in 00:03")
        self.assertEqual(event.percent, 99)

    def test_playlist_item(self):
        event = self._one("[download] Downloading item 2 of 4")
        self.assertEqual(event.kind, EventKind.PLAYLIST_ITEM)
        self.assertEqual((event.item_index, event.item_count), (2, 4))
        event = self._one("[download] Downloading video 3 of 7")
        self.assertEqual((event.item_index, event.item_count), (3, 7))

    def test_phase_markers(self):
        self.assertEqual(self._one("[Merger] Merging formats into \"x.mp4\"").kind,
                         EventKind.MERGING)
        self.assertEqual(self._one("[download] Destination: /tmp/x.f137.mp4").detail,
                         "/tmp/x.f137.mp4")
        self.assertEqual(self._one("[info] dQw4w9WgXcQ: Downloading 1 format(s): 137+140").kind,
                         EventKind.FORMAT_SELECTED)
        self.assertEqual(self._one("[download] /tmp/x.mp4 has already been downloaded").kind,
                         EventKind.ALREADY_DOWNLOADED)

    def test_fatal_classification(self):
        cases = {
            "ERROR: [youtube] dQw4w9WgXcQ: Video unavailable": ErrorCode.VIDEO_UNAVAILABLE,
            "ERROR: [youtube] dQw4w9WgXcQ: Private video": ErrorCode.VIDEO_UNAVAILABLE,
            "ERROR: [youtube] dQw4w9WgXcQ: Sign in to confirm your age": ErrorCode.AGE_RESTRICTED,
            "ERROR: The uploader has not made this video available in your country":
                ErrorCode.GEO_BLOCKED,
            "ERROR: Video unavailable. This video has been removed by the uploader":
                ErrorCode.VIDEO_REMOVED,
        }
        for line, code in cases.items():
            event = self._one(line)
            self.assertEqual(event.kind, EventKind.FATAL, line)
            self.assertEqual(event.error_code, code, line)
            self.assertTrue(event.message)

    def test_fatal_requires_error_prefix(self):
        # A title mentioning the phrase is not a failure
        self.assertEqual(self.parser.consume_line(
            "[download] Destination: /tmp/Private video reaction.mp4")[0].kind,
            EventKind.DESTINATION)

    def test_ansi_codes_are_stripped(self):
        self.assertEqual(clean_line("\x1b[0;94m[download]\x1b[0m  12.0%"), "[download]  12.0%")
        self.assertEqual(self._one("\x1b[0;94m[download]\x1b[0m  12.0% of 1MiB").percent, 12.0)

    def test_unrecognised_lines_yield_nothing(self):
        self.assertEqual(self.parser.consume_line("[youtube] Extracting URL"), [])
        self.assertEqual(self.parser.consume_line("   "), [])

    def test_feed_handles_chunk_boundaries(self):
        events = self.parser.feed(b"[download]  10.0% of 1MiB\r[downl")
        self.assertEqual([e.percent for e in events], [10.0])
        events = self.parser.feed(b"oad]  20.5% of 1MiB\n")
        self.assertEqual([e.percent for e in events], [20.5])


class TestPlaylistProgress(unittest.TestCase):

    def test_overall_progress(self):
        self.assertEqual(playlist_overall_progress(1, 4, 0), 0)
        self.assertEqual(playlist_overall_progress(2, 4, 50), 37)
        self.assertEqual(playlist_overall_progress(4, 4, 99), 99)

    def test_without_item_counts(self):
        self.assertEqual(playlist_overall_progress(None, None, 42.7), 42)

    def test_never_reaches_complete(self):
        self.assertLessEqual(playlist_overall_progress(4, 4, 100), 99)


if __name__ == "__main__":
    unittest.main()
