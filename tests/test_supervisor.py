#!/usr/bin/env python3
"""
Tests for yt-dlp subprocess supervision.
A short Python script stands in for yt-dlp so the real pipe handling runs.
"""

import sys
import tempfile
import threading
import time
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from fetchtube.core.constants import ErrorCode
from fetchtube.core.error_codes import JobError
from fetchtube.core.security_utils import popen_streaming
from fetchtube.core.supervisor import DownloadProcess, Supervisor, STDOUT, STDERR

FAKE_DOWNLOAD = r"""
import sys, time
for pct in ("10.0", "55.5", "100"):
    sys.stdout.write("[download]  %s%% of 1.00MiB\r" % pct)
    sys.stdout.flush()
    time.sleep(0.01)
sys.stdout.write("\n[Merger] Merging formats\n")
sys.stderr.write("WARNING: something\nERROR: unable to finish\n")
sys.exit(int(sys.argv[1]) if len(sys.argv) > 1 else 0)
"""


def _python(script, *args):
    return popen_streaming([sys.executable, "-c", script, *args])


class Collector:

    def __init__(self):
        self.lines = []
        self._lock = threading.Lock()

    def __call__(self, stream, line):
        with self._lock:
            self.lines.append((stream, line))

    def on(self, stream):
        return [line for s, line in self.lines if s == stream]


class TestDownloadProcess(unittest.TestCase):

    def test_streams_lines_and_exit_code(self):
        collector = Collector()
        proc = DownloadProcess(_python(FAKE_DOWNLOAD, "0"), collector)
        self.assertEqual(proc.wait(timeout=30), 0)

        stdout = collector.on(STDOUT)
        self.assertEqual(stdout[:3], ["[download]  10.0% of 1.00MiB",
                                      "[download]  55.5% of 1.00MiB",
                                      "[download]  100% of 1.00MiB"])
        self.assertIn("[Merger] Merging formats", stdout)
        self.assertEqual(collector.on(STDERR), ["WARNING: something", "ERROR: unable to finish"])
        self.assertEqual(proc.last_error_line, "ERROR: unable to finish")

    def test_nonzero_exit(self):
        proc = DownloadProcess(_python(FAKE_DOWNLOAD, "1"), Collector())
        self.assertEqual(proc.wait(timeout=30), 1)

    def test_timeout_terminates(self):
        proc = DownloadProcess(_python("import time; time.sleep(30)"), Collector())
        start = time.monotonic()
        with self.assertRaises(JobError) as ctx:
            proc.wait(timeout=0.5)
        self.assertEqual(ctx.exception.code, ErrorCode.DOWNLOAD_TIMEOUT)
        self.assertTrue(ctx.exception.retryable)
        self.assertTrue(proc.terminated)
        self.assertIsNotNone(proc.process.poll())
        self.assertLess(time.monotonic() - start, 15)

    def test_terminate_stops_process(self):
        proc = DownloadProcess(_python("import time; time.sleep(30)"), Collector())
        proc.terminate()
        self.assertIsNotNone(proc.process.poll())
        # Terminating twice is harmless
        proc.terminate()

    def test_callback_failure_does_not_kill_reader(self):
        seen = []

        def handler(stream, line):
            seen.append(line)
            raise RuntimeError("boom")

        proc = DownloadProcess(_python("print('a'); print('b')"), handler)
        self.assertEqual(proc.wait(timeout=30), 0)
        self.assertEqual(seen, ["a", "b"])


class TestSupervisor(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.root = Path(self.tmpdir.name)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_launch_builds_argv_and_directories(self):
        launched = []

        def fake_popen(args):
            launched.append(args)
            return _python("print('[download]  1.0%')")

        out = self.root / "sub" / "Title_dQw4w9WgXcQ_1.mp4"
        with mock.patch("fetchtube.core.supervisor.popen_streaming", side_effect=fake_popen):
            proc = Supervisor("yt-dlp").launch("https://youtu.be/dQw4w9WgXcQ", "18", out,
                                               False, Collector(), quality="360p")
        self.assertEqual(proc.wait(timeout=30), 0)
        self.assertTrue(out.parent.is_dir())
        self.assertEqual(launched[0][0], "yt-dlp")
        self.assertEqual(launched[0][-1], "https://youtu.be/dQw4w9WgXcQ")

    def test_playlist_directory_created(self):
        out = self.root / "List_PL_1"
        with mock.patch("fetchtube.core.supervisor.popen_streaming",
                        side_effect=lambda args: _python("pass")):
            Supervisor().launch("https://youtube.com/playlist?list=PL1", "18", out, True,
                                Collector()).wait(timeout=30)
        self.assertTrue(out.is_dir())

    def test_missing_binary(self):
        supervisor = Supervisor(str(self.root / "no-such-yt-dlp"))
        with self.assertRaises(JobError) as ctx:
            supervisor.launch("https://youtu.be/dQw4w9WgXcQ", "18",
                              self.root / "x.mp4", False, Collector())
        self.assertEqual(ctx.exception.code, ErrorCode.TOOL_MISSING)
        self.assertFalse(ctx.exception.retryable)


if __name__ == "__main__":
    unittest.main()
