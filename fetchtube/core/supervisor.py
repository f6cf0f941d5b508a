"""
Subprocess supervision for yt-dlp downloads.

One DownloadProcess per attempt: the process itself plus a reader
thread per output stream. Readers push complete lines to a callback;
wait() bounds the attempt with a wall-clock timeout.
"""

import logging
import subprocess
import threading
from pathlib import Path
from typing import Callable, Optional

from fetchtube.core.constants import (
    ErrorCode, DEFAULT_YTDLP_PATH, DOWNLOAD_TIMEOUT_SEC, TERMINATE_GRACE_SEC,
)
from fetchtube.core.error_codes import JobError
from fetchtube.core.formats import build_download_args
from fetchtube.core.progress_parser import LineBuffer
from fetchtube.core.security_utils import popen_streaming

logger = logging.getLogger(__name__)

LineCallback = Callable[[str, str], None]   # (stream name, line)

STDOUT = "stdout"
STDERR = "stderr"

_READ_CHUNK = 4096


class DownloadProcess:
    """Handle for one running yt-dlp invocation."""

    def __init__(self, process: subprocess.Popen, on_line: LineCallback):
        self.process = process
        self._on_line = on_line
        self._terminated = threading.Event()
        self.last_error_line: Optional[str] = None
        self._readers = [
            threading.Thread(target=self._pump, args=(process.stdout, STDOUT),
                             name=f"ytdlp-{process.pid}-out", daemon=True),
            threading.Thread(target=self._pump, args=(process.stderr, STDERR),
                             name=f"ytdlp-{process.pid}-err", daemon=True),
        ]
        for reader in self._readers:
            reader.start()

    @property
    def pid(self) -> int:
        return self.process.pid

    @property
    def terminated(self) -> bool:
        return self._terminated.is_set()

    def _pump(self, stream, name: str):
        """Read raw chunks, split into lines, hand each to the callback."""
        if stream is None:
            return
        buffer = LineBuffer()
        read = getattr(stream, "read1", stream.read)
        try:
            while True:
                chunk = read(_READ_CHUNK)
                if not chunk:
                    break
                for line in buffer.feed(chunk):
                    self._emit(name, line)
            for line in buffer.flush():
                self._emit(name, line)
        except (OSError, ValueError) as e:
            # Stream closed underneath us by terminate()
            logger.debug("Reader %s for pid %s stopped: %s", name, self.pid, e)
        finally:
            try:
                stream.close()
            except OSError:
                pass

    def _emit(self, name: str, line: str):
        if name == STDERR and line.lstrip().startswith("ERROR"):
            self.last_error_line = line.strip()
        try:
            self._on_line(name, line)
        except Exception as e:
            logger.error("Line handler failed for pid %s: %s", self.pid, e, exc_info=True)

    def _join_readers(self, timeout: float | None = None):
        for reader in self._readers:
            reader.join(timeout)

    def wait(self, timeout: float = DOWNLOAD_TIMEOUT_SEC) -> int:
        """
        Wait for exit and drain output. Returns the exit code.
        On timeout the process is terminated and a retryable
        ERR_DOWNLOAD_TIMEOUT is raised.
        """
        try:
            code = self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("yt-dlp pid %s exceeded %ss — terminating", self.pid, timeout)
            self.terminate()
            raise JobError(ErrorCode.DOWNLOAD_TIMEOUT,
                           f"Download timeout after {int(timeout)} seconds")
        self._join_readers()
        return code

    def terminate(self):
        """SIGTERM, then kill if the process ignores it."""
        self._terminated.set()
        if self.process.poll() is not None:
            return
        try:
            self.process.terminate()
            self.process.wait(timeout=TERMINATE_GRACE_SEC)
        except subprocess.TimeoutExpired:
            logger.warning("yt-dlp pid %s ignored SIGTERM — killing", self.pid)
            self.process.kill()
            self.process.wait()
        except OSError as e:
            logger.debug("Terminate of pid %s failed: %s", self.pid, e)
        self._join_readers(timeout=TERMINATE_GRACE_SEC)


class Supervisor:
    """Launches yt-dlp with the arguments for one download attempt."""

    def __init__(self, ytdlp_path: str = DEFAULT_YTDLP_PATH):
        self.ytdlp_path = ytdlp_path

    def build_args(self, url: str, format_selector: str, output_path: Path,
                   is_playlist: bool, quality: str | None = None) -> list[str]:
        return build_download_args(url, format_selector, output_path, is_playlist,
                                   quality=quality, ytdlp_path=self.ytdlp_path)

    def launch(self, url: str, format_selector: str, output_path: Path,
               is_playlist: bool, on_line: LineCallback,
               quality: str | None = None) -> DownloadProcess:
        args = self.build_args(url, format_selector, output_path, is_playlist, quality)
        if is_playlist:
            output_path.mkdir(parents=True, exist_ok=True)
        else:
            output_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            process = popen_streaming(args)
        except FileNotFoundError:
            raise JobError(ErrorCode.TOOL_MISSING,
                           f"yt-dlp not found at {self.ytdlp_path!r}", retryable=False)
        except OSError as e:
            raise JobError(ErrorCode.DOWNLOAD_FAILED, f"Failed to start yt-dlp: {e}")

        logger.info("Started yt-dlp pid %s for %s", process.pid, url)
        return DownloadProcess(process, on_line)
