"""
HTTP client for the FetchTube server, mirroring what the mobile app does:
start a download, poll its status, then fetch the file.
"""

import logging
import time
from pathlib import Path

import requests

from fetchtube.core.constants import JobStatus, DEFAULT_QUALITY

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1024 * 1024


class ClientError(Exception):
    """Server returned an error response, or could not be reached."""

    def __init__(self, message: str, status_code: int | None = None, code: str | None = None):
        self.message = message
        self.status_code = status_code
        self.code = code
        super().__init__(f"[{status_code}] {message}" if status_code else message)


class RedownloadRequired(ClientError):
    """The server no longer has the file; request the download again."""


class DownloadClient:

    def __init__(self, base_url: str, session: requests.Session | None = None,
                 timeout: float = 30):
        self.base_url = base_url.rstrip('/')
        self.session = session or requests.Session()
        self.timeout = timeout

    # ── Transport ─────────────────────────────────────────────────────

    def _url(self, path: str) -> str:
        return f"{self.base_url}/api{path}"

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        kwargs.setdefault('timeout', self.timeout)
        try:
            resp = self.session.request(method, self._url(path), **kwargs)
        except requests.RequestException as e:
            raise ClientError(f"Request to {path} failed: {e}")
        if resp.status_code >= 400:
            self._raise_for_error(resp)
        return resp

    @staticmethod
    def _raise_for_error(resp: requests.Response):
        try:
            body = resp.json()
        except ValueError:
            body = {}
        message = body.get('error') or resp.reason or "Request failed"
        if resp.status_code == 404 and body.get('shouldRedownload'):
            raise RedownloadRequired(message, resp.status_code, body.get('code'))
        raise ClientError(message, resp.status_code, body.get('code'))

    def _json(self, method: str, path: str, **kwargs):
        return self._request(method, path, **kwargs).json()

    # ── API ───────────────────────────────────────────────────────────

    def start_download(self, url: str, quality: str = DEFAULT_QUALITY,
                       playlist: bool = False) -> str:
        body = self._json('POST', '/download',
                          json={'url': url, 'quality': quality, 'playlist': playlist})
        logger.info("Started download %s for %s", body['downloadId'], url)
        return body['downloadId']

    def get_status(self, download_id: str) -> dict:
        return self._json('GET', f'/status/{download_id}')

    def get_progress(self, download_id: str) -> dict:
        return self._json('GET', f'/progress/{download_id}')

    def list_downloads(self) -> list[dict]:
        return self._json('GET', '/downloads')

    def check_file(self, download_id: str) -> dict:
        return self._json('GET', f'/download/{download_id}/check')

    def list_formats(self, url: str) -> list[str]:
        return self._json('POST', '/formats', json={'url': url})['formats']

    def delete_download(self, download_id: str) -> int:
        return self._json('DELETE', f'/download/{download_id}')['deleted']

    def redownload(self, download_id: str) -> str:
        return self._json('POST', f'/download/{download_id}/redownload')['downloadId']

    def playlist_files(self, download_id: str) -> dict:
        return self._json('GET', f'/download/{download_id}/playlist')

    def wait_for_completion(self, download_id: str, poll_interval: float = 2.0,
                            timeout: float | None = None) -> dict:
        """
        Poll status until the job completes. Raises ClientError if the job
        ends in error or the timeout elapses.
        """
        deadline = time.monotonic() + timeout if timeout is not None else None
        while True:
            status = self.get_status(download_id)
            if status['status'] == JobStatus.COMPLETED:
                return status
            if status['status'] == JobStatus.ERROR:
                raise ClientError(status.get('message') or "Download failed")
            if deadline is not None and time.monotonic() >= deadline:
                raise ClientError(f"Timed out waiting for {download_id} "
                                  f"(last status {status['status']}, {status['progress']}%)")
            time.sleep(poll_interval)

    def _stream_to(self, path: str, dest: Path) -> Path:
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        resp = self._request('GET', path, stream=True)
        try:
            with open(dest, 'wb') as f:
                for chunk in resp.iter_content(chunk_size=_CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        finally:
            resp.close()
        logger.info("Saved %s to %s", path, dest)
        return dest

    def fetch_file(self, download_id: str, dest: Path) -> Path:
        return self._stream_to(f'/download/{download_id}', dest)

    def fetch_playlist_file(self, download_id: str, index: int, dest: Path) -> Path:
        return self._stream_to(f'/download/{download_id}/playlist-file/{index}', dest)
