"""
HTTP surface for the mobile client.

Handlers are plain (sync) functions: FastAPI runs them in its threadpool,
which keeps blocking calls (yt-dlp -F, worker cancellation) off the loop.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse
from pydantic import BaseModel

from fetchtube.core.config import AppConfig
from fetchtube.core.constants import APP_DISPLAY_NAME, APP_VERSION, ErrorCode
from fetchtube.core.diagnostics import get_diagnostics
from fetchtube.core.error_codes import JobError, NotFoundError, is_content_error
from fetchtube.core.job_queue import DownloadManager
from fetchtube.core.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter()

_BAD_REQUEST_CODES = {ErrorCode.INVALID_URL, ErrorCode.INVALID_REQUEST, ErrorCode.NOT_PLAYLIST}
_UPSTREAM_CODES = {ErrorCode.TOOL_MISSING, ErrorCode.FORMAT_LIST_FAILED}


class DownloadRequest(BaseModel):
    url: Optional[str] = None
    quality: Optional[str] = None
    playlist: bool = False


class FormatsRequest(BaseModel):
    url: Optional[str] = None


def _manager(request: Request) -> DownloadManager:
    return request.app.state.manager


def _http_status(error: JobError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if error.code in _BAD_REQUEST_CODES:
        return 400
    if error.code in _UPSTREAM_CODES or is_content_error(error.code):
        return 502
    return 500


async def _job_error_handler(request: Request, exc: JobError) -> JSONResponse:
    status = _http_status(exc)
    body = {'error': exc.message, 'code': exc.code}
    if isinstance(exc, NotFoundError):
        body['reason'] = exc.reason
        body['shouldRedownload'] = exc.should_redownload
    if status >= 500:
        logger.error("%s %s failed [%s]: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=status, content=body)


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={
        'error': "Invalid request body",
        'code': ErrorCode.INVALID_REQUEST,
    })


# ── Downloads ─────────────────────────────────────────────────────────

@router.post("/download")
def start_download(payload: DownloadRequest, request: Request):
    manager = _manager(request)
    job_id = manager.submit(payload.url, payload.quality, payload.playlist)
    record = manager.get(job_id)
    return {'message': "Download started", 'downloadId': job_id, 'status': record.status}


@router.get("/status/{download_id}")
def download_status(download_id: str, request: Request):
    return _manager(request).get_status(download_id)


@router.get("/progress/{download_id}")
def download_progress(download_id: str, request: Request):
    return _manager(request).get(download_id).to_dict()


@router.get("/downloads")
def list_downloads(request: Request):
    return [record.to_dict() for record in _manager(request).list_all()]


@router.get("/download/{download_id}")
def serve_download(download_id: str, request: Request):
    path = _manager(request).artifact_path(download_id)
    if not path.exists():
        raise NotFoundError("File not found", code=ErrorCode.FILE_MISSING, should_redownload=True)
    return FileResponse(path, filename=path.name, media_type="video/mp4")


@router.get("/download/{download_id}/check")
def check_download(download_id: str, request: Request):
    return _manager(request).check(download_id)


@router.get("/download/{download_id}/playlist")
def playlist_listing(download_id: str, request: Request):
    record, files = _manager(request).playlist_files(download_id)
    return {'playlistId': record.job_id, 'title': record.title, 'files': files}


@router.get("/download/{download_id}/playlist-file/{index}")
def serve_playlist_file(download_id: str, index: int, request: Request):
    path = _manager(request).playlist_file(download_id, index)
    return FileResponse(path, filename=path.name, media_type="video/mp4")


@router.post("/download/{download_id}/redownload")
def redownload(download_id: str, request: Request):
    job_id = _manager(request).redownload(download_id)
    return {'message': "Download started", 'downloadId': job_id}


@router.delete("/download/{download_id}")
def delete_download(download_id: str, request: Request):
    deleted = _manager(request).delete(download_id)
    return {'message': "Download deleted successfully", 'deleted': deleted}


# ── Formats / diagnostics ─────────────────────────────────────────────

@router.post("/formats")
def list_formats(payload: FormatsRequest, request: Request):
    manager = _manager(request)
    formats = manager.list_formats(payload.url)
    return {'message': "Available formats", 'formats': formats, 'url': payload.url.strip()}


@router.get("/diagnostics")
def diagnostics(request: Request):
    manager = _manager(request)
    return get_diagnostics(manager.config,
                           active_jobs=len(manager.active_job_ids()),
                           total_jobs=len(manager.store))


# ── App factory ───────────────────────────────────────────────────────

def create_app(manager: DownloadManager | None = None,
               config: AppConfig | None = None) -> FastAPI:
    config = config or (manager.config if manager is not None else AppConfig())
    manager = manager or DownloadManager(JobStore(), config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down: cancelling %d active job(s)", len(manager.active_job_ids()))
        manager.shutdown()

    app = FastAPI(title=APP_DISPLAY_NAME, version=APP_VERSION, lifespan=lifespan)
    app.state.manager = manager
    app.state.config = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(JobError, _job_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.include_router(router, prefix="/api")

    return app
