"""vidshelf FastAPI server: video library browsing, streaming and editing.

Endpoints:
    GET    /api/health              -> status, sandbox root, ffmpeg availability
    GET    /api/files?path=         -> directory listing (FileEntry list)
    DELETE /api/files?path=         -> delete a file or directory
    GET    /api/video?path=         -> stream video with byte-range support (video/mp4)
    GET    /api/media?path=         -> same, content type guessed from extension
    POST   /api/edit-video          -> trim + concat segments, wait for ffmpeg
    POST   /api/edit-jobs           -> same edit, queued; returns job handle (202)
    GET    /api/edit-jobs           -> all edit jobs, newest first
    GET    /api/edit-jobs/{job_id}  -> one edit job
    WS     /ws/progress             -> job state changes + new_output events
    GET    /                        -> UI (static_dir/index.html or placeholder)

Every path parameter is resolved inside the sandbox root (configs/settings.py).
"""

import argparse
import asyncio
import logging
import mimetypes
import sys
from typing import Any, Optional, Union

import uvicorn
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, JSONResponse, StreamingResponse
from pydantic import BaseModel, TypeAdapter, ValidationError

from configs.settings import Settings, get_settings, set_settings
from vidshelf.tools.edit_jobs import EditJobQueue
from vidshelf.tools.edit_plan import ConcatEdit, make_segments, output_file_name
from vidshelf.tools.errors import (
    AccessDenied,
    BadRequest,
    EngineError,
    InternalFailure,
    NotFound,
    RangeNotSatisfiable,
    VidshelfError,
)
from vidshelf.tools.executor import FFmpegBackend, MediaBackend
from vidshelf.tools.file_browser import delete_entry, list_directory
from vidshelf.tools.output_watcher import OutputWatcher
from vidshelf.tools.range_stream import VIDEO_CONTENT_TYPE, iter_file_range, parse_range
from vidshelf.tools.sandbox import resolve_path, to_relative_path

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# ---------------------------------------------------------------------------
# Singletons
# ---------------------------------------------------------------------------

_backend: Optional[MediaBackend] = None
_jobs: Optional[EditJobQueue] = None
_watcher: Optional[OutputWatcher] = None
_loop: Optional[asyncio.AbstractEventLoop] = None


def get_backend() -> MediaBackend:
    """Get or create the media backend."""
    global _backend
    if _backend is None:
        settings = get_settings()
        _backend = FFmpegBackend(settings.ffmpeg_binary, timeout=settings.engine_timeout)
    return _backend


def get_jobs() -> EditJobQueue:
    """Get or create the edit job queue."""
    global _jobs
    if _jobs is None:
        settings = get_settings()
        _jobs = EditJobQueue(
            get_backend(),
            max_workers=settings.edit_workers,
            on_update=_on_job_update,
            edit_log=settings.edit_log,
        )
    return _jobs


def get_watcher() -> OutputWatcher:
    """Get or create the watcher on the edited/ directory."""
    global _watcher
    if _watcher is None:
        settings = get_settings()
        _watcher = OutputWatcher(
            root=settings.root,
            watch_dir=settings.edited_dir,
            on_new_file=_on_new_output,
        )
    return _watcher


# ---------------------------------------------------------------------------
# WebSocket connection manager
# ---------------------------------------------------------------------------

class ConnectionManager:
    """Manages WebSocket connections for real-time event broadcasting."""

    def __init__(self):
        self.active: list[WebSocket] = []

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.active.append(ws)

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self.active:
            self.active.remove(ws)

    async def broadcast(self, message: dict) -> None:
        for ws in list(self.active):
            try:
                await ws.send_json(message)
            except Exception:
                self.disconnect(ws)


manager = ConnectionManager()


def _publish(message: dict[str, Any]) -> None:
    """Schedule a broadcast from any thread. No-op until the server has started."""
    loop = _loop
    if loop is None or loop.is_closed() or not manager.active:
        return
    asyncio.run_coroutine_threadsafe(manager.broadcast(message), loop)


def _on_job_update(job: dict[str, Any]) -> None:
    _publish({"type": "job", "job": job})


def _on_new_output(entry: dict[str, Any]) -> None:
    _publish({"type": "new_output", "file": entry})


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class VideoSegment(BaseModel):
    startTime: Union[str, float]
    endTime: Union[str, float]


class EditRequest(BaseModel):
    videoPath: str
    # Checked in _prepare_edit, after the sandbox check on videoPath.
    segments: Any = None


_SEGMENT_LIST = TypeAdapter(list[VideoSegment])


def _format_errors(errors) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg')}"
        for err in errors
    )


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

app = FastAPI(title="vidshelf", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VidshelfError)
async def vidshelf_error_handler(request: Request, exc: VidshelfError):
    headers = None
    if isinstance(exc, RangeNotSatisfiable):
        headers = {"Content-Range": f"bytes */{exc.size}"}
    return JSONResponse(exc.to_dict(), status_code=exc.status_code, headers=headers)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = _format_errors(exc.errors())
    return JSONResponse({"error": "Invalid request", "details": details}, status_code=400)


# ---------------------------------------------------------------------------
# Directory service
# ---------------------------------------------------------------------------

@app.get("/api/health")
def health():
    """Return server status, sandbox root and whether ffmpeg can be run."""
    settings = get_settings()
    return {
        "status": "ok",
        "root": str(settings.root),
        "ffmpeg": get_backend().is_available(),
    }


@app.get("/api/files")
def api_list_files(path: str = "/"):
    """List the direct children of a directory under the sandbox root."""
    entries = list_directory(get_settings().root, path)
    return [entry.to_dict() for entry in entries]


@app.delete("/api/files")
def api_delete_file(path: Optional[str] = None):
    """Delete a file or directory (recursively) under the sandbox root."""
    if not path:
        raise BadRequest(details="path is required")
    delete_entry(get_settings().root, path)
    return {"success": True}


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------

def _stream_file(path: Optional[str], request: Request, content_type: Optional[str]):
    """Serve a sandboxed file as 200 (whole) or 206 (Range) streaming response.

    ``content_type`` None means guess from the file extension.
    """
    if not path:
        raise BadRequest(details="path is required")
    settings = get_settings()
    file_path = resolve_path(settings.root, path)
    if not file_path.is_file():
        raise NotFound("Video not found")

    try:
        file_size = file_path.stat().st_size
    except OSError:
        logger.exception("Error streaming %s", file_path)
        raise InternalFailure("Failed to stream video")

    if content_type is None:
        content_type = mimetypes.guess_type(file_path.name)[0] or "application/octet-stream"

    range_header = request.headers.get("range")
    if range_header:
        byte_range = parse_range(range_header, file_size)
        return StreamingResponse(
            iter_file_range(file_path, byte_range.start, byte_range.length, settings.chunk_size),
            status_code=206,
            media_type=content_type,
            headers={
                "Content-Range": byte_range.content_range,
                "Accept-Ranges": "bytes",
                "Content-Length": str(byte_range.length),
            },
        )

    return StreamingResponse(
        iter_file_range(file_path, 0, file_size, settings.chunk_size),
        status_code=200,
        media_type=content_type,
        headers={
            "Accept-Ranges": "bytes",
            "Content-Length": str(file_size),
        },
    )


@app.get("/api/video")
def api_video(request: Request, path: Optional[str] = None):
    """Stream a video. Content type is always video/mp4."""
    return _stream_file(path, request, VIDEO_CONTENT_TYPE)


@app.get("/api/media")
def api_media(request: Request, path: Optional[str] = None):
    """Stream any media file with a content type guessed from its extension."""
    return _stream_file(path, request, None)


# ---------------------------------------------------------------------------
# Edit orchestration
# ---------------------------------------------------------------------------

def _prepare_edit(req: EditRequest, settings: Settings) -> tuple[ConcatEdit, str]:
    """Validate an edit request and build its ConcatEdit.

    Returns the edit and the sandbox-relative source path.
    """
    source = resolve_path(settings.root, req.videoPath)

    try:
        raw_segments = _SEGMENT_LIST.validate_python(req.segments)
    except ValidationError as exc:
        raise BadRequest(details=_format_errors(exc.errors(include_url=False))) from exc
    try:
        segments = make_segments((seg.startTime, seg.endTime) for seg in raw_segments)
    except ValueError as exc:
        raise BadRequest(details=str(exc)) from exc
    if not segments:
        raise BadRequest(details="at least one segment is required")

    if not source.is_file():
        raise NotFound("Video not found")

    try:
        settings.edited_dir.mkdir(parents=True, exist_ok=True)
        output = settings.edited_dir / output_file_name(req.videoPath)
        edit = ConcatEdit(source=source, output=output, segments=segments)
    except Exception as exc:
        logger.exception("Error preparing edit of %s", req.videoPath)
        raise InternalFailure("Failed to process video request", details=str(exc)) from exc

    return edit, to_relative_path(settings.root, source)


@app.post("/api/edit-video")
def api_edit_video(req: EditRequest):
    """Cut the segments out of videoPath and join them; blocks until ffmpeg is done."""
    edit, source = _prepare_edit(req, get_settings())
    logger.info("Processing video: %s (%d segments)", source, len(edit.segments))

    job = get_jobs().submit(edit, source)
    try:
        job.future.result()
    except VidshelfError:
        raise
    except Exception as exc:
        raise EngineError(details=str(exc)) from exc

    return {"success": True, "output": job.output}


@app.post("/api/edit-jobs", status_code=202)
def api_submit_edit_job(req: EditRequest):
    """Queue the same edit as /api/edit-video and return its job handle."""
    edit, source = _prepare_edit(req, get_settings())
    job = get_jobs().submit(edit, source)
    return job.to_dict()


@app.get("/api/edit-jobs")
def api_list_edit_jobs():
    return {"jobs": [job.to_dict() for job in get_jobs().list_jobs()]}


@app.get("/api/edit-jobs/{job_id}")
def api_get_edit_job(job_id: str):
    job = get_jobs().get(job_id)
    if job is None:
        raise NotFound("Job not found")
    return job.to_dict()


# ---------------------------------------------------------------------------
# WebSocket endpoint
# ---------------------------------------------------------------------------

@app.websocket("/ws/progress")
async def ws_progress(ws: WebSocket):
    """Real-time events: edit job state changes + new files in edited/."""
    await manager.connect(ws)
    try:
        while True:
            await ws.receive_text()  # keepalive
    except WebSocketDisconnect:
        manager.disconnect(ws)


# ---------------------------------------------------------------------------
# UI host
# ---------------------------------------------------------------------------

PLACEHOLDER_HTML = (
    "<html><body><h1>vidshelf</h1>"
    "<p>No UI build found. Place index.html in the configured static_dir.</p>"
    "</body></html>"
)


@app.get("/", response_class=HTMLResponse)
async def serve_index():
    """Serve the UI entry page (falls back to a placeholder)."""
    index = get_settings().static_dir / "index.html"
    if index.is_file():
        return FileResponse(str(index), media_type="text/html")
    return HTMLResponse(content=PLACEHOLDER_HTML, status_code=200)


@app.get("/{full_path:path}")
async def serve_static(full_path: str):
    """Serve a UI asset, or index.html for client-side routes."""
    if full_path.startswith("api/"):
        raise NotFound()
    static_dir = get_settings().static_dir
    try:
        asset = resolve_path(static_dir, full_path)
    except AccessDenied:
        raise NotFound()
    if asset.is_file():
        return FileResponse(str(asset))
    return await serve_index()


# ---------------------------------------------------------------------------
# Lifecycle: start/stop watcher and job pool with server
# ---------------------------------------------------------------------------

@app.on_event("startup")
async def startup_event():
    global _loop
    _loop = asyncio.get_running_loop()
    get_settings().ensure_dirs()
    get_watcher().start()
    logger.info("Serving videos from %s", get_settings().root)


@app.on_event("shutdown")
async def shutdown_event():
    global _loop, _jobs, _watcher
    if _watcher is not None:
        _watcher.stop()
        _watcher = None
    if _jobs is not None:
        _jobs.shutdown(wait=False)
        _jobs = None
    _loop = None


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def configure_logging(settings: Settings) -> None:
    """Log to stderr, and to settings.log_file when one is configured."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if settings.log_file is not None:
        settings.log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(settings.log_file, encoding="utf-8"))
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT, handlers=handlers, force=True)


def main(argv: Optional[list[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="vidshelf video library server")
    parser.add_argument("--root", help="sandbox root directory to serve videos from")
    parser.add_argument("--host", help="bind address")
    parser.add_argument("--port", type=int, help="listen port")
    parser.add_argument("--log-file", help="also write logs to this file")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ...")
    args = parser.parse_args(argv)

    settings = get_settings().with_overrides(
        root=args.root,
        host=args.host,
        port=args.port,
        log_file=args.log_file,
        log_level=args.log_level,
    )
    set_settings(settings)
    configure_logging(settings)
    settings.ensure_dirs()

    logger.info("Server running on http://%s:%d", settings.host, settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
