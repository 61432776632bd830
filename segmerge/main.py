import logging
import subprocess
from contextlib import asynccontextmanager
from typing import Dict, List, Optional
from uuid import uuid4

import uvicorn
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, field_validator
from structlog.contextvars import bind_contextvars, clear_contextvars

from .catalog import list_media_paths, scan_media
from .config import Settings
from .errors import SegmergeError
from .logging_setup import REQUEST_ID_CTX, configure_logging, flush_logs
from .merge import MIN_MERGE_FILES, MergeOrchestrator

logger = logging.getLogger("segmerge")

_FFMPEG_VERSION_CACHE: Dict[str, Dict[str, Optional[str]]] = {}


class MergeRequest(BaseModel):
    files: List[str]

    @field_validator("files", mode="before")
    @classmethod
    def validate_files(cls, value):
        if not isinstance(value, list):
            raise ValueError("Files must be provided as a list of relative paths")
        if len(value) < MIN_MERGE_FILES:
            raise ValueError(f"At least {MIN_MERGE_FILES} files are required to merge")
        return value


def ffmpeg_snapshot(binary: str) -> Dict[str, Optional[str]]:
    cached = _FFMPEG_VERSION_CACHE.get(binary)
    if cached is not None:
        return dict(cached)
    try:
        result = subprocess.run(
            [binary, "-version"], capture_output=True, text=True, timeout=5
        )
        available = result.returncode == 0
        version_line = (result.stdout or "").splitlines()[0] if available and result.stdout else ""
        error = None if available else (result.stderr or "Unknown failure")
    except (OSError, subprocess.SubprocessError) as exc:
        available = False
        version_line = ""
        error = str(exc)
    snapshot = {"available": available, "version": version_line, "error": error}
    _FFMPEG_VERSION_CACHE[binary] = dict(snapshot)
    return snapshot


def _http_error(exc: SegmergeError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail())


router = APIRouter()


@router.get("/api/videos")
def list_videos(request: Request, detail: bool = True):
    """Media under the video root, newest first; ``detail=false`` lists bare paths."""
    settings: Settings = request.app.state.settings
    try:
        if not detail:
            return list_media_paths(settings.VIDEO_ROOT)
        return [entry.to_dict() for entry in scan_media(settings.VIDEO_ROOT)]
    except SegmergeError as exc:
        logger.error("Scan of %s failed: %s", settings.VIDEO_ROOT, exc)
        flush_logs()
        raise _http_error(exc) from exc


@router.post("/api/merge")
def merge_videos(request: Request, job: MergeRequest, as_json: bool = False):
    orchestrator: MergeOrchestrator = request.app.state.orchestrator
    try:
        result = orchestrator.request_merge(job.files)
    except SegmergeError as exc:
        raise _http_error(exc) from exc

    if as_json:
        return {
            "ok": True,
            "output": result.output_name,
            "output_path": str(result.output_path),
            "diagnostics": result.diagnostics,
            "duration_seconds": round(result.duration_seconds, 3),
        }
    return PlainTextResponse(f"Merge succeeded!\nFile: {result.output_name}")


@router.get("/health")
def health(request: Request):
    settings: Settings = request.app.state.settings
    orchestrator: MergeOrchestrator = request.app.state.orchestrator
    root_exists = settings.VIDEO_ROOT.is_dir()
    ffmpeg_info = ffmpeg_snapshot(settings.FFMPEG_BINARY)
    return {
        "ok": bool(ffmpeg_info.get("available")) and root_exists,
        "video_root": {"path": str(settings.VIDEO_ROOT), "exists": root_exists},
        "ffmpeg": ffmpeg_info,
        "merge_in_progress": orchestrator.busy,
    }


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [str(error.get("msg", "")) for error in exc.errors()]
    logger.info("Rejected malformed request to %s: %s", request.url.path, errors)
    return JSONResponse({"detail": "Invalid request", "errors": errors}, status_code=400)


async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or uuid4().hex
    token = REQUEST_ID_CTX.set(request_id)
    bind_contextvars(request_id=request_id)
    try:
        response = await call_next(request)
        response.headers.setdefault("X-Request-ID", request_id)
        return response
    finally:
        clear_contextvars()
        REQUEST_ID_CTX.reset(token)


def create_app(
    settings: Optional[Settings] = None,
    *,
    orchestrator: Optional[MergeOrchestrator] = None,
) -> FastAPI:
    settings = settings or Settings.load()
    configure_logging(settings)

    @asynccontextmanager
    async def lifespan(app):
        logger.info("=" * 60)
        logger.info("segmerge starting on %s:%d", settings.HOST, settings.PORT)
        logger.info("VIDEO_ROOT: %s", settings.VIDEO_ROOT)
        if not settings.VIDEO_ROOT.is_dir():
            logger.warning("VIDEO_ROOT does not exist yet: %s", settings.VIDEO_ROOT)
        logger.info("FFMPEG_TIMEOUT_SECONDS: %s", settings.FFMPEG_TIMEOUT_SECONDS or "disabled")
        logger.info("=" * 60)
        flush_logs()
        yield
        logger.info("segmerge is shutting down")

    app = FastAPI(title="segmerge", lifespan=lifespan)
    app.state.settings = settings
    app.state.orchestrator = orchestrator or MergeOrchestrator(settings)

    app.add_exception_handler(RequestValidationError, request_validation_handler)
    # Outermost middleware so every response carries the id
    app.middleware("http")(request_id_middleware)
    app.include_router(router)

    if settings.STATIC_DIR is not None and settings.STATIC_DIR.is_dir():
        app.mount("/", StaticFiles(directory=str(settings.STATIC_DIR), html=True), name="static")
    else:
        logger.info("No static directory at %s, serving the API only", settings.STATIC_DIR)

    return app


app = create_app()


def main() -> None:
    settings = app.state.settings
    uvicorn.run(app, host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    main()
