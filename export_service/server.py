"""FastAPI server for the export service."""

import asyncio
import logging
from contextlib import asynccontextmanager, suppress
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import exports_router, media_router
from .env_config import ServiceSettings
from .encoder import Encoder, FfmpegEncoder
from .exceptions import ErrorCode, ExportServiceError
from .services.export_service import ExportService
from .services.media_store import MediaStore

logger = logging.getLogger(__name__)


async def _prune_loop(export_service: ExportService, interval_seconds: float) -> None:
    """Periodically drop expired terminal jobs and their files."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(export_service.prune_expired)
        except Exception:
            logger.exception("Prune sweep failed")


def create_app(settings: Optional[ServiceSettings] = None, encoder: Optional[Encoder] = None) -> FastAPI:
    """Build the application.

    Args:
        settings: Runtime settings (read from the environment when omitted)
        encoder: Encoder adapter (ffmpeg on ``settings.ffmpeg_path`` when omitted)
    """
    if settings is None:
        settings = ServiceSettings.from_env()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for app startup/shutdown."""
        settings.ensure_directories()
        export_service = ExportService(
            settings,
            encoder or FfmpegEncoder(settings.ffmpeg_path, timeout_seconds=settings.job_timeout_seconds),
        )
        app.state.settings = settings
        app.state.export_service = export_service
        app.state.media_store = MediaStore(settings.media_root, settings.max_upload_bytes)
        logger.info(
            f"Export service ready: media={settings.media_root} output={settings.output_dir} "
            f"renders={settings.max_concurrent_renders} queue={settings.max_queued_exports}"
        )

        prune_task = asyncio.create_task(_prune_loop(export_service, settings.prune_interval_seconds))

        yield

        prune_task.cancel()
        with suppress(asyncio.CancelledError):
            await prune_task
        await asyncio.to_thread(export_service.shutdown)

    app = FastAPI(
        title="Timeline Export Service",
        description="Renders editor timelines to video files with ffmpeg",
        version="1.0.0",
        lifespan=lifespan,
    )

    if settings.cors_origin:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[settings.cors_origin],
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["Content-Type", "X-Export-Token"],
        )

    @app.exception_handler(ExportServiceError)
    async def handle_service_error(request: Request, exc: ExportServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"error": exc.code.value})

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.errors()}")
        return JSONResponse(status_code=400, content={"error": ErrorCode.INVALID_REQUEST.value})

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"error": ErrorCode.INTERNAL_ERROR.value})

    app.include_router(exports_router)
    app.include_router(media_router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {"status": "ok"}

    return app


app = create_app()
