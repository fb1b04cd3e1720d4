"""REST API endpoints for the export service."""

import asyncio
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, Query, Request, UploadFile
from fastapi.responses import FileResponse, JSONResponse

from export_service.env_config import ServiceSettings
from export_service.exceptions import InvalidRequestError, JobNotFoundError, NotFoundError, UnauthorizedError
from export_service.models.dto import ExportRequest, ExportSubmitResponse, UploadResponse
from export_service.services.export_service import ExportService
from export_service.services.media_resolver import describe_candidates
from export_service.services.media_store import MediaStore

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> ServiceSettings:
    """Settings of the running app."""
    return request.app.state.settings


def get_export_service(request: Request) -> ExportService:
    """Export service owned by the running app."""
    return request.app.state.export_service


def get_media_store(request: Request) -> MediaStore:
    """Media store owned by the running app."""
    return request.app.state.media_store


def require_token(
    settings: ServiceSettings = Depends(get_settings),
    x_export_token: Optional[str] = Header(None),
) -> None:
    """Check the shared export token when one is configured."""
    if not settings.auth_token:
        return
    if not x_export_token or not secrets.compare_digest(x_export_token, settings.auth_token):
        raise UnauthorizedError()


exports_router = APIRouter(prefix="/exports", dependencies=[Depends(require_token)])
media_router = APIRouter(prefix="/media", dependencies=[Depends(require_token)])


@exports_router.post("", status_code=201)
async def submit_export(
    export_request: ExportRequest,
    export_service: ExportService = Depends(get_export_service),
):
    """Submit an export job; never waits for the render."""
    job = export_service.submit(export_request)
    return ExportSubmitResponse(job_id=job.id).model_dump(by_alias=True)


@exports_router.get("/{job_id}")
async def get_export_status(
    job_id: str,
    export_service: ExportService = Depends(get_export_service),
):
    """Poll job status (debug trail included outside production)."""
    return export_service.get_status(job_id).to_response()


@exports_router.get("/{job_id}/download")
async def download_export(
    job_id: str,
    export_service: ExportService = Depends(get_export_service),
):
    """Stream the rendered file of a completed job."""
    download = export_service.get_download(job_id)
    return FileResponse(download.path, media_type=download.media_type, filename=download.filename)


@exports_router.post("/{job_id}/cancel")
async def cancel_export(
    job_id: str,
    export_service: ExportService = Depends(get_export_service),
):
    """Cancel a queued or rendering job."""
    job = export_service.cancel(job_id)
    return {"id": job.id, "status": job.status.value}


@exports_router.delete("/{job_id}")
async def discard_export(
    job_id: str,
    export_service: ExportService = Depends(get_export_service),
):
    """Forget a job; an in-flight encode is stopped on its next progress report."""
    if not export_service.discard(job_id):
        raise JobNotFoundError(job_id)
    return {"id": job_id, "discarded": True}


@media_router.post("/upload")
async def upload_media(
    file: Optional[UploadFile] = File(None),
    content_hash: Optional[str] = Form(None, alias="hash"),
    original_name: Optional[str] = Form(None, alias="originalName"),
    media_store: MediaStore = Depends(get_media_store),
):
    """Store source media under its content hash."""
    if file is None or not content_hash:
        raise InvalidRequestError("file and hash are required")

    try:
        stored = await asyncio.to_thread(
            media_store.save_upload,
            file.file,
            content_hash,
            original_name or file.filename,
            file.content_type,
        )
    finally:
        await file.close()

    body = UploadResponse(hash=stored.hash, cached=stored.cached, path=stored.public_path)
    return JSONResponse(status_code=200 if stored.cached else 201, content=body.model_dump(by_alias=True))


@media_router.get("/debug/{content_hash}")
async def debug_media_candidates(
    content_hash: str,
    original_name: Optional[str] = Query(None, alias="originalName"),
    container: Optional[str] = None,
    settings: ServiceSettings = Depends(get_settings),
):
    """Report every candidate path for a hash (not available in production)."""
    if not settings.debug:
        raise NotFoundError("debug routes are disabled")

    candidates = await asyncio.to_thread(
        describe_candidates, settings.media_root, content_hash, original_name, container
    )
    return {"hash": content_hash, "mediaRoot": str(settings.media_root), "candidates": candidates}
