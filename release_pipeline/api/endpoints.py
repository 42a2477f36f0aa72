"""
FastAPI endpoints for chunked uploads and release lookups
"""
import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, FastAPI, File, Form, Header, Request, UploadFile, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..core.config import settings
from ..core.exceptions import InvalidArgument, ReleaseNotFound, UploadPipelineError
from ..models import Platform
from ..schemas import (
    AbortUploadResponse,
    ChunkAck,
    CompleteUploadRequest,
    DownloadUrlResponse,
    PatchArtifact,
    ReleaseArtifact,
    StartUploadRequest,
    StartUploadResponse,
    UpdateVersionMetadataRequest,
    UploadStatusResponse,
)
from ..services import UploadPipeline, UploadSession

logger = logging.getLogger(__name__)

router = APIRouter()


def get_pipeline(request: Request) -> UploadPipeline:
    return request.app.state.pipeline


def register_exception_handlers(app: FastAPI) -> None:
    """Render every pipeline error as {"error": kind, "message": ...}"""

    @app.exception_handler(UploadPipelineError)
    async def pipeline_error_handler(request: Request, exc: UploadPipelineError):
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        # Malformed bodies, params and headers are invalid arguments like any other
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return await pipeline_error_handler(request, InvalidArgument(f"Invalid request: {problems}"))


def _status_response(session: UploadSession) -> UploadStatusResponse:
    return UploadStatusResponse(
        upload_id=session.upload_id,
        file_name=session.file_name,
        status=session.status.value,
        total_chunks=session.total_chunks,
        received_chunks=sorted(session.received_chunks),
        missing_chunks=session.missing_chunks,
        progress_percent=session.progress_percent,
        expires_at=session.expires_at,
        release_id=session.release_id
    )


# ============================================================================
# Uploads
# ============================================================================

@router.post("/uploads", response_model=StartUploadResponse,
             status_code=status.HTTP_201_CREATED, tags=["uploads"])
async def start_upload(
    body: StartUploadRequest,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    """Open an upload session; the client then sends chunks 1..total_chunks"""
    logger.info(f"📤 Start upload: {body.file_name} ({body.file_size} bytes, {body.total_chunks} chunks)")
    session = pipeline.start_upload(
        file_name=body.file_name,
        file_size=body.file_size,
        total_chunks=body.total_chunks,
        owner_id=body.owner_id,
        content_type=body.content_type,
        declared_hash=body.file_hash
    )
    return StartUploadResponse(
        upload_id=session.upload_id,
        total_chunks=session.total_chunks,
        expires_at=session.expires_at
    )


@router.put("/uploads/{upload_id}/chunks/{chunk_number}", response_model=ChunkAck, tags=["uploads"])
async def upload_chunk(
    upload_id: str,
    chunk_number: int,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    chunk_size: Annotated[int, Form(description="Byte length of this chunk")],
    file: Annotated[UploadFile, File(description="Chunk bytes")],
    chunk_md5: Annotated[Optional[str], Header(alias="X-Chunk-MD5")] = None
):
    """
    Upload one chunk.

    Chunks may arrive in any order and in parallel; resending a chunk
    number replaces its bytes.
    """
    data = await file.read()
    session = await pipeline.upload_chunk(upload_id, chunk_number, chunk_size, data, chunk_md5)
    return ChunkAck(
        upload_id=upload_id,
        chunk_number=chunk_number,
        size=len(data),
        received_chunks=len(session.received_chunks),
        total_chunks=session.total_chunks
    )


@router.get("/uploads/{upload_id}", response_model=UploadStatusResponse, tags=["uploads"])
async def get_upload_status(
    upload_id: str,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    """Upload progress, including the chunk numbers still missing"""
    return _status_response(pipeline.get_status(upload_id))


@router.post("/uploads/{upload_id}/complete", response_model=ReleaseArtifact,
             status_code=status.HTTP_201_CREATED, tags=["uploads"])
async def complete_upload(
    upload_id: str,
    body: CompleteUploadRequest,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    """Assemble, verify and publish the upload as a release artifact"""
    logger.info(f"📦 Complete upload {upload_id}: {body.file_type.value} {body.game_id} {body.platform.value}")
    return await pipeline.complete_upload(
        upload_id,
        game_id=body.game_id,
        platform=body.platform,
        version=body.version,
        final_file_name=body.final_file_name,
        file_type=body.file_type,
        addon_id=body.addon_id,
        from_version=body.from_version,
        to_version=body.to_version,
        changelog=body.changelog,
        release_date=body.release_date,
        expected_hash=body.expected_hash
    )


@router.delete("/uploads/{upload_id}", response_model=AbortUploadResponse, tags=["uploads"])
async def abort_upload(
    upload_id: str,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    """Cancel an open upload; its chunks are reclaimed in the background"""
    session = await pipeline.abort_upload(upload_id)
    return AbortUploadResponse(upload_id=session.upload_id, status=session.status.value)


# ============================================================================
# Releases (read side used by catalog services)
# Static "versions/..." routes are registered before the
# {product_id}/{platform}/{version} route so they match first.
# ============================================================================

@router.patch("/releases/versions/{release_id}", response_model=ReleaseArtifact, tags=["releases"])
async def update_version_metadata(
    release_id: str,
    body: UpdateVersionMetadataRequest,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    """Edit changelog and/or release date; blob fields are immutable"""
    return await pipeline.update_version_metadata(
        release_id, changelog=body.changelog, release_date=body.release_date
    )


@router.get("/releases/versions/{release_id}/download-url",
            response_model=DownloadUrlResponse, tags=["releases"])
async def get_download_url(
    release_id: str,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)],
    expires_in: Optional[int] = None
):
    """Presigned GET url for a version's blob"""
    url = await pipeline.download_url(release_id, expires_in)
    return DownloadUrlResponse(
        release_id=release_id,
        url=url,
        expires_in=expires_in or settings.PRESIGNED_URL_EXPIRY_SECONDS
    )


@router.get("/releases/{product_id}/{platform}/patches/{name}", response_model=PatchArtifact, tags=["releases"])
async def get_patch(
    product_id: str,
    platform: Platform,
    name: str,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    patch = await pipeline.get_patch_by_name(product_id, platform, name)
    if patch is None:
        raise ReleaseNotFound(f"Patch {name} not found for {product_id} on {platform.value}")
    return patch


@router.get("/releases/{product_id}/{platform}/{version}", response_model=ReleaseArtifact, tags=["releases"])
async def get_release(
    product_id: str,
    platform: Platform,
    version: str,
    pipeline: Annotated[UploadPipeline, Depends(get_pipeline)]
):
    """Most recent full or addon version for (product, platform, version)"""
    release = await pipeline.get_release_by_version(product_id, platform, version)
    if release is None:
        raise ReleaseNotFound(f"Release {version} not found for {product_id} on {platform.value}")
    return release
