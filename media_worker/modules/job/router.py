"""API Router for the media worker.

Every route requires the shared ``x-api-key`` credential.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status

from media_worker.core.config import settings
from media_worker.core.security import require_api_key
from media_worker.modules.extraction.captions import CaptionFormatError
from media_worker.modules.extraction.subtitles import CaptionConversionError, CaptionUploadError
from media_worker.modules.job.cleanup import bulk_cleanup
from media_worker.modules.job.dependencies import Worker, get_worker
from media_worker.modules.job.models import Job, JobKind
from media_worker.modules.job.schemas import (
    CaptionUploadResponse,
    CleanupRequest,
    CleanupResponse,
    EnqueueResponse,
    ExtractRequest,
    JobStatusResponse,
    TranscodeRequest,
)
from media_worker.modules.media.repository import MediaNotFoundError
from media_worker.modules.transcoding.models import DEFAULT_QUALITIES, filter_qualities

router = APIRouter(tags=["worker"], dependencies=[Depends(require_api_key)])

MISSING_FIELDS = "mediaId and videoPath are required"


def _status_response(job: Job) -> JobStatusResponse:
    return JobStatusResponse(
        media_id=job.media_id,
        kind=job.kind.value,
        status=job.status,
        progress=job.progress,
        current_item=job.current_item,
        error=job.error,
        qualities=job.qualities if job.kind == JobKind.TRANSCODE else None,
        variants=list(job.variants),
        skipped=list(job.skipped),
    )


@router.post("/extract", response_model=EnqueueResponse)
async def enqueue_extraction(
    request: ExtractRequest,
    worker: Worker = Depends(get_worker),
) -> EnqueueResponse:
    """Queue audio and caption extraction for an uploaded video."""
    if not request.media_id or not request.video_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_FIELDS)

    result = worker.dispatcher.enqueue(
        JobKind.EXTRACT,
        request.media_id,
        {"videoPath": request.video_path},
    )
    return EnqueueResponse(
        accepted=result.accepted,
        status=result.job.status,
        media_id=request.media_id,
    )


@router.post("/transcode", response_model=EnqueueResponse)
async def enqueue_transcode(
    request: TranscodeRequest,
    worker: Worker = Depends(get_worker),
) -> EnqueueResponse:
    """Queue video variant transcoding.

    Unknown qualities are dropped; at least one known quality must remain.
    """
    if not request.media_id or not request.video_path:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=MISSING_FIELDS)

    requested = request.qualities if request.qualities is not None else DEFAULT_QUALITIES
    qualities = filter_qualities(requested)
    if not qualities:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No valid qualities requested",
        )

    result = worker.dispatcher.enqueue(
        JobKind.TRANSCODE,
        request.media_id,
        {"videoPath": request.video_path, "qualities": qualities},
    )
    return EnqueueResponse(
        accepted=result.accepted,
        status=result.job.status,
        media_id=request.media_id,
        qualities=result.job.qualities,
    )


@router.get("/status/{media_id}", response_model=JobStatusResponse)
async def get_job_status(
    media_id: str,
    kind: JobKind = Query(JobKind.EXTRACT, description="Job kind to look up"),
    worker: Worker = Depends(get_worker),
) -> JobStatusResponse:
    """Live status of the current or recently finished job for a media item."""
    job = worker.dispatcher.get_job(kind, media_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active job for this mediaId",
        )
    return _status_response(job)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_media(
    request: CleanupRequest,
    worker: Worker = Depends(get_worker),
) -> CleanupResponse:
    """Delete the stored artifacts of archived media."""
    if not request.media_ids:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="mediaIds must be a non-empty list",
        )
    result = await bulk_cleanup(request.media_ids, worker.repository, worker.storage)
    return CleanupResponse.model_validate(result.to_response())


@router.post("/upload-subtitle", response_model=CaptionUploadResponse)
async def upload_subtitle(
    media_id: str = Form(..., alias="mediaId"),
    file: UploadFile = File(...),
    language: Optional[str] = Form(None),
    label: Optional[str] = Form(None),
    worker: Worker = Depends(get_worker),
) -> CaptionUploadResponse:
    """Attach a caption file (.srt, .vtt, .ass, .ssa) supplied by the host."""
    limit = settings.MAX_CAPTION_UPLOAD_BYTES
    data = await file.read(limit + 1)
    if len(data) > limit:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Caption file exceeds {limit} bytes",
        )

    try:
        result = await worker.subtitles.upload_external(
            media_id,
            file.filename or "",
            data,
            language=language,
            label=label,
        )
    except CaptionConversionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except CaptionFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MediaNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except CaptionUploadError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(e))

    return CaptionUploadResponse(
        success=True,
        track=result.track.to_record(),
        signed_url=result.signed_url,
    )
