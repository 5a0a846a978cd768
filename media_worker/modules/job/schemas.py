"""Request and response bodies of the worker API.

Field names are camelCase on the wire to match the web application.
"""

from typing import Optional

from pydantic import BaseModel, Field


class WireModel(BaseModel):
    model_config = {"populate_by_name": True}


class ExtractRequest(WireModel):
    """Request to extract audio and captions from an uploaded video."""
    media_id: Optional[str] = Field(None, alias="mediaId", description="Media record ID")
    video_path: Optional[str] = Field(None, alias="videoPath", description="Storage key of the video")

    model_config = {
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "mediaId": "6f1c2d9e-6c7b-4b7e-9a55-2f0f8c7b1d3a",
                "videoPath": "uploads/6f1c2d9e/movie.mkv",
            }
        },
    }


class TranscodeRequest(WireModel):
    """Request to produce video variants."""
    media_id: Optional[str] = Field(None, alias="mediaId")
    video_path: Optional[str] = Field(None, alias="videoPath")
    qualities: Optional[list[str]] = Field(None, description="Any of 720p, 1080p, 4k_hdr")


class EnqueueResponse(WireModel):
    """Intake result; ``status`` is the current status of the (possibly existing) job."""
    accepted: bool
    status: str
    media_id: str = Field(..., alias="mediaId")
    qualities: Optional[list[str]] = None


class SkippedItemResponse(WireModel):
    item: str
    reason: str
    detail: Optional[str] = None


class JobStatusResponse(WireModel):
    """Live status of a job."""
    media_id: str = Field(..., alias="mediaId")
    kind: str
    status: str
    progress: int = Field(..., ge=0, le=100)
    current_item: Optional[str] = Field(None, alias="currentItem")
    error: Optional[str] = None
    qualities: Optional[list[str]] = None
    variants: list[dict] = Field(default_factory=list)
    skipped: list[SkippedItemResponse] = Field(default_factory=list)


class CleanupRequest(WireModel):
    """Archived media whose artifacts should be deleted."""
    media_ids: list[str] = Field(default_factory=list, alias="mediaIds")


class CleanupError(WireModel):
    media_id: str = Field(..., alias="mediaId")
    error: str


class CleanupResponse(WireModel):
    deleted_count: int = Field(..., alias="deletedCount")
    errors: list[CleanupError] = Field(default_factory=list)


class SubtitleTrackResponse(WireModel):
    index: int
    storage_path: str = Field(..., alias="storagePath")
    format: str
    label: str
    language: str
    external: bool


class CaptionUploadResponse(WireModel):
    success: bool
    track: SubtitleTrackResponse
    signed_url: str = Field(..., alias="signedUrl")


class HealthResponse(WireModel):
    status: str
    running: int
    queued: int
    max_concurrent: int = Field(..., alias="maxConcurrent")
