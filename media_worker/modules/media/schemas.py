"""Artifact entries stored in the media record's JSON lists."""

from pydantic import BaseModel, Field

CAPTION_FORMAT = "vtt"


class ArtifactModel(BaseModel):
    """Artifacts serialize with camelCase keys."""

    model_config = {"populate_by_name": True}

    def to_record(self) -> dict:
        return self.model_dump(by_alias=True)


class AudioTrackArtifact(ArtifactModel):
    """One uploaded listener audio track."""
    index: int = Field(..., ge=0)
    storage_path: str = Field(..., alias="storagePath")
    label: str
    language: str


class SubtitleTrackArtifact(ArtifactModel):
    """One uploaded caption track."""
    index: int = Field(..., ge=0)
    storage_path: str = Field(..., alias="storagePath")
    format: str = CAPTION_FORMAT
    label: str
    language: str
    external: bool = False


class VariantArtifact(ArtifactModel):
    """One uploaded video rendition."""
    quality: str
    storage_path: str = Field(..., alias="storagePath")
    size_bytes: int = Field(..., alias="sizeBytes", ge=0)
    bitrate: int = Field(..., description="Bitrate ceiling in kbit/s")
    resolution: str
