"""Durable media record.

The table is owned by the web application; the worker reads the source
path and writes processing status, artifact paths and track/variant lists.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, JSON
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from media_worker.core.database import Base


class MediaStatus(str, Enum):
    """Lifecycle status of a media item."""
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    READY = "ready"
    ERROR = "error"
    ARCHIVED = "archived"


class Media(Base):
    """A movie uploaded by a host."""

    __tablename__ = "media"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    status: Mapped[str] = mapped_column(
        String(20), default=MediaStatus.UPLOADED.value, nullable=False, index=True
    )

    # Source and primary audio (single-track pointer kept for older players)
    video_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    audio_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    has_audio_extracted: Mapped[bool] = mapped_column(Boolean, default=False)

    # Artifact lists, stored as camelCase JSON for the playback client
    audio_tracks: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    subtitle_tracks: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    variants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    # Processing telemetry
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processing_stage: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    processing_progress: Mapped[int] = mapped_column(Integer, default=0)

    archived_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def artifact_paths(self) -> list[str]:
        """Every object-store key this record points at."""
        paths: list[str] = []
        if self.video_path:
            paths.append(self.video_path)
        if self.audio_path:
            paths.append(self.audio_path)
        for track in self.audio_tracks or []:
            if track.get("storagePath"):
                paths.append(track["storagePath"])
        for track in self.subtitle_tracks or []:
            if track.get("storagePath"):
                paths.append(track["storagePath"])
        for variant in self.variants or []:
            if variant.get("storagePath"):
                paths.append(variant["storagePath"])
        # Primary audio usually duplicates the first track
        return list(dict.fromkeys(paths))
