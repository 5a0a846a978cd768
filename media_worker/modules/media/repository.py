"""Repository for media record operations.

Each method opens and commits its own session: jobs run for minutes and
must not hold a transaction open across encodes.

Methods that rewrite a JSON list column read the row with ``FOR UPDATE`` and
hold a per-media lock, so concurrent writers in this process and in other
processes apply their changes one after the other.
"""

from datetime import datetime
from typing import Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from media_worker.core.database import async_session_maker
from media_worker.modules.media.locks import KeyedLock
from media_worker.modules.media.models import Media, MediaStatus


class MediaNotFoundError(Exception):
    """No media record exists for the given id."""

    def __init__(self, media_id: str):
        super().__init__(f"Media not found: {media_id}")
        self.media_id = media_id


class MediaRecordRepository:
    """Reads and mutates the durable media record."""

    def __init__(self, session_factory: Callable[[], AsyncSession] = async_session_maker):
        self.session_factory = session_factory
        self._record_locks = KeyedLock()

    async def get(self, media_id: str) -> Optional[Media]:
        """Get a media record by ID."""
        async with self.session_factory() as session:
            result = await session.execute(select(Media).where(Media.id == media_id))
            return result.scalar_one_or_none()

    async def get_many(self, media_ids: list[str]) -> list[Media]:
        """Get every existing record among ``media_ids``."""
        if not media_ids:
            return []
        async with self.session_factory() as session:
            result = await session.execute(select(Media).where(Media.id.in_(media_ids)))
            return list(result.scalars().all())

    async def update_fields(self, media_id: str, **fields) -> bool:
        """Set plain columns on a record.

        Returns:
            False if the record does not exist
        """
        async with self.session_factory() as session:
            media = await session.get(Media, media_id)
            if media is None:
                return False
            for name, value in fields.items():
                setattr(media, name, value)
            await session.commit()
            return True

    async def set_progress(self, media_id: str, stage: str, progress: int) -> bool:
        """Record the current processing stage label and percentage."""
        return await self.update_fields(
            media_id, processing_stage=stage, processing_progress=progress
        )

    async def mark_processing(self, media_id: str) -> bool:
        return await self.update_fields(
            media_id,
            status=MediaStatus.PROCESSING.value,
            processing_error=None,
        )

    async def mark_error(self, media_id: str, message: str, set_status: bool = True) -> bool:
        """Record a fatal job error.

        Args:
            media_id: Media ID
            message: User-facing error message
            set_status: Also move the record to ``error`` status
        """
        fields = {"processing_error": message}
        if set_status:
            fields["status"] = MediaStatus.ERROR.value
            fields["has_audio_extracted"] = False
        return await self.update_fields(media_id, **fields)

    async def complete_extraction(
        self,
        media_id: str,
        audio_tracks: list[dict],
        container_subtitles: list[dict],
    ) -> bool:
        """Publish the outcome of an extraction job.

        Audio tracks and container-origin captions are replaced; captions
        uploaded separately are kept.

        Args:
            media_id: Media ID
            audio_tracks: Uploaded audio track entries
            container_subtitles: Uploaded container caption entries

        Returns:
            False if the record does not exist
        """
        async with self._record_locks.hold(media_id), self.session_factory() as session:
            media = await session.get(Media, media_id, with_for_update=True)
            if media is None:
                return False

            external = [t for t in (media.subtitle_tracks or []) if t.get("external")]

            # New list objects so the JSON columns are flagged dirty
            media.audio_tracks = list(audio_tracks)
            media.subtitle_tracks = external + list(container_subtitles)
            media.audio_path = audio_tracks[0]["storagePath"] if audio_tracks else None
            media.has_audio_extracted = bool(audio_tracks)
            media.status = MediaStatus.READY.value
            media.processing_error = None
            await session.commit()
            return True

    async def count_external_subtitles(self, media_id: str) -> int:
        media = await self.get(media_id)
        if media is None:
            raise MediaNotFoundError(media_id)
        return sum(1 for t in (media.subtitle_tracks or []) if t.get("external"))

    async def append_subtitle_track(self, media_id: str, track: dict) -> bool:
        """Append one caption entry to the record."""
        async with self._record_locks.hold(media_id), self.session_factory() as session:
            media = await session.get(Media, media_id, with_for_update=True)
            if media is None:
                return False
            media.subtitle_tracks = list(media.subtitle_tracks or []) + [track]
            await session.commit()
            return True

    async def merge_variants(self, media_id: str, variants: list[dict]) -> bool:
        """Add variants to the record, replacing entries of the same quality.

        Variants from earlier transcode jobs are kept.
        """
        async with self._record_locks.hold(media_id), self.session_factory() as session:
            media = await session.get(Media, media_id, with_for_update=True)
            if media is None:
                return False
            incoming = {v["quality"] for v in variants}
            kept = [v for v in (media.variants or []) if v.get("quality") not in incoming]
            media.variants = kept + list(variants)
            await session.commit()
            return True

    async def list_archived_before(self, cutoff: datetime) -> list[Media]:
        """Archived records whose archive date is older than ``cutoff``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Media).where(
                    Media.status == MediaStatus.ARCHIVED.value,
                    Media.archived_at.is_not(None),
                    Media.archived_at < cutoff,
                )
            )
            return list(result.scalars().all())

    async def delete_many(self, media_ids: list[str]) -> int:
        """Delete records, returning how many were removed."""
        if not media_ids:
            return 0
        async with self.session_factory() as session:
            result = await session.execute(delete(Media).where(Media.id.in_(media_ids)))
            await session.commit()
            return result.rowcount or 0
