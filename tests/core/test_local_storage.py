"""Tests for the local filesystem storage backend and async wrapper."""

import asyncio

import pytest

from media_worker.core.storage import (
    LocalStorage,
    S3Storage,
    StorageConfig,
    StorageService,
    create_backend,
)


def _backend(tmp_path) -> LocalStorage:
    return LocalStorage(StorageConfig(backend="local", local_path=str(tmp_path / "bucket")))


class TestLocalStorage:
    """Local backend never raises; failures come back in the result."""

    def test_upload_then_download(self, tmp_path) -> None:
        storage = _backend(tmp_path)
        source = tmp_path / "track.mp3"
        source.write_bytes(b"id3" * 100)

        uploaded = storage.upload(str(source), "audio/m1.mp3", "audio/mpeg")
        assert uploaded.success
        assert uploaded.file_size == 300

        target = tmp_path / "copy.mp3"
        downloaded = storage.download("audio/m1.mp3", str(target))
        assert downloaded.success
        assert target.read_bytes() == source.read_bytes()

    def test_download_missing_key_reports_failure(self, tmp_path) -> None:
        result = _backend(tmp_path).download("audio/missing.mp3", str(tmp_path / "out.mp3"))

        assert not result.success
        assert result.error_message == "Object not found"

    def test_upload_missing_source_reports_failure(self, tmp_path) -> None:
        result = _backend(tmp_path).upload(str(tmp_path / "nope.mp3"), "audio/x.mp3")

        assert not result.success
        assert result.error_message

    def test_key_outside_root_rejected(self, tmp_path) -> None:
        source = tmp_path / "a.vtt"
        source.write_text("WEBVTT\n")

        result = _backend(tmp_path).upload(str(source), "../escape.vtt")

        assert not result.success
        assert not (tmp_path / "escape.vtt").exists()

    def test_delete_many_counts_only_existing_keys(self, tmp_path) -> None:
        storage = _backend(tmp_path)
        source = tmp_path / "a.vtt"
        source.write_text("WEBVTT\n")
        storage.upload(str(source), "subtitles/m1_track0.vtt")
        storage.upload(str(source), "subtitles/m1_track1.vtt")

        deleted = storage.delete_many(
            ["subtitles/m1_track0.vtt", "subtitles/m1_track1.vtt", "subtitles/gone.vtt"]
        )

        assert deleted == 2

    def test_signed_url_is_file_uri(self, tmp_path) -> None:
        url = _backend(tmp_path).get_url("audio/m1.mp3")

        assert url.startswith("file://")
        assert url.endswith("/bucket/audio/m1.mp3")


class TestBackendSelection:
    """Backend chosen from the configured name."""

    def test_known_backends(self, tmp_path) -> None:
        assert isinstance(create_backend(StorageConfig(backend="local", local_path=str(tmp_path))), LocalStorage)
        assert isinstance(create_backend(StorageConfig(backend="MinIO", bucket="media")), S3Storage)

    def test_unknown_backend_rejected(self, tmp_path) -> None:
        with pytest.raises(ValueError, match="ftp"):
            create_backend(StorageConfig(backend="ftp", local_path=str(tmp_path)))


class TestStorageService:
    """Async wrapper delegates to the blocking backend in a thread."""

    def test_async_upload_and_delete(self, tmp_path) -> None:
        service = StorageService(_backend(tmp_path))
        source = tmp_path / "v.mp4"
        source.write_bytes(b"\x00" * 64)

        async def scenario():
            result = await service.upload_file(str(source), "variants/m1/720p.mp4", "video/mp4")
            deleted = await service.delete_files(["variants/m1/720p.mp4"])
            return result, deleted

        result, deleted = asyncio.run(scenario())
        assert result.success
        assert deleted == 1
