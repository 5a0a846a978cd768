"""HTTP tests for the worker API."""

import time

import pytest
from fastapi.testclient import TestClient

from media_worker.core.config import settings
from media_worker.main import create_app
from media_worker.modules.media.models import MediaStatus

HEADERS = {"x-api-key": settings.WORKER_API_KEY}

SRT_BODY = b"1\n00:00:01,000 --> 00:00:02,000\nHello\n"


@pytest.fixture
def client(worker):
    with TestClient(create_app(lambda: worker)) as test_client:
        yield test_client


def wait_terminal(client: TestClient, media_id: str, kind: str = "extract") -> dict:
    body: dict = {}
    for _ in range(200):
        response = client.get(f"/status/{media_id}", params={"kind": kind}, headers=HEADERS)
        body = response.json()
        if body.get("status") in ("ready", "error"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"job never finished: {body}")


class TestAuthentication:
    """Every worker route needs the shared key; health does not."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("post", "/extract"),
            ("post", "/transcode"),
            ("get", "/status/m1"),
            ("post", "/cleanup"),
            ("post", "/upload-subtitle"),
        ],
    )
    def test_missing_key_rejected(self, client, method: str, path: str) -> None:
        response = getattr(client, method)(path)
        assert response.status_code == 401

    def test_wrong_key_rejected(self, client, fake_repository) -> None:
        response = client.post(
            "/extract",
            json={"mediaId": "m1", "videoPath": "uploads/m1.mp4"},
            headers={"x-api-key": "wrong"},
        )

        assert response.status_code == 401
        assert client.app.state.worker.dispatcher.get_status("m1") is None

    def test_health_is_open(self, client) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "running": 0, "queued": 0, "maxConcurrent": 2}


class TestJobEndpoints:
    """Intake and live status."""

    def test_extract_requires_fields(self, client) -> None:
        response = client.post("/extract", json={"mediaId": "m1"}, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "mediaId and videoPath are required"

    def test_extract_then_poll(self, client, fake_storage, fake_repository) -> None:
        fake_storage.objects["uploads/m1.mp4"] = b"video"
        media = fake_repository.add("m1", video_path="uploads/m1.mp4")

        response = client.post(
            "/extract",
            json={"mediaId": "m1", "videoPath": "uploads/m1.mp4"},
            headers=HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["accepted"] is True
        assert response.json()["mediaId"] == "m1"

        body = wait_terminal(client, "m1")
        assert body["status"] == "ready"
        assert body["progress"] == 100
        assert body["kind"] == "extract"
        assert media.status == MediaStatus.READY.value

    def test_transcode_filters_qualities(self, client, fake_storage, fake_repository) -> None:
        fake_storage.objects["uploads/m1.mp4"] = b"video"
        fake_repository.add("m1", video_path="uploads/m1.mp4")

        response = client.post(
            "/transcode",
            json={"mediaId": "m1", "videoPath": "uploads/m1.mp4", "qualities": ["480p", "720p"]},
            headers=HEADERS,
        )

        assert response.status_code == 200
        assert response.json()["qualities"] == ["720p"]
        body = wait_terminal(client, "m1", kind="transcode")
        assert body["qualities"] == ["720p"]
        assert [v["quality"] for v in body["variants"]] == ["720p"]

    def test_transcode_defaults_to_720p(self, client, fake_storage, fake_repository) -> None:
        fake_storage.objects["uploads/m1.mp4"] = b"video"
        fake_repository.add("m1", video_path="uploads/m1.mp4")

        response = client.post(
            "/transcode",
            json={"mediaId": "m1", "videoPath": "uploads/m1.mp4"},
            headers=HEADERS,
        )

        assert response.json()["qualities"] == ["720p"]
        wait_terminal(client, "m1", kind="transcode")

    def test_transcode_without_valid_qualities(self, client) -> None:
        response = client.post(
            "/transcode",
            json={"mediaId": "m1", "videoPath": "uploads/m1.mp4", "qualities": ["8k"]},
            headers=HEADERS,
        )

        assert response.status_code == 400
        assert response.json()["detail"] == "No valid qualities requested"

    def test_status_unknown_job(self, client) -> None:
        response = client.get("/status/ghost", headers=HEADERS)

        assert response.status_code == 404
        assert response.json()["detail"] == "No active job for this mediaId"

    def test_failed_job_reports_error(self, client, fake_repository) -> None:
        fake_repository.add("m1", video_path="uploads/missing.mp4")

        client.post(
            "/extract",
            json={"mediaId": "m1", "videoPath": "uploads/missing.mp4"},
            headers=HEADERS,
        )

        body = wait_terminal(client, "m1")
        assert body["status"] == "error"
        assert body["error"].startswith("Failed to download video")


class TestCleanupEndpoint:
    """Bulk cleanup envelope."""

    def test_empty_list_rejected(self, client) -> None:
        response = client.post("/cleanup", json={"mediaIds": []}, headers=HEADERS)
        assert response.status_code == 400

    def test_envelope(self, client, fake_storage, fake_repository) -> None:
        fake_storage.objects["uploads/a.mp4"] = b"x"
        fake_repository.add("a", status=MediaStatus.ARCHIVED.value, video_path="uploads/a.mp4")

        response = client.post("/cleanup", json={"mediaIds": ["a", "nope"]}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {
            "deletedCount": 1,
            "errors": [{"mediaId": "nope", "error": "Media not found"}],
        }


class TestUploadSubtitleEndpoint:
    """Multipart caption uploads."""

    def test_success(self, client, fake_repository) -> None:
        fake_repository.add("m1")

        response = client.post(
            "/upload-subtitle",
            data={"mediaId": "m1", "language": "en", "label": "English"},
            files={"file": ("movie.srt", SRT_BODY, "application/x-subrip")},
            headers=HEADERS,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["track"]["storagePath"] == "subtitles/m1_ext0.vtt"
        assert body["track"]["external"] is True
        assert body["signedUrl"].startswith("https://storage.test/")

    def test_bad_extension(self, client, fake_repository) -> None:
        fake_repository.add("m1")

        response = client.post(
            "/upload-subtitle",
            data={"mediaId": "m1"},
            files={"file": ("notes.txt", SRT_BODY, "text/plain")},
            headers=HEADERS,
        )

        assert response.status_code == 400

    def test_unknown_media(self, client) -> None:
        response = client.post(
            "/upload-subtitle",
            data={"mediaId": "ghost"},
            files={"file": ("movie.srt", SRT_BODY, "application/x-subrip")},
            headers=HEADERS,
        )

        assert response.status_code == 404

    def test_too_large(self, client, fake_repository, monkeypatch) -> None:
        fake_repository.add("m1")
        monkeypatch.setattr(settings, "MAX_CAPTION_UPLOAD_BYTES", 16)

        response = client.post(
            "/upload-subtitle",
            data={"mediaId": "m1"},
            files={"file": ("movie.srt", SRT_BODY, "application/x-subrip")},
            headers=HEADERS,
        )

        assert response.status_code == 413
