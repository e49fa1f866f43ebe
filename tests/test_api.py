"""API tests for the Image Resizer service."""

import os
import time
from io import BytesIO
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from image_resizer.api import create_app, media_type_for
from image_resizer.models import ArtifactKind, ServerConfig
from image_resizer.storage import ArtifactStore

from conftest import encode


@pytest.fixture
def config(tmp_path):
    return ServerConfig(data_dir=tmp_path / "data")


@pytest.fixture
def artifact_store(config):
    return ArtifactStore(config.data_dir)


@pytest.fixture
def client(config, artifact_store):
    """Test client with an isolated store and no background sweeper."""
    app = create_app(config, artifact_store, run_sweeper=False)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def jpeg_bytes():
    return encode(Image.new('RGB', (800, 600), color=(30, 120, 200)), 'JPEG')


@pytest.fixture
def logo_bytes(logo_image):
    return encode(logo_image, 'PNG')


def post_resize(client, data, filename="photo.jpg", content_type="image/jpeg", **fields):
    return client.post(
        "/resize",
        files={"image": (filename, data, content_type)},
        data={key: str(value) for key, value in fields.items()},
    )


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_lifespan_creates_directories(client, config):
    assert (config.data_dir / "uploads").is_dir()
    assert (config.data_dir / "processed").is_dir()


def test_resize_keeps_aspect_ratio(client, jpeg_bytes):
    """800x600 at width 400 should download as 400x300."""
    response = post_resize(
        client, jpeg_bytes, width=400, height="", quality=80, format="jpeg",
        maintainAspectRatio="true", transparentBackground="false",
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["originalFile"] == "photo.jpg"
    assert body["resizedFile"].endswith(".jpeg")
    assert body["downloadUrl"] == f"/download/{body['resizedFile']}"
    assert isinstance(body["fileSize"], int)

    download = client.get(body["downloadUrl"])
    assert download.status_code == 200
    assert download.headers["content-type"] == "image/jpeg"
    assert "attachment" in download.headers["content-disposition"]
    assert Image.open(BytesIO(download.content)).size == (400, 300)


def test_resize_fill(client, jpeg_bytes):
    response = post_resize(
        client, jpeg_bytes, width=500, height=500, format="png", maintainAspectRatio="false",
    )

    assert response.status_code == 200
    download = client.get(response.json()["downloadUrl"])
    image = Image.open(BytesIO(download.content))
    assert image.size == (500, 500)
    assert image.format == 'PNG'


def test_transparent_jpeg_becomes_png(client, logo_bytes):
    """Transparency requests for JPEG should return a PNG with alpha."""
    response = post_resize(
        client, logo_bytes, filename="logo.png", content_type="image/png",
        format="jpeg", transparentBackground="true",
    )

    assert response.status_code == 200
    name = response.json()["resizedFile"]
    assert name.endswith(".png")

    download = client.get(f"/download/{name}")
    assert download.headers["content-type"] == "image/png"
    image = Image.open(BytesIO(download.content))
    assert image.mode == 'RGBA'
    assert image.getpixel((0, 0))[3] == 0
    assert image.getpixel((50, 50))[3] == 255


def test_keeps_uploaded_original(client, jpeg_bytes, artifact_store):
    post_resize(client, jpeg_bytes, width=100)

    uploaded = artifact_store.list(ArtifactKind.UPLOADED)
    assert len(uploaded) == 1
    assert uploaded[0].path.read_bytes() == jpeg_bytes


def test_missing_image(client):
    response = client.post("/resize", data={"width": "100"})

    assert response.status_code == 400
    assert response.json() == {"error": "No image file provided"}


def test_rejects_non_image(client, artifact_store):
    response = post_resize(client, b'hello', filename="notes.txt", content_type="text/plain")

    assert response.status_code == 400
    assert "error" in response.json()
    assert artifact_store.list(ArtifactKind.UPLOADED) == []


def test_rejects_oversized_upload(tmp_path):
    """Uploads over the limit should be refused without storing anything."""
    config = ServerConfig(data_dir=tmp_path / "small", max_upload_bytes=1024)
    store = ArtifactStore(config.data_dir)
    app = create_app(config, store, run_sweeper=False)

    with TestClient(app) as client:
        response = post_resize(client, b'\x00' * 2048, filename="big.png", content_type="image/png")

    assert response.status_code == 400
    assert "too large" in response.json()["error"]
    assert store.list(ArtifactKind.UPLOADED) == []
    assert store.list(ArtifactKind.PROCESSED) == []


def test_rejects_oversized_fill_request(client, artifact_store):
    """Stretching a tiny image to huge dimensions should be refused with JSON."""
    tiny = encode(Image.new('RGB', (10, 10), color=(0, 0, 0)), 'PNG')

    response = post_resize(
        client, tiny, filename="tiny.png", content_type="image/png",
        width=60000, height=60000, maintainAspectRatio="false",
    )

    assert response.status_code == 400
    assert response.headers["content-type"] == "application/json"
    assert "too large" in response.json()["error"]
    assert artifact_store.list(ArtifactKind.PROCESSED) == []


def test_rejects_malformed_fields(client, jpeg_bytes):
    response = post_resize(client, jpeg_bytes, width="wide")

    assert response.status_code == 400
    assert "width" in response.json()["error"]


def test_rejects_bad_boolean(client, jpeg_bytes):
    response = post_resize(client, jpeg_bytes, maintainAspectRatio="sometimes")

    assert response.status_code == 400


def test_corrupt_image_is_generic_500(client):
    """Decode errors should not leak details to the client."""
    response = post_resize(client, b'not really a png' * 10, filename="x.png", content_type="image/png")

    assert response.status_code == 500
    assert response.json() == {"error": "Error processing image"}


def test_download_missing(client):
    response = client.get("/download/resized-1-deadbeef.png")

    assert response.status_code == 404
    assert response.json() == {"error": "File not found"}


def test_download_hidden_name(client):
    response = client.get("/download/.partial-resized-1-deadbeef.png")

    assert response.status_code == 404
    assert response.json() == {"error": "File not found"}


def test_download_cannot_reach_uploads(client, jpeg_bytes, artifact_store):
    post_resize(client, jpeg_bytes, width=100)
    uploaded = artifact_store.list(ArtifactKind.UPLOADED)[0]

    response = client.get(f"/download/{uploaded.name}")

    assert response.status_code == 404


def test_delete_file(client, jpeg_bytes):
    name = post_resize(client, jpeg_bytes, width=100).json()["resizedFile"]

    response = client.delete(f"/files/{name}")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert client.get(f"/download/{name}").status_code == 404
    assert client.delete(f"/files/{name}").status_code == 404


def test_delete_runs_off_the_event_loop(client, jpeg_bytes):
    name = post_resize(client, jpeg_bytes, width=100).json()["resizedFile"]
    calls = []

    async def recording_threadpool(func, *args, **kwargs):
        calls.append(func)
        return func(*args, **kwargs)

    with patch('image_resizer.api.run_in_threadpool', recording_threadpool):
        response = client.delete(f"/files/{name}")

    assert response.status_code == 200
    assert calls == [client.app.state.store.delete]


def test_expired_artifact_is_swept(client, jpeg_bytes, artifact_store):
    """An artifact older than an hour should be gone after a sweep."""
    name = post_resize(client, jpeg_bytes, width=100).json()["resizedFile"]
    past = time.time() - 61 * 60
    for kind in ArtifactKind:
        for artifact in artifact_store.list(kind):
            os.utime(artifact.path, (past, past))

    report = client.app.state.sweeper.sweep_once()

    assert name in report.deleted
    assert client.get(f"/download/{name}").status_code == 404


class TestMediaTypeFor:
    """Tests for media_type_for function."""

    def test_known_extensions(self):
        assert media_type_for("a.png") == "image/png"
        assert media_type_for("a.jpeg") == "image/jpeg"
        assert media_type_for("a.jpg") == "image/jpeg"
        assert media_type_for("a.webp") == "image/webp"
        assert media_type_for("a.gif") == "image/gif"

    def test_unknown_extension(self):
        assert media_type_for("a.bin") == "application/octet-stream"
        assert media_type_for("noext") == "application/octet-stream"
