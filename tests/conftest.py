"""Shared fixtures for Image Resizer tests."""

import io

import pytest
from PIL import Image

from image_resizer.models import UploadRequest
from image_resizer.storage import ArtifactStore


def encode(image: Image.Image, fmt: str, **params) -> bytes:
    """Encode a PIL image to bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format=fmt, **params)
    return buffer.getvalue()


def make_upload(image: Image.Image, filename: str, fmt: str, content_type: str) -> UploadRequest:
    """Build an UploadRequest from a PIL image."""
    return UploadRequest.from_bytes(encode(image, fmt), content_type, filename)


@pytest.fixture
def store(tmp_path):
    """Artifact store rooted in a temp directory."""
    artifact_store = ArtifactStore(tmp_path / "data")
    artifact_store.ensure_directories()
    return artifact_store


@pytest.fixture
def jpeg_800x600():
    """800x600 JPEG upload."""
    img = Image.new('RGB', (800, 600), color=(30, 120, 200))
    return make_upload(img, "photo.jpg", "JPEG", "image/jpeg")


@pytest.fixture
def logo_image():
    """White 100x100 image with a red square in the middle."""
    img = Image.new('RGB', (100, 100), color=(255, 255, 255))
    for x in range(30, 70):
        for y in range(30, 70):
            img.putpixel((x, y), (200, 0, 0))
    return img


@pytest.fixture
def logo_upload(logo_image):
    """PNG upload of the logo image."""
    return make_upload(logo_image, "logo.png", "PNG", "image/png")
