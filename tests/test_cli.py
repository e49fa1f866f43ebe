"""Tests for cli.py module."""

import json
import os
import time
from unittest.mock import patch

import pytest
from PIL import Image
from typer.testing import CliRunner

from image_resizer.cli import app
from image_resizer.models import ArtifactKind
from image_resizer.storage import ArtifactStore


runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Point the CLI at a temp data dir and keep real config files out."""
    monkeypatch.setattr('image_resizer.config.get_config_dir', lambda: tmp_path / "home-config")
    monkeypatch.chdir(tmp_path)
    for key in list(os.environ):
        if key.startswith("IMAGE_RESIZER_"):
            monkeypatch.delenv(key)
    monkeypatch.setenv("IMAGE_RESIZER_DATA_DIR", str(tmp_path / "data"))


@pytest.fixture(autouse=True)
def no_clipboard():
    with patch('image_resizer.cli.copy_to_clipboard', return_value=False) as mock_copy:
        yield mock_copy


@pytest.fixture
def data_store(tmp_path):
    return ArtifactStore(tmp_path / "data")


@pytest.fixture
def photo_path(tmp_path):
    path = tmp_path / "photo.jpg"
    Image.new('RGB', (800, 600), color=(30, 120, 200)).save(path, 'JPEG')
    return path


@pytest.fixture
def logo_path(tmp_path, logo_image):
    path = tmp_path / "logo.png"
    logo_image.save(path, 'PNG')
    return path


class TestResizeCommand:
    """Tests for the resize command."""

    def test_resizes_into_store(self, photo_path, data_store, no_clipboard):
        result = runner.invoke(app, ["resize", str(photo_path), "--width", "400"])

        assert result.exit_code == 0, result.output
        processed = data_store.list(ArtifactKind.PROCESSED)
        assert len(processed) == 1
        assert Image.open(processed[0].path).size == (400, 300)
        no_clipboard.assert_called_once_with(str(processed[0].path))

    def test_stretch_with_no_aspect(self, photo_path, data_store):
        result = runner.invoke(
            app, ["resize", str(photo_path), "-w", "50", "-h", "70", "--no-aspect", "-f", "png"]
        )

        assert result.exit_code == 0, result.output
        processed = data_store.list(ArtifactKind.PROCESSED)
        assert Image.open(processed[0].path).size == (50, 70)
        assert processed[0].name.endswith(".png")

    def test_transparent_jpeg_warns_and_writes_png(self, logo_path, data_store):
        result = runner.invoke(app, ["resize", str(logo_path), "--transparent", "--format", "jpeg"])

        assert result.exit_code == 0, result.output
        assert "png" in result.output
        assert data_store.list(ArtifactKind.PROCESSED)[0].name.endswith(".png")

    def test_unknown_format_fails(self, photo_path):
        result = runner.invoke(app, ["resize", str(photo_path), "--format", "tiff"])

        assert result.exit_code == 1
        assert "Unsupported" in result.output

    def test_corrupt_file_fails(self, tmp_path, data_store):
        path = tmp_path / "broken.png"
        path.write_bytes(b'not an image')

        result = runner.invoke(app, ["resize", str(path)])

        assert result.exit_code == 1
        assert data_store.list(ArtifactKind.PROCESSED) == []


class TestMaskCommand:
    """Tests for the mask command."""

    def test_writes_mask_next_to_image(self, logo_path):
        result = runner.invoke(app, ["mask", str(logo_path)])

        assert result.exit_code == 0, result.output
        mask = Image.open(logo_path.with_name("logo_mask.png"))
        assert mask.mode == 'L'
        assert mask.getpixel((0, 0)) == 0
        assert mask.getpixel((50, 50)) == 255

    def test_custom_output(self, logo_path, tmp_path):
        output = tmp_path / "out.png"

        result = runner.invoke(app, ["mask", str(logo_path), "--output", str(output)])

        assert result.exit_code == 0, result.output
        assert output.exists()


class TestListCommand:
    """Tests for the list command."""

    def test_empty(self):
        result = runner.invoke(app, ["list"])

        assert result.exit_code == 0
        assert "No artifacts" in result.output

    def test_lists_artifacts(self, data_store):
        data_store.store(b'x' * 10, ArtifactKind.PROCESSED, extension=".png", prefix="r-")

        result = runner.invoke(app, ["list", "--kind", "processed"])

        assert result.exit_code == 0, result.output
        assert "r-" in result.output


class TestSweepCommand:
    """Tests for the sweep command."""

    def test_deletes_expired(self, data_store):
        old = data_store.store(b'old', ArtifactKind.UPLOADED, extension=".jpg")
        fresh = data_store.store(b'new', ArtifactKind.PROCESSED, extension=".png")
        past = time.time() - 2 * 3600
        os.utime(old.path, (past, past))

        result = runner.invoke(app, ["sweep"])

        assert result.exit_code == 0, result.output
        assert "Deleted 1 of 2" in result.output
        assert not old.path.exists()
        assert fresh.path.exists()


class TestConfigCommand:
    """Tests for the config command."""

    def test_shows_config(self):
        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0, result.output
        assert "Configuration valid" in result.output

    def test_invalid_config_exits(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"port": "not a port"}))

        result = runner.invoke(app, ["config", "--config", str(path)])

        assert result.exit_code == 1
        assert "Configuration error" in result.output
