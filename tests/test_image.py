import base64
import io

import pytest
from PIL import Image
from unittest.mock import patch

from taskscope.services.errors import SaveError
from taskscope.services.image import ImageManager, parse_window_geometry
from conftest import half_image


def decode(data: str) -> Image.Image:
    return Image.open(io.BytesIO(base64.b64decode(data)))


def test_filenames():
    assert ImageManager.screenshot_filename("2024-05-01T09-00-00", 2, False) == "screenshot_2024-05-01T09-00-00.webp"
    assert ImageManager.screenshot_filename("2024-05-01T09-00-00", 2, True) == "screenshot_2024-05-01T09-00-00_mon2.webp"


def test_save_is_lossless_webp(image_manager):
    original = half_image("left")
    filepath = image_manager.save_screenshot(original, "screenshot_a.webp")

    assert filepath == "screenshots/screenshot_a.webp"
    with Image.open(image_manager.resolve(filepath)) as stored:
        assert stored.format == "WEBP"
        assert list(stored.convert("RGB").getdata()) == list(original.getdata())


def test_save_failure_raises(image_manager, mocker):
    mocker.patch.object(Image.Image, "save", side_effect=OSError("disk full"))
    with pytest.raises(SaveError):
        image_manager.save_screenshot(half_image("left"), "screenshot_b.webp")


def test_preprocess_downscales_wide_images(image_manager):
    filepath = image_manager.save_screenshot(half_image("top", (2560, 1440)), "wide.webp")
    img = decode(image_manager.preprocess_for_analysis(filepath))
    assert img.format == "WEBP"
    assert img.size == (1280, 720)


def test_preprocess_keeps_small_images(image_manager):
    filepath = image_manager.save_screenshot(half_image("top", (800, 600)), "small.webp")
    assert decode(image_manager.preprocess_for_analysis(filepath)).size == (800, 600)


def test_active_window_crop(image_manager, mocker):
    filepath = image_manager.save_screenshot(half_image("top", (1920, 1080)), "full.webp")
    mocker.patch("taskscope.services.image.active_window_geometry", return_value=(100, 50, 400, 300))
    img = decode(image_manager.preprocess_for_analysis(filepath, "active_window"))
    assert img.size == (400, 300)


def test_active_window_unavailable_uses_full_frame(image_manager):
    filepath = image_manager.save_screenshot(half_image("top", (1920, 1080)), "full2.webp")
    with patch("taskscope.services.image.active_window_geometry", return_value=None):
        img = decode(image_manager.preprocess_for_analysis(filepath, "active_window"))
    assert img.size == (1280, 720)


def test_parse_window_geometry():
    output = "WINDOW=123\nX=10\nY=20\nWIDTH=640\nHEIGHT=480\nSCREEN=0\n"
    assert parse_window_geometry(output) == (10, 20, 640, 480)
    assert parse_window_geometry("garbage") is None


def test_delete_files_ignores_missing(image_manager):
    filepath = image_manager.save_screenshot(half_image("left"), "gone.webp")
    assert image_manager.delete_files([filepath, "screenshots/never.webp"]) == 1
    assert not image_manager.resolve(filepath).exists()
