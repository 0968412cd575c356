import io

import pytest
from PIL import Image

from urbansetu.core.exceptions import UploadError
from urbansetu.utils.image_utils import MAX_DIMENSION, extension_for, normalize_image, validate_image

from conftest import make_image, make_truncated_image


@pytest.mark.parametrize("filename,content_type,expected", [
    ("pothole.PNG", "image/png", "png"),
    ("IMG_0042.HEIC", "image/heic", "jpg"),
    ("photo.jpeg", "image/jpeg", "jpg"),
    (None, "image/webp", "webp"),
    ("blob", None, "jpg"),
])
def test_extension_for(filename, content_type, expected):
    assert extension_for(filename, content_type) == expected


def test_validate_image_limits():
    validate_image(b"1234", "image/jpeg", max_bytes=10)
    with pytest.raises(UploadError):
        validate_image(b"", "image/jpeg", max_bytes=10)
    with pytest.raises(UploadError):
        validate_image(b"1234", "text/plain", max_bytes=10)
    with pytest.raises(UploadError):
        validate_image(b"12345678901", "image/jpeg", max_bytes=10)


def test_small_image_is_left_untouched():
    original = make_image(size=(320, 240), fmt="JPEG")
    content, content_type = normalize_image(original)
    assert content == original
    assert content_type == "image/jpeg"


def test_large_image_is_downscaled():
    content, content_type = normalize_image(make_image(size=(3000, 1500)))
    assert content_type == "image/jpeg"
    with Image.open(io.BytesIO(content)) as img:
        assert max(img.size) == MAX_DIMENSION
        assert img.size == (1200, 600)


def test_unreadable_image():
    with pytest.raises(UploadError):
        normalize_image(b"\x00\x01garbage")


def test_truncated_large_image_is_an_upload_error():
    with pytest.raises(UploadError) as exc_info:
        normalize_image(make_truncated_image())
    assert "Unreadable image" in exc_info.value.message


def test_decompression_bomb_is_an_upload_error(monkeypatch):
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    with pytest.raises(UploadError):
        normalize_image(make_image(size=(200, 200)))
