import io
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError
import pillow_heif

from urbansetu.core.exceptions import UploadError

pillow_heif.register_heif_opener()  # phone uploads often arrive as HEIC

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1200

# Truncated data surfaces as OSError on load; broken PNG chunks as SyntaxError
UNREADABLE_IMAGE_ERRORS = (UnidentifiedImageError, OSError, SyntaxError, ValueError, Image.DecompressionBombError)

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "jpg",
    "image/heif": "jpg",
}


def extension_for(filename: Optional[str], content_type: Optional[str]) -> str:
    if filename and "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        if ext and ext.isalnum():
            return "jpg" if ext in ("jpeg", "heic", "heif") else ext
    return EXTENSIONS.get((content_type or "").lower(), "jpg")


def validate_image(content: bytes, content_type: Optional[str], max_bytes: int) -> None:
    if not content:
        raise UploadError("Image is empty")
    if not content_type or not content_type.lower().startswith("image/"):
        raise UploadError(f"Invalid file type: {content_type}. Only images are allowed.")
    if len(content) > max_bytes:
        raise UploadError(f"Image is {len(content)} bytes; the limit is {max_bytes} bytes")


def normalize_image(content: bytes) -> Tuple[bytes, str]:
    """
    Downscale large photos and re-encode HEIC/RGBA as JPEG.

    Returns the (possibly unchanged) bytes and their content type. Anything
    PIL cannot decode, including truncated files and decompression bombs,
    is rejected with UploadError.
    """
    try:
        img = Image.open(io.BytesIO(content))
        img_format = (img.format or "JPEG").upper()

        needs_resize = img.width > MAX_DIMENSION or img.height > MAX_DIMENSION
        needs_reencode = img_format in ("HEIF", "HEIC", "MPO")
        if not needs_resize and not needs_reencode:
            return content, Image.MIME.get(img_format, "image/jpeg")

        if needs_resize:
            img.thumbnail((MAX_DIMENSION, MAX_DIMENSION), Image.Resampling.LANCZOS)
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")

        buf = io.BytesIO()
        img.save(buf, format="JPEG", quality=85)
    except UNREADABLE_IMAGE_ERRORS as e:
        raise UploadError(f"Unreadable image: {e}")

    resized = buf.getvalue()
    logger.info(f"📉 Normalized image: {len(content)} -> {len(resized)} bytes")
    return resized, "image/jpeg"
