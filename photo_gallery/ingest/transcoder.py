from __future__ import annotations

from dataclasses import dataclass
from io import BytesIO

from PIL import Image, ImageOps, UnidentifiedImageError

from photo_gallery.core.errors import ImageProcessingError

COMPRESSED_MAX_SIZE = (1920, 1920)
COMPRESSED_QUALITY = 80
THUMB_SIZE = (400, 400)
THUMB_QUALITY = 70


@dataclass(frozen=True)
class TranscodeResult:
    compressed: bytes
    thumbnail: bytes


def _open_rgb(buffer: bytes) -> Image.Image:
    try:
        with Image.open(BytesIO(bytes(buffer))) as img:
            img.load()
            return img.convert("RGB")
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise ImageProcessingError(f"Unsupported or corrupt image: {exc}") from exc


def _encode_jpeg(img: Image.Image, **options: object) -> bytes:
    buf = BytesIO()
    img.save(buf, format="JPEG", **options)
    return buf.getvalue()


def compress_image(buffer: bytes) -> bytes:
    """Fit inside 1920x1920 without upscaling and re-encode at quality 80."""
    img = _open_rgb(buffer)
    # thumbnail() only ever shrinks and keeps the aspect ratio.
    img.thumbnail(COMPRESSED_MAX_SIZE, Image.Resampling.LANCZOS)
    return _encode_jpeg(img, quality=COMPRESSED_QUALITY, optimize=True, progressive=True)


def render_thumbnail(buffer: bytes) -> bytes:
    """Cover-crop to exactly 400x400 and re-encode at quality 70."""
    img = _open_rgb(buffer)
    thumb = ImageOps.fit(img, THUMB_SIZE, Image.Resampling.LANCZOS)
    return _encode_jpeg(thumb, quality=THUMB_QUALITY)


def transcode(buffer: bytes) -> TranscodeResult:
    """Derive the display and thumbnail variants of an upload."""
    return TranscodeResult(compressed=compress_image(buffer), thumbnail=render_thumbnail(buffer))
