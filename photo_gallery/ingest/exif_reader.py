from __future__ import annotations

import calendar
import logging
import math
import numbers
import time
from datetime import datetime, timedelta, timezone
from io import BytesIO
from typing import Any, Optional

from PIL import ExifTags, Image

from photo_gallery.core.models import ExifReadResult

logger = logging.getLogger(__name__)

EXIF_IFD_TAG = 34665  # ExifOffset
GPS_INFO_TAG = 34853  # GPSInfo
INTEROP_IFD_TAG = 40965  # InteropOffset
_POINTER_TAGS = {EXIF_IFD_TAG, GPS_INFO_TAG, INTEROP_IFD_TAG}

# Pillow tag names that are exposed under a different key.
_RENAMED_TAGS = {
    "ISOSpeedRatings": "ISO",
    "PhotographicSensitivity": "ISO",
}

_EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _to_float(value: object) -> Optional[float]:
    if isinstance(value, tuple) and len(value) == 2 and value[1]:
        return float(value[0]) / float(value[1])
    if isinstance(value, numbers.Real):
        result = float(value)
        return result if math.isfinite(result) else None
    return None


def _convert_gps_coordinate(values: object, ref: object) -> Optional[float]:
    if not isinstance(values, tuple) or len(values) != 3 or ref is None:
        return None
    parts = [_to_float(v) for v in values]
    if any(p is None for p in parts):
        return None
    degrees, minutes, seconds = parts  # type: ignore[misc]
    coordinate = degrees + minutes / 60.0 + seconds / 3600.0
    if isinstance(ref, bytes):
        ref = ref.decode("ascii", errors="ignore")
    if isinstance(ref, str) and ref.strip("\x00 ").upper() in {"S", "W"}:
        coordinate *= -1
    return coordinate


def _plain(value: Any) -> Any:
    """Turn Pillow tag values into plain Python values; bytes are kept."""
    if isinstance(value, (str, bytes, bool)) or value is None:
        return value
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, numbers.Real):
        return _to_float(value)
    if isinstance(value, (tuple, list)):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _plain(v) for k, v in value.items()}
    return str(value)


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    text = str(value).replace("\x00", "").strip()
    return text or None


def exif_seconds(value: Any) -> Optional[int]:
    """Read an EXIF timestamp as Unix seconds; EXIF text dates are taken as UTC."""
    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        return int(value)
    text = _clean_text(value)
    if not text:
        return None
    try:
        return calendar.timegm(time.strptime(text, _EXIF_DATETIME_FORMAT))
    except ValueError:
        return None


def datetime_from_exif_seconds(seconds: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=seconds * 1000)


def derive_camera(make: Optional[str], model: Optional[str]) -> Optional[str]:
    """Prefix the model with the make unless the model already names it."""
    if not model:
        return None
    if make and make.lower() not in model.lower():
        return f"{make} {model}"
    return model


def format_location(lat: float, lng: float) -> str:
    return f"{lat:.4f}, {lng:.4f}"


def _collect(tree: dict[str, Any], tags: dict[int, Any], names: dict[int, str]) -> None:
    for tag, value in tags.items():
        if tag in _POINTER_TAGS:
            continue
        name = names.get(tag, f"Tag{tag}")
        tree[_RENAMED_TAGS.get(name, name)] = _plain(value)


def _read_tags(image: Image.Image) -> dict[str, Any]:
    exif = image.getexif()
    if not exif:
        return {}
    tree: dict[str, Any] = {}
    _collect(tree, dict(exif), ExifTags.TAGS)
    _collect(tree, dict(exif.get_ifd(EXIF_IFD_TAG)), ExifTags.TAGS)

    gps_info = exif.get_ifd(GPS_INFO_TAG)
    if gps_info:
        lat = _convert_gps_coordinate(gps_info.get(2), gps_info.get(1))
        lng = _convert_gps_coordinate(gps_info.get(4), gps_info.get(3))
        _collect(tree, dict(gps_info), ExifTags.GPSTAGS)
        tree.pop("GPSLatitude", None)
        tree.pop("GPSLongitude", None)
        if lat is not None:
            tree["GPSLatitude"] = lat
        if lng is not None:
            tree["GPSLongitude"] = lng
    return tree


def parse_exif(buffer: bytes) -> ExifReadResult:
    """
    Extract EXIF metadata from raw image bytes.

    Never raises: undecodable input yields an empty result and a warning.
    """
    try:
        with Image.open(BytesIO(bytes(buffer))) as img:
            tree = _read_tags(img)
    except Exception as exc:
        logger.warning("EXIF parse failed: %s", exc)
        return ExifReadResult()

    if not tree:
        return ExifReadResult()

    camera = derive_camera(_clean_text(tree.get("Make")), _clean_text(tree.get("Model")))
    lens = _clean_text(tree.get("LensModel"))

    taken_at: Optional[datetime] = None
    if "DateTimeOriginal" in tree:
        seconds = exif_seconds(tree["DateTimeOriginal"])
        if seconds is not None:
            taken_at = datetime_from_exif_seconds(seconds)
            tree["DateTimeOriginal"] = taken_at
        else:
            # Placeholder dates such as "0000:00:00 00:00:00" carry no time.
            logger.debug("Dropping unreadable DateTimeOriginal %r", tree["DateTimeOriginal"])
            del tree["DateTimeOriginal"]

    location: Optional[str] = None
    lat, lng = tree.get("GPSLatitude"), tree.get("GPSLongitude")
    if isinstance(lat, float) and isinstance(lng, float):
        location = format_location(lat, lng)

    return ExifReadResult(
        attributes=tree,
        camera=camera,
        lens=lens,
        taken_at=taken_at,
        location=location,
    )
