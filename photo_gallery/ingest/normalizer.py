from __future__ import annotations

import json
import logging
import re
from datetime import date, datetime, timezone
from typing import Any, Mapping, Optional

from photo_gallery.core.errors import InvalidRequestError
from photo_gallery.core.models import PhotoOverrides

logger = logging.getLogger(__name__)

_LEADING_FLOAT = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_APERTURE_PREFIX = re.compile(r"^f/", re.IGNORECASE)
_SHUTTER_SUFFIX = re.compile(r"s$", re.IGNORECASE)


def sanitize(tree: Any) -> Any:
    """
    Make an attribute tree safe to persist.

    Strings lose NUL characters and surrounding whitespace, bytes are decoded
    as UTF-8 and cleaned the same way, containers are rebuilt recursively.
    Dates and other scalars pass through. ``sanitize(sanitize(x)) == sanitize(x)``.
    """
    if isinstance(tree, (datetime, date)):
        return tree
    if isinstance(tree, str):
        return tree.replace("\x00", "").strip()
    if isinstance(tree, (bytes, bytearray, memoryview)):
        return sanitize(bytes(tree).decode("utf-8", errors="replace"))
    if isinstance(tree, (list, tuple)):
        return [sanitize(item) for item in tree]
    if isinstance(tree, Mapping):
        return {key: sanitize(value) for key, value in tree.items()}
    return tree


def parse_float(value: Any) -> Optional[float]:
    """Parse the leading number of a string ("50mm" -> 50.0); None when there is none."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    match = _LEADING_FLOAT.match(str(value))
    if not match:
        return None
    return float(match.group(0))


def parse_number(value: Any) -> Optional[float | int]:
    """Strict numeric coercion; the whole string must be a number."""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        number = float(text)
    except ValueError:
        return None
    return int(number) if number.is_integer() else number


def parse_aperture(value: Any) -> Optional[float]:
    return parse_float(_APERTURE_PREFIX.sub("", str(value).strip()))


def parse_shutter(value: Any) -> Optional[float]:
    """Shutter speed in seconds: "1/100" -> 0.01, "2s" -> 2.0."""
    text = str(value).strip()
    if "/" in text:
        numerator, _, denominator = text.partition("/")
        num = parse_number(numerator)
        den = parse_number(denominator.split("/", 1)[0])
        if num is None or den is None or den == 0:
            return None
        return num / den
    return parse_float(_SHUTTER_SUFFIX.sub("", text))


def parse_taken_at(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise InvalidRequestError(f"Invalid takenAt value: {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _present(value: Any) -> bool:
    return value is not None and not (isinstance(value, str) and not value.strip())


def _load_manual_exif(payload: Any) -> dict[str, Any]:
    if not _present(payload):
        return {}
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        parsed = json.loads(payload)
    except (TypeError, ValueError) as exc:
        logger.warning("Failed to parse manual EXIF data: %s", exc)
        return {}
    if not isinstance(parsed, dict):
        logger.warning("Ignoring manual EXIF data that is not an object: %r", parsed)
        return {}
    return parsed


def apply_field_overrides(tree: dict[str, Any], overrides: PhotoOverrides) -> dict[str, Any]:
    """Map the individual override fields onto their EXIF tags, in place."""
    if _present(overrides.taken_at):
        tree["DateTimeOriginal"] = parse_taken_at(overrides.taken_at)
    if _present(overrides.iso):
        tree["ISO"] = parse_number(overrides.iso)
    if _present(overrides.aperture):
        tree["FNumber"] = parse_aperture(overrides.aperture)
    if _present(overrides.shutter):
        tree["ExposureTime"] = parse_shutter(overrides.shutter)
    if _present(overrides.focal_length):
        tree["FocalLength"] = parse_float(overrides.focal_length)
    return tree


def merge_overrides(exif: Mapping[str, Any], overrides: PhotoOverrides) -> dict[str, Any]:
    """
    Combine extracted EXIF with caller input into a fresh tree.

    Precedence, highest first: individual override fields, the freeform
    manual EXIF payload, the extracted tags.
    """
    merged = dict(exif)
    merged.update(_load_manual_exif(overrides.exif))
    return apply_field_overrides(merged, overrides)
