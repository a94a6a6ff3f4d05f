from __future__ import annotations

import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

Number = Union[int, float]

_DATETIME = TypeAdapter(datetime)


class Visibility(str, Enum):
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"


class Role(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


def _coerce_number(value: Any) -> Optional[Number]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and not math.isfinite(value) else value
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


class ExifAttributes(BaseModel):
    """
    EXIF attribute tree with typed well-known tags.

    Every other tag lands in the extras bag (``model_extra``) untouched, and
    ``to_tree`` flattens both back into a single tag-name mapping.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    make: Optional[str] = Field(default=None, alias="Make")
    model: Optional[str] = Field(default=None, alias="Model")
    lens_model: Optional[str] = Field(default=None, alias="LensModel")
    datetime_original: Optional[datetime] = Field(default=None, alias="DateTimeOriginal")
    iso: Optional[Number] = Field(default=None, alias="ISO")
    f_number: Optional[Number] = Field(default=None, alias="FNumber")
    exposure_time: Optional[Number] = Field(default=None, alias="ExposureTime")
    focal_length: Optional[Number] = Field(default=None, alias="FocalLength")
    gps_latitude: Optional[float] = Field(default=None, alias="GPSLatitude")
    gps_longitude: Optional[float] = Field(default=None, alias="GPSLongitude")

    @field_validator(
        "iso",
        "f_number",
        "exposure_time",
        "focal_length",
        "gps_latitude",
        "gps_longitude",
        mode="before",
    )
    @classmethod
    def _numbers(cls, v: Any) -> Optional[Number]:
        return _coerce_number(v)

    @field_validator("make", "model", "lens_model", mode="before")
    @classmethod
    def _text(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v)

    @field_validator("datetime_original", mode="before")
    @classmethod
    def _date(cls, v: Any) -> Optional[datetime]:
        # Unreadable dates read as missing, like unparseable numbers.
        if v is None or isinstance(v, datetime):
            return v
        if isinstance(v, str):
            try:
                return datetime.strptime(v.strip(), "%Y:%m:%d %H:%M:%S").replace(tzinfo=timezone.utc)
            except ValueError:
                pass
        try:
            return _DATETIME.validate_python(v)
        except ValidationError:
            return None

    @property
    def extra(self) -> dict[str, Any]:
        return dict(self.model_extra or {})

    @classmethod
    def from_tree(cls, tree: dict[str, Any] | None) -> "ExifAttributes":
        return cls.model_validate(tree or {})

    def to_tree(self) -> dict[str, Any]:
        """Flat tag-name mapping with Python values (datetimes kept)."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_json_tree(self) -> dict[str, Any]:
        """Flat tag-name mapping safe for a JSON column."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ExifReadResult(BaseModel):
    attributes: dict[str, Any] = Field(default_factory=dict)
    camera: Optional[str] = None
    lens: Optional[str] = None
    taken_at: Optional[datetime] = None
    location: Optional[str] = None


class PhotoOverrides(BaseModel):
    """Caller-supplied values that win over extracted EXIF."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    story: Optional[str] = None
    visibility: Optional[Visibility] = None
    camera: Optional[str] = None
    lens: Optional[str] = None
    location: Optional[str] = None
    taken_at: Optional[str] = Field(default=None, alias="takenAt")
    iso: Optional[str] = None
    aperture: Optional[str] = None
    shutter: Optional[str] = None
    focal_length: Optional[str] = Field(default=None, alias="focalLength")
    exif: Optional[Union[str, dict[str, Any]]] = None

    @field_validator("iso", "aperture", "shutter", "focal_length", "taken_at", mode="before")
    @classmethod
    def _stringify(cls, v: Any) -> Optional[str]:
        if v is None:
            return None
        return str(v)

    @field_validator("visibility", mode="before")
    @classmethod
    def _blank_visibility(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class PhotoUpdate(PhotoOverrides):
    """Partial update; unset fields are left alone."""


class Photo(BaseModel):
    id: int
    url: str
    thumb_url: str
    title: Optional[str] = None
    description: Optional[str] = None
    story: Optional[str] = None
    visibility: Visibility = Visibility.PUBLIC
    owner_id: int
    owner_username: Optional[str] = None
    camera: Optional[str] = None
    lens: Optional[str] = None
    location: Optional[str] = None
    exif: ExifAttributes = Field(default_factory=ExifAttributes)
    created_at: Optional[datetime] = None

    def to_json(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude={"exif"})
        data["exif"] = self.exif.to_json_tree()
        return data


class AiAnalysis(BaseModel):
    """Structured reply of the AI analysis provider."""

    model_config = ConfigDict(populate_by_name=True)

    camera: Optional[str] = None
    lens: Optional[str] = None
    iso: Optional[str] = None
    aperture: Optional[str] = None
    shutter: Optional[str] = None
    taken_at: Optional[str] = Field(default=None, alias="takenAt")
    description: Optional[str] = None
    story: Optional[str] = None
    location: Optional[str] = None

    @field_validator(
        "camera",
        "lens",
        "iso",
        "aperture",
        "shutter",
        "taken_at",
        "description",
        "story",
        "location",
        mode="before",
    )
    @classmethod
    def _stringify(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, (dict, list)):
            return None
        text = str(v).strip()
        return text or None


class BatchItemResult(BaseModel):
    photo_id: int
    status: str  # ok | skipped | failed
    detail: Optional[str] = None


class BatchReport(BaseModel):
    count: int
    message: str
    results: list[BatchItemResult] = Field(default_factory=list)


class OrphanReport(BaseModel):
    removed: list[str] = Field(default_factory=list)
    dry_run: bool = True
