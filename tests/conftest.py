from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import Callable

import pytest
from PIL import Image

from photo_gallery.index import UserRow, init_db, session_factory
from photo_gallery.ingest import UploadStorage

# EXIF tag ids used by the fixtures.
MAKE = 271
MODEL = 272
DATETIME_ORIGINAL = 36867
ISO_SPEED = 34855
LENS_MODEL = 42036


@pytest.fixture
def session():
    engine = init_db("sqlite+pysqlite:///:memory:")
    SessionLocal = session_factory(engine)
    with SessionLocal() as session:
        yield session


@pytest.fixture
def owner(session) -> UserRow:
    user = UserRow(username="admin", role="ADMIN")
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def storage(tmp_path: Path) -> UploadStorage:
    store = UploadStorage(tmp_path / "uploads")
    store.ensure_dirs()
    return store


@pytest.fixture
def make_jpeg() -> Callable[..., bytes]:
    """Factory for in-memory JPEGs, optionally carrying EXIF tags keyed by tag id."""

    def _make(size: tuple[int, int] = (64, 48), color: str = "red", tags: dict | None = None) -> bytes:
        img = Image.new("RGB", size, color=color)
        buf = BytesIO()
        if tags:
            exif = Image.Exif()
            for tag, value in tags.items():
                exif[tag] = value
            img.save(buf, format="JPEG", exif=exif)
        else:
            img.save(buf, format="JPEG")
        return buf.getvalue()

    return _make


@pytest.fixture
def sony_jpeg(make_jpeg) -> bytes:
    return make_jpeg(
        tags={
            MAKE: "Sony",
            MODEL: "A7M4",
            DATETIME_ORIGINAL: "2023:11:14 22:13:20",  # 1700000000 seconds
            ISO_SPEED: 200,
        }
    )
