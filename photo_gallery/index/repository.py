from __future__ import annotations

from collections import Counter
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from photo_gallery.core.errors import PhotoNotFoundError
from photo_gallery.core.models import ExifAttributes, Photo, Role, Visibility

from .schema import PhotoRow, UserRow

# Columns a caller may set through update_photo_row.
UPDATABLE_FIELDS = {
    "title",
    "description",
    "story",
    "visibility",
    "camera",
    "lens",
    "location",
    "exif",
    "url",
    "thumb_url",
}


def build_photo(row: PhotoRow) -> Photo:
    """Convert a stored row into the API-facing Photo model."""
    return Photo(
        id=row.id,
        url=row.url,
        thumb_url=row.thumb_url,
        title=row.title,
        description=row.description,
        story=row.story,
        visibility=Visibility(row.visibility),
        owner_id=row.owner_id,
        owner_username=row.owner.username if row.owner is not None else None,
        camera=row.camera,
        lens=row.lens,
        location=row.location,
        exif=ExifAttributes.from_tree(row.exif),
        created_at=row.created_at,
    )


def get_photo_row(session: Session, photo_id: int) -> Optional[PhotoRow]:
    return session.get(PhotoRow, photo_id)


def require_photo_row(session: Session, photo_id: int) -> PhotoRow:
    row = get_photo_row(session, photo_id)
    if row is None:
        raise PhotoNotFoundError(photo_id)
    return row


def ensure_user(session: Session, user_id: int, role: Role | str = Role.USER) -> UserRow:
    """Return the user row for an authenticated id, creating a placeholder on first sight."""
    user = session.get(UserRow, user_id)
    if user is None:
        user = UserRow(id=user_id, username=f"user-{user_id}", role=Role(role).value)
        session.add(user)
        session.flush()
    return user


def list_photo_rows(
    session: Session, visibility: Visibility | str | None = None
) -> list[PhotoRow]:
    """Return photos newest first, with their owner loaded."""
    stmt = select(PhotoRow).options(selectinload(PhotoRow.owner))
    if visibility is not None:
        stmt = stmt.where(PhotoRow.visibility == Visibility(visibility).value)
    stmt = stmt.order_by(PhotoRow.created_at.desc(), PhotoRow.id.desc())
    return list(session.scalars(stmt).all())


def insert_photo(
    session: Session,
    *,
    url: str,
    thumb_url: str,
    owner_id: int,
    exif: ExifAttributes,
    title: Optional[str] = None,
    description: Optional[str] = None,
    story: Optional[str] = None,
    visibility: Visibility = Visibility.PUBLIC,
    camera: Optional[str] = None,
    lens: Optional[str] = None,
    location: Optional[str] = None,
) -> PhotoRow:
    row = PhotoRow(
        url=url,
        thumb_url=thumb_url,
        owner_id=owner_id,
        title=title,
        description=description,
        story=story,
        visibility=Visibility(visibility).value,
        camera=camera,
        lens=lens,
        location=location,
        exif=exif.to_json_tree(),
    )
    session.add(row)
    session.flush()
    session.refresh(row)
    return row


def update_photo_row(session: Session, photo_id: int, fields: dict[str, Any]) -> PhotoRow:
    row = require_photo_row(session, photo_id)
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Unknown photo fields: {sorted(unknown)}")
    for name, value in fields.items():
        if name == "exif" and isinstance(value, ExifAttributes):
            value = value.to_json_tree()
        elif name == "visibility" and value is not None:
            value = Visibility(value).value
        setattr(row, name, value)
    session.flush()
    return row


def delete_photo_row(session: Session, photo_id: int) -> PhotoRow:
    row = require_photo_row(session, photo_id)
    session.delete(row)
    session.flush()
    return row


def upload_activity(session: Session) -> dict[str, int]:
    """Count uploads per calendar day, keyed by ``YYYY-MM-DD``."""
    counts: Counter[str] = Counter()
    for created_at in session.scalars(select(PhotoRow.created_at)):
        counts[created_at.date().isoformat()] += 1
    return dict(sorted(counts.items()))


def referenced_filenames(session: Session) -> set[str]:
    """Basenames referenced by any stored display or thumbnail URL."""
    names: set[str] = set()
    for url, thumb_url in session.execute(select(PhotoRow.url, PhotoRow.thumb_url)):
        for value in (url, thumb_url):
            name = value.rsplit("/", 1)[-1] if value else ""
            if name:
                names.add(name)
    return names
