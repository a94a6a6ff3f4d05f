from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Optional

from sqlalchemy.orm import Session

from photo_gallery.core.errors import GalleryError, InvalidRequestError
from photo_gallery.core.models import (
    AiAnalysis,
    ExifAttributes,
    ExifReadResult,
    Photo,
    PhotoOverrides,
    PhotoUpdate,
    Visibility,
)
from photo_gallery.index import (
    build_photo,
    delete_photo_row,
    ensure_user,
    insert_photo,
    list_photo_rows,
    require_photo_row,
    update_photo_row,
)
from photo_gallery.vision.analyzer import PhotoAnalyzer

from .exif_reader import parse_exif
from .normalizer import apply_field_overrides, merge_overrides, sanitize
from .scanner import scan_photos
from .storage import UploadStorage
from .transcoder import transcode

logger = logging.getLogger(__name__)

# Update fields stored on the photo row as-is.
_PLAIN_UPDATE_FIELDS = ("title", "description", "story", "visibility", "camera", "lens", "location")


def _prefer(override: Optional[str], extracted: Optional[str]) -> Optional[str]:
    if override is not None and override.strip():
        return override
    return extracted


def extract_metadata(buffer: bytes) -> ExifReadResult:
    """Run only the EXIF extractor; the tree is sanitized so it can be returned as JSON."""
    result = parse_exif(buffer)
    return result.model_copy(update={"attributes": sanitize(result.attributes)})


def create_photo(
    session: Session,
    storage: UploadStorage,
    buffer: bytes,
    original_name: str,
    overrides: PhotoOverrides,
    owner_id: int,
) -> Photo:
    """
    Ingest one upload end to end.

    The original is written first, then EXIF is merged with ``overrides`` and
    both derived variants are written before the record is inserted. A failure
    at any step leaves no record; files already written stay on disk until
    ``prune_orphan_files`` removes them.
    """
    ensure_user(session, owner_id)
    filename = storage.make_filename(original_name)
    logger.info("Ingest: storing upload %s for user %s", filename, owner_id)
    storage.write(storage.original_path(filename), buffer)

    extracted = parse_exif(buffer)
    tree = merge_overrides(extracted.attributes, overrides)

    variants = transcode(buffer)
    storage.write(storage.compressed_path(filename), variants.compressed)
    storage.write(storage.thumb_path(filename), variants.thumbnail)

    row = insert_photo(
        session,
        url=storage.compressed_url(filename),
        thumb_url=storage.thumb_url(filename),
        owner_id=owner_id,
        exif=ExifAttributes.from_tree(sanitize(tree)),
        title=overrides.title,
        description=overrides.description,
        story=overrides.story,
        visibility=overrides.visibility or Visibility.PUBLIC,
        camera=_prefer(overrides.camera, extracted.camera),
        lens=_prefer(overrides.lens, extracted.lens),
        location=_prefer(overrides.location, extracted.location),
    )
    session.commit()
    logger.info("Ingest: created photo %s from %s", row.id, filename)
    return build_photo(row)


def update_photo(session: Session, photo_id: int, update: PhotoUpdate) -> Photo:
    """Apply override fields to the stored EXIF tree and persist the plain fields."""
    row = require_photo_row(session, photo_id)

    tree = apply_field_overrides(dict(row.exif or {}), update)
    fields: dict[str, Any] = {"exif": ExifAttributes.from_tree(sanitize(tree))}
    provided = update.model_dump(exclude_unset=True)
    for name in _PLAIN_UPDATE_FIELDS:
        if name in provided:
            fields[name] = provided[name]
    # A cleared visibility keeps the stored one.
    if "visibility" in fields and fields["visibility"] is None:
        del fields["visibility"]

    row = update_photo_row(session, photo_id, fields)
    session.commit()
    return build_photo(row)


def delete_photo(session: Session, photo_id: int) -> Photo:
    """Remove the record; its files are left for the orphan sweep."""
    photo = build_photo(require_photo_row(session, photo_id))
    delete_photo_row(session, photo_id)
    session.commit()
    logger.info("Deleted photo %s; files under %s kept", photo_id, photo.url)
    return photo


def get_photo(session: Session, photo_id: int) -> Photo:
    return build_photo(require_photo_row(session, photo_id))


def list_photos(session: Session, visibility: Visibility | str | None = None) -> list[Photo]:
    return [build_photo(row) for row in list_photo_rows(session, visibility)]


def analyze_existing_photo(
    session: Session,
    storage: UploadStorage,
    analyzer: PhotoAnalyzer,
    photo_id: int,
) -> AiAnalysis:
    """Send a stored photo's display file to the AI analyzer."""
    row = require_photo_row(session, photo_id)
    path = storage.resolve_url(row.url)
    if not path.is_file():
        logger.warning("File not found at %s", path)
        raise InvalidRequestError("Photo file not found on server")
    return analyzer.analyze(storage.read(path))


def analyze_upload(analyzer: PhotoAnalyzer, buffer: bytes) -> AiAnalysis:
    return analyzer.analyze(buffer)


def import_directory(
    session: Session,
    storage: UploadStorage,
    root: str | Path,
    owner_id: int,
) -> list[Photo]:
    """Ingest every image under ``root`` as if uploaded without override fields."""
    logger.info("Import: scanning %s", root)
    created: list[Photo] = []
    for path in scan_photos(root):
        try:
            created.append(
                create_photo(session, storage, path.read_bytes(), path.name, PhotoOverrides(), owner_id)
            )
        except (GalleryError, OSError) as exc:
            session.rollback()
            logger.warning("Import: skipped %s: %s", path, exc)
    logger.info("Import: created %d photos", len(created))
    return created
