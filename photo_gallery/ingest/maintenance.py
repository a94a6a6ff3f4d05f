from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from photo_gallery.core.models import BatchItemResult, BatchReport, ExifAttributes, OrphanReport
from photo_gallery.index import PhotoRow, referenced_filenames, update_photo_row

from .exif_reader import parse_exif
from .normalizer import sanitize
from .storage import UploadStorage
from .transcoder import render_thumbnail

logger = logging.getLogger(__name__)


def _all_photos(session: Session) -> list[PhotoRow]:
    return list(session.scalars(select(PhotoRow).order_by(PhotoRow.id)).all())


def _locate_original(storage: UploadStorage, row: PhotoRow) -> Optional[Path]:
    filename = storage.filename_from_url(row.url)
    if not filename:
        return None
    path = storage.original_path(filename)
    return path if path.is_file() else None


def regenerate_all_thumbnails(session: Session, storage: UploadStorage) -> BatchReport:
    """Rebuild every thumbnail from its stored original; one bad photo never stops the run."""
    results: list[BatchItemResult] = []
    for row in _all_photos(session):
        original = _locate_original(storage, row)
        if original is None:
            logger.warning("Original file not found for photo %s (%s)", row.id, row.url)
            results.append(
                BatchItemResult(photo_id=row.id, status="skipped", detail="original missing")
            )
            continue
        try:
            thumbnail = render_thumbnail(storage.read(original))
            storage.write(storage.thumb_path(original.name), thumbnail)
        except Exception as exc:
            logger.exception("Failed to regenerate thumbnail for photo %s", row.id)
            results.append(BatchItemResult(photo_id=row.id, status="failed", detail=str(exc)))
            continue
        results.append(BatchItemResult(photo_id=row.id, status="ok"))

    count = sum(1 for r in results if r.status == "ok")
    return BatchReport(
        count=count,
        message=f"Successfully regenerated {count} thumbnails",
        results=results,
    )


def fix_metadata(session: Session, storage: UploadStorage) -> BatchReport:
    """
    Re-read EXIF from every stored original.

    Photos whose original yields any tag get a fresh ``exif`` tree; camera,
    lens and location keep their stored value when the file has none.
    """
    results: list[BatchItemResult] = []
    for row in _all_photos(session):
        original = _locate_original(storage, row)
        if original is None:
            results.append(
                BatchItemResult(photo_id=row.id, status="skipped", detail="original missing")
            )
            continue
        try:
            extracted = parse_exif(storage.read(original))
            if not extracted.attributes:
                results.append(
                    BatchItemResult(photo_id=row.id, status="skipped", detail="no EXIF found")
                )
                continue
            update_photo_row(
                session,
                row.id,
                {
                    "exif": ExifAttributes.from_tree(sanitize(extracted.attributes)),
                    "camera": extracted.camera or row.camera,
                    "lens": extracted.lens or row.lens,
                    "location": extracted.location or row.location,
                },
            )
            session.commit()
        except Exception as exc:
            session.rollback()
            logger.exception("Failed to fix metadata for photo %s", row.id)
            results.append(BatchItemResult(photo_id=row.id, status="failed", detail=str(exc)))
            continue
        results.append(BatchItemResult(photo_id=row.id, status="ok"))

    count = sum(1 for r in results if r.status == "ok")
    return BatchReport(
        count=count,
        message=f"Successfully updated metadata for {count} photos",
        results=results,
    )


def prune_orphan_files(
    session: Session,
    storage: UploadStorage,
    *,
    dry_run: bool = True,
    min_age_seconds: float = 3600.0,
) -> OrphanReport:
    """
    Remove upload files no photo references.

    Files younger than ``min_age_seconds`` are left alone so an ingest that has
    written its files but not yet committed its record is not cut short.
    """
    referenced = referenced_filenames(session)
    cutoff = time.time() - min_age_seconds
    removed: list[str] = []
    for path in storage.iter_files():
        if path.name in referenced:
            continue
        try:
            if path.stat().st_mtime > cutoff:
                continue
            if not dry_run:
                path.unlink()
        except OSError as exc:
            logger.warning("Could not prune %s: %s", path, exc)
            continue
        removed.append(path.relative_to(storage.root).as_posix())

    logger.info(
        "Orphan sweep %s %d files", "found" if dry_run else "removed", len(removed)
    )
    return OrphanReport(removed=removed, dry_run=dry_run)
