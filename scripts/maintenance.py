#!/usr/bin/env python
"""
Run gallery maintenance jobs against the configured database and uploads root.

Usage:
  python scripts/maintenance.py fix-thumbs
  python scripts/maintenance.py fix-metadata
  python scripts/maintenance.py prune-orphans [--apply] [--min-age 3600]
  python scripts/maintenance.py import ~/Pictures --owner 1
"""
from __future__ import annotations

import argparse
from pathlib import Path

from photo_gallery.core.config import GalleryConfig
from photo_gallery.core.env import configure_logging, load_dotenv_if_present
from photo_gallery.index import init_db, session_factory
from photo_gallery.ingest import (
    UploadStorage,
    fix_metadata,
    import_directory,
    prune_orphan_files,
    regenerate_all_thumbnails,
)


def _print_report(report) -> None:
    print(report.message)
    for item in report.results:
        if item.status != "ok":
            print(f"  photo {item.photo_id}: {item.status} ({item.detail})")


def main() -> None:
    parser = argparse.ArgumentParser(description="Photo gallery maintenance jobs.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("fix-thumbs", help="Regenerate every thumbnail from its original")
    sub.add_parser("fix-metadata", help="Re-read EXIF from every original")
    prune = sub.add_parser("prune-orphans", help="Delete upload files no photo references")
    prune.add_argument("--apply", action="store_true", help="Delete instead of listing")
    prune.add_argument("--min-age", type=float, default=3600.0, help="Seconds; newer files are kept")
    importer = sub.add_parser("import", help="Ingest every image under a directory")
    importer.add_argument("directory", type=Path, help="Directory containing photos (recursed)")
    importer.add_argument("--owner", type=int, required=True, help="Owning user id")
    args = parser.parse_args()

    load_dotenv_if_present()
    configure_logging()
    config = GalleryConfig.from_env()
    engine = init_db(config.database_url)
    SessionLocal = session_factory(engine)
    storage = UploadStorage(config.upload_root, config.upload_url_prefix)
    storage.ensure_dirs()

    with SessionLocal() as session:
        if args.command == "fix-thumbs":
            _print_report(regenerate_all_thumbnails(session, storage))
        elif args.command == "fix-metadata":
            _print_report(fix_metadata(session, storage))
        elif args.command == "prune-orphans":
            report = prune_orphan_files(
                session, storage, dry_run=not args.apply, min_age_seconds=args.min_age
            )
            verb = "Would remove" if report.dry_run else "Removed"
            print(f"{verb} {len(report.removed)} files")
            for name in report.removed:
                print(f"  {name}")
        else:
            target = args.directory
            if not target.exists() or not target.is_dir():
                raise FileNotFoundError(f"Directory not found or not a folder: {target}")
            photos = import_directory(session, storage, target, args.owner)
            print(f"Import complete: {len(photos)} photos created from {target}")


if __name__ == "__main__":
    main()
