"""Upload ingestion: EXIF extraction, metadata merge, transcoding and maintenance."""

from .exif_reader import parse_exif
from .maintenance import fix_metadata, prune_orphan_files, regenerate_all_thumbnails
from .normalizer import merge_overrides, sanitize
from .pipeline import (
    analyze_existing_photo,
    analyze_upload,
    create_photo,
    delete_photo,
    extract_metadata,
    get_photo,
    import_directory,
    list_photos,
    update_photo,
)
from .scanner import SUPPORTED_EXTENSIONS, scan_photos
from .storage import UploadStorage
from .transcoder import TranscodeResult, render_thumbnail, transcode

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "TranscodeResult",
    "UploadStorage",
    "analyze_existing_photo",
    "analyze_upload",
    "create_photo",
    "delete_photo",
    "extract_metadata",
    "fix_metadata",
    "get_photo",
    "import_directory",
    "list_photos",
    "merge_overrides",
    "parse_exif",
    "prune_orphan_files",
    "regenerate_all_thumbnails",
    "render_thumbnail",
    "sanitize",
    "scan_photos",
    "transcode",
    "update_photo",
]
