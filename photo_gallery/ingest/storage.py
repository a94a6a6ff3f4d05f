from __future__ import annotations

import logging
import time
from pathlib import Path, PurePosixPath
from typing import Iterator, Optional

from photo_gallery.core.errors import InvalidRequestError, StorageError

logger = logging.getLogger(__name__)

COMPRESSED_DIR = "compressed"
THUMBS_DIR = "thumbs"


class UploadStorage:
    """
    File layout of the uploads root.

    ``<root>/<name>`` holds the original, ``<root>/compressed/<name>`` the display
    copy and ``<root>/thumbs/<name>`` the thumbnail. A file at ``<root>/<sub>`` is
    served at ``<url_prefix>/<sub>``.
    """

    def __init__(self, root: str | Path, url_prefix: str = "/uploads"):
        self.root = Path(root)
        self.url_prefix = "/" + url_prefix.strip("/")

    def ensure_dirs(self) -> None:
        for directory in (self.root, self.root / COMPRESSED_DIR, self.root / THUMBS_DIR):
            directory.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def make_filename(original_name: str, now_ms: Optional[int] = None) -> str:
        """Millisecond timestamp prefix plus the upload's own basename."""
        stamp = now_ms if now_ms is not None else int(time.time() * 1000)
        basename = PurePosixPath(original_name.replace("\\", "/")).name or "upload.jpg"
        return f"{stamp}-{basename}"

    def original_path(self, filename: str) -> Path:
        return self.root / filename

    def compressed_path(self, filename: str) -> Path:
        return self.root / COMPRESSED_DIR / filename

    def thumb_path(self, filename: str) -> Path:
        return self.root / THUMBS_DIR / filename

    def compressed_url(self, filename: str) -> str:
        return f"{self.url_prefix}/{COMPRESSED_DIR}/{filename}"

    def thumb_url(self, filename: str) -> str:
        return f"{self.url_prefix}/{THUMBS_DIR}/{filename}"

    @staticmethod
    def filename_from_url(url: str) -> Optional[str]:
        name = url.rsplit("/", 1)[-1] if url else ""
        return name or None

    def resolve_url(self, url: str) -> Path:
        """Map a served URL back to a local path, refusing parent-directory segments."""
        relative = url[1:] if url.startswith("/") else url
        if ".." in PurePosixPath(relative.replace("\\", "/")).parts:
            raise InvalidRequestError("Invalid photo path")
        prefix = self.url_prefix.strip("/")
        if relative == prefix or relative.startswith(prefix + "/"):
            relative = relative[len(prefix):].lstrip("/")
        return self.root / relative

    def write(self, path: Path, data: bytes) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)
        except OSError as exc:
            raise StorageError(f"Failed to write {path}: {exc}") from exc

    def read(self, path: Path) -> bytes:
        try:
            return path.read_bytes()
        except OSError as exc:
            raise StorageError(f"Failed to read {path}: {exc}") from exc

    def iter_files(self) -> Iterator[Path]:
        """Every stored variant file, originals first."""
        for directory in (self.root, self.root / COMPRESSED_DIR, self.root / THUMBS_DIR):
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if path.is_file():
                    yield path
