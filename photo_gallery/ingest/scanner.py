from __future__ import annotations

from pathlib import Path

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff"}


def scan_photos(root: str | Path) -> list[Path]:
    """Return image files under ``root`` (recursive), sorted for a stable import order."""
    root_path = Path(root)
    files: list[Path] = []
    for path in root_path.rglob("*"):
        if not path.is_file():
            continue
        if path.suffix.lower() not in SUPPORTED_EXTENSIONS:
            continue
        files.append(path)
    return sorted(files)
