from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from photo_gallery.vision.analyzer import AiConfig

DEFAULT_DATABASE_URL = "sqlite+pysqlite:///./photo_gallery.db"


@dataclass
class GalleryConfig:
    database_url: str = DEFAULT_DATABASE_URL
    upload_root: Path = Path("uploads")
    upload_url_prefix: str = "/uploads"
    ai: AiConfig = field(default_factory=AiConfig)

    @classmethod
    def from_env(cls) -> "GalleryConfig":
        return cls(
            database_url=os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
            upload_root=Path(os.getenv("UPLOAD_ROOT", "uploads")).expanduser(),
            upload_url_prefix=os.getenv("UPLOAD_URL_PREFIX", "/uploads"),
            ai=AiConfig.from_env(),
        )
