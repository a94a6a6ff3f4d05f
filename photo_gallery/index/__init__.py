"""Database layer for the photo gallery."""

from .repository import (
    build_photo,
    delete_photo_row,
    ensure_user,
    get_photo_row,
    insert_photo,
    list_photo_rows,
    referenced_filenames,
    require_photo_row,
    update_photo_row,
    upload_activity,
)
from .schema import (
    Base,
    PhotoRow,
    UserRow,
    create_engine_from_url,
    init_db,
    session_factory,
)

__all__ = [
    "Base",
    "PhotoRow",
    "UserRow",
    "build_photo",
    "create_engine_from_url",
    "delete_photo_row",
    "ensure_user",
    "get_photo_row",
    "init_db",
    "insert_photo",
    "list_photo_rows",
    "referenced_filenames",
    "require_photo_row",
    "session_factory",
    "update_photo_row",
    "upload_activity",
]
