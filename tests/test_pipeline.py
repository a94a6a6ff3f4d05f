from __future__ import annotations

import os
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest
from sqlalchemy import func, select

from photo_gallery.core.errors import (
    ImageProcessingError,
    InvalidRequestError,
    PhotoNotFoundError,
)
from photo_gallery.core.models import (
    AiAnalysis,
    ExifAttributes,
    PhotoOverrides,
    PhotoUpdate,
    Visibility,
)
from photo_gallery.index import PhotoRow, UserRow, insert_photo
from photo_gallery.ingest import (
    analyze_existing_photo,
    create_photo,
    delete_photo,
    fix_metadata,
    import_directory,
    prune_orphan_files,
    regenerate_all_thumbnails,
    update_photo,
)


class StubAnalyzer:
    def __init__(self) -> None:
        self.seen: list[bytes] = []

    def analyze(self, image: bytes) -> AiAnalysis:
        self.seen.append(image)
        return AiAnalysis(description="a quiet street", camera="Unknown")


def _count(session) -> int:
    return session.scalar(select(func.count()).select_from(PhotoRow))


def test_upload_without_overrides_uses_extracted_exif(session, owner, storage, sony_jpeg) -> None:
    photo = create_photo(session, storage, sony_jpeg, "street.jpg", PhotoOverrides(), owner.id)

    assert photo.camera == "Sony A7M4"
    assert photo.exif.iso == 200
    expected = datetime.fromtimestamp(1_700_000_000_000 / 1000, tz=timezone.utc)
    assert photo.exif.datetime_original == expected
    assert photo.visibility is Visibility.PUBLIC
    assert photo.owner_username == "admin"

    filename = photo.url.rsplit("/", 1)[-1]
    assert filename.endswith("-street.jpg")
    assert photo.url == f"/uploads/compressed/{filename}"
    assert photo.thumb_url == f"/uploads/thumbs/{filename}"
    assert storage.original_path(filename).read_bytes() == sony_jpeg
    assert storage.compressed_path(filename).is_file()
    assert storage.thumb_path(filename).is_file()

    stored = session.get(PhotoRow, photo.id)
    assert stored.exif["ISO"] == 200
    assert stored.exif["Make"] == "Sony"


def test_upload_overrides_win_over_exif(session, owner, storage, sony_jpeg) -> None:
    overrides = PhotoOverrides(
        title="Dusk",
        visibility="PRIVATE",
        camera="Custom Cam",
        location="Kyoto",
        iso="800",
        aperture="f/2.8",
        shutter="1/250",
        focalLength="35",
        exif='{"ISO": 6400, "Artist": "Jo"}',
    )
    photo = create_photo(session, storage, sony_jpeg, "dusk.jpg", overrides, owner.id)

    assert photo.title == "Dusk"
    assert photo.visibility is Visibility.PRIVATE
    assert photo.camera == "Custom Cam"
    assert photo.location == "Kyoto"
    assert photo.exif.iso == 800
    assert photo.exif.f_number == 2.8
    assert photo.exif.exposure_time == 1 / 250
    assert photo.exif.focal_length == 35.0
    assert photo.exif.extra["Artist"] == "Jo"


def test_upload_strips_directories_from_original_name(session, owner, storage, make_jpeg) -> None:
    photo = create_photo(
        session, storage, make_jpeg(), "../../etc/evil.jpg", PhotoOverrides(), owner.id
    )
    filename = photo.url.rsplit("/", 1)[-1]
    assert "/" not in filename and ".." not in filename
    assert storage.original_path(filename).parent == storage.root


def test_failed_transcode_creates_no_record(session, owner, storage) -> None:
    with pytest.raises(ImageProcessingError):
        create_photo(session, storage, b"not an image", "bad.jpg", PhotoOverrides(), owner.id)
    session.rollback()
    assert _count(session) == 0
    # The original is written before transcoding and is left for the orphan sweep.
    assert any(p.name.endswith("-bad.jpg") for p in storage.root.iterdir())


def test_update_missing_photo_raises_not_found(session, owner) -> None:
    with pytest.raises(PhotoNotFoundError):
        update_photo(session, 999, PhotoUpdate(title="nope"))
    assert _count(session) == 0


def test_update_applies_overrides_to_stored_exif(session, owner, storage, sony_jpeg) -> None:
    photo = create_photo(session, storage, sony_jpeg, "a.jpg", PhotoOverrides(title="Old"), owner.id)

    updated = update_photo(
        session,
        photo.id,
        PhotoUpdate(shutter="2s", aperture="F/4", takenAt="2020-01-02T03:04:05Z", story="later"),
    )

    assert updated.exif.exposure_time == 2.0
    assert updated.exif.f_number == 4.0
    assert updated.exif.datetime_original == datetime(2020, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    # Untouched tags and fields survive the read-modify-write.
    assert updated.exif.iso == 200
    assert updated.exif.make == "Sony"
    assert updated.title == "Old"
    assert updated.story == "later"


def test_delete_removes_record_but_keeps_files(session, owner, storage, make_jpeg) -> None:
    photo = create_photo(session, storage, make_jpeg(), "gone.jpg", PhotoOverrides(), owner.id)
    delete_photo(session, photo.id)

    assert session.get(PhotoRow, photo.id) is None
    assert storage.resolve_url(photo.url).is_file()
    with pytest.raises(PhotoNotFoundError):
        delete_photo(session, photo.id)


def test_regenerate_thumbnails_skips_missing_originals(session, owner, storage, make_jpeg) -> None:
    photos = [
        create_photo(session, storage, make_jpeg(size=(900, 600)), f"p{i}.jpg", PhotoOverrides(), owner.id)
        for i in range(3)
    ]
    missing = photos[1].url.rsplit("/", 1)[-1]
    storage.original_path(missing).unlink()
    for photo in photos:
        storage.resolve_url(photo.thumb_url).unlink()

    report = regenerate_all_thumbnails(session, storage)

    assert report.count == 2
    statuses = {item.photo_id: item.status for item in report.results}
    assert statuses[photos[1].id] == "skipped"
    assert statuses[photos[0].id] == statuses[photos[2].id] == "ok"
    assert storage.resolve_url(photos[0].thumb_url).is_file()
    assert storage.resolve_url(photos[2].thumb_url).is_file()
    assert not storage.resolve_url(photos[1].thumb_url).exists()


def test_regenerate_thumbnails_isolates_corrupt_originals(session, owner, storage, make_jpeg) -> None:
    good = create_photo(session, storage, make_jpeg(), "good.jpg", PhotoOverrides(), owner.id)
    bad = create_photo(session, storage, make_jpeg(), "bad.jpg", PhotoOverrides(), owner.id)
    storage.original_path(bad.url.rsplit("/", 1)[-1]).write_bytes(b"corrupted")

    report = regenerate_all_thumbnails(session, storage)

    assert report.count == 1
    statuses = {item.photo_id: item.status for item in report.results}
    assert statuses == {good.id: "ok", bad.id: "failed"}


def test_fix_metadata_recovers_exif_and_keeps_fallbacks(session, owner, storage, sony_jpeg, make_jpeg) -> None:
    row = insert_photo(
        session,
        url="/uploads/compressed/legacy.jpg",
        thumb_url="/uploads/thumbs/legacy.jpg",
        owner_id=owner.id,
        exif=ExifAttributes(),
        lens="Stored Lens",
        location="Stored Place",
    )
    plain = insert_photo(
        session,
        url="/uploads/compressed/plain.jpg",
        thumb_url="/uploads/thumbs/plain.jpg",
        owner_id=owner.id,
        exif=ExifAttributes(),
        camera="Kept Camera",
    )
    orphan = insert_photo(
        session,
        url="/uploads/compressed/missing.jpg",
        thumb_url="/uploads/thumbs/missing.jpg",
        owner_id=owner.id,
        exif=ExifAttributes(),
    )
    session.commit()
    storage.original_path("legacy.jpg").write_bytes(sony_jpeg)
    storage.original_path("plain.jpg").write_bytes(make_jpeg())

    report = fix_metadata(session, storage)

    assert report.count == 1
    statuses = {item.photo_id: item.status for item in report.results}
    assert statuses == {row.id: "ok", plain.id: "skipped", orphan.id: "skipped"}
    refreshed = session.get(PhotoRow, row.id)
    assert refreshed.camera == "Sony A7M4"
    assert refreshed.lens == "Stored Lens"
    assert refreshed.location == "Stored Place"
    assert refreshed.exif["ISO"] == 200
    assert session.get(PhotoRow, plain.id).camera == "Kept Camera"


def test_analyze_existing_photo_sends_display_file(session, owner, storage, make_jpeg) -> None:
    photo = create_photo(session, storage, make_jpeg(), "ai.jpg", PhotoOverrides(), owner.id)
    analyzer = StubAnalyzer()

    result = analyze_existing_photo(session, storage, analyzer, photo.id)

    assert result.description == "a quiet street"
    assert analyzer.seen == [storage.resolve_url(photo.url).read_bytes()]


def test_analyze_rejects_parent_directory_segments(session, owner, storage) -> None:
    row = insert_photo(
        session,
        url="/uploads/../secrets.txt",
        thumb_url="/uploads/thumbs/x.jpg",
        owner_id=owner.id,
        exif=ExifAttributes(),
    )
    session.commit()
    with pytest.raises(InvalidRequestError, match="Invalid photo path"):
        analyze_existing_photo(session, storage, StubAnalyzer(), row.id)


def test_analyze_missing_file_and_missing_photo(session, owner, storage) -> None:
    row = insert_photo(
        session,
        url="/uploads/compressed/nowhere.jpg",
        thumb_url="/uploads/thumbs/nowhere.jpg",
        owner_id=owner.id,
        exif=ExifAttributes(),
    )
    session.commit()
    with pytest.raises(InvalidRequestError, match="not found on server"):
        analyze_existing_photo(session, storage, StubAnalyzer(), row.id)
    with pytest.raises(PhotoNotFoundError):
        analyze_existing_photo(session, storage, StubAnalyzer(), 12345)


def test_prune_orphan_files(session, owner, storage, make_jpeg) -> None:
    kept = create_photo(session, storage, make_jpeg(), "kept.jpg", PhotoOverrides(), owner.id)
    dropped = create_photo(session, storage, make_jpeg(), "dropped.jpg", PhotoOverrides(), owner.id)
    delete_photo(session, dropped.id)
    dropped_name = dropped.url.rsplit("/", 1)[-1]

    preview = prune_orphan_files(session, storage, dry_run=True, min_age_seconds=0)
    assert sorted(preview.removed) == sorted(
        [dropped_name, f"compressed/{dropped_name}", f"thumbs/{dropped_name}"]
    )
    assert storage.original_path(dropped_name).exists()

    # Fresh files are protected by the age cutoff.
    assert prune_orphan_files(session, storage, dry_run=False).removed == []

    old = time.time() - 7200
    for path in storage.iter_files():
        os.utime(path, (old, old))
    report = prune_orphan_files(session, storage, dry_run=False)
    assert len(report.removed) == 3
    assert not storage.original_path(dropped_name).exists()
    assert storage.resolve_url(kept.url).is_file()


def test_import_directory_ingests_supported_files(session, owner, storage, tmp_path: Path, make_jpeg) -> None:
    source = tmp_path / "incoming"
    (source / "nested").mkdir(parents=True)
    (source / "one.jpg").write_bytes(make_jpeg())
    (source / "nested" / "two.jpeg").write_bytes(make_jpeg(color="blue"))
    (source / "broken.jpg").write_bytes(b"nope")
    (source / "notes.txt").write_text("skip me")

    created = import_directory(session, storage, source, owner.id)

    assert len(created) == 2
    assert _count(session) == 2


def test_upload_with_placeholder_date_is_stored_without_it(session, owner, storage, make_jpeg) -> None:
    blank_date = make_jpeg(tags={271: "Canon", 272: "EOS", 36867: "0000:00:00 00:00:00"})
    photo = create_photo(session, storage, blank_date, "blank.jpg", PhotoOverrides(), owner.id)

    assert photo.camera == "Canon EOS"
    assert photo.exif.datetime_original is None
    assert "DateTimeOriginal" not in session.get(PhotoRow, photo.id).exif

    report = fix_metadata(session, storage)
    assert [item.status for item in report.results] == ["ok"]


def test_manual_payload_with_unreadable_date_is_dropped(session, owner, storage, sony_jpeg) -> None:
    overrides = PhotoOverrides(exif='{"DateTimeOriginal": "yesterday", "Artist": "Jo"}')
    photo = create_photo(session, storage, sony_jpeg, "m.jpg", overrides, owner.id)

    assert photo.exif.datetime_original is None
    assert photo.exif.extra["Artist"] == "Jo"
    assert photo.exif.iso == 200


@pytest.mark.parametrize("cleared", ["", None])
def test_update_with_cleared_visibility_keeps_stored_value(session, owner, storage, make_jpeg, cleared) -> None:
    photo = create_photo(
        session, storage, make_jpeg(), "v.jpg", PhotoOverrides(visibility="PRIVATE"), owner.id
    )

    updated = update_photo(session, photo.id, PhotoUpdate(visibility=cleared, title="kept"))

    assert updated.visibility is Visibility.PRIVATE
    assert updated.title == "kept"


def test_upload_for_unknown_owner_registers_the_user(session, storage, make_jpeg) -> None:
    photo = create_photo(session, storage, make_jpeg(), "o.jpg", PhotoOverrides(), 42)

    assert photo.owner_id == 42
    assert photo.owner_username == "user-42"
    assert session.get(UserRow, 42).role == "USER"


def test_resolve_url_allows_double_dots_inside_names(storage) -> None:
    path = storage.resolve_url("/uploads/compressed/a..b.jpg")
    assert path == storage.root / "compressed" / "a..b.jpg"
    with pytest.raises(InvalidRequestError):
        storage.resolve_url("/uploads/compressed/../../etc/passwd")
