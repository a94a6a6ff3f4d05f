import logging
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, Header, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from photo_gallery.core.config import GalleryConfig
from photo_gallery.core.env import configure_logging, load_dotenv_if_present
from photo_gallery.core.errors import GalleryError
from photo_gallery.core.models import PhotoOverrides, PhotoUpdate, Role, Visibility
from photo_gallery.index import ensure_user, init_db, session_factory, upload_activity
from photo_gallery.ingest import (
    UploadStorage,
    analyze_existing_photo,
    analyze_upload,
    create_photo,
    delete_photo,
    extract_metadata,
    fix_metadata,
    get_photo,
    list_photos,
    prune_orphan_files,
    regenerate_all_thumbnails,
    update_photo,
)
from photo_gallery.vision import PhotoAnalyzer

load_dotenv_if_present()
configure_logging()
logger = logging.getLogger(__name__)

config = GalleryConfig.from_env()
engine = init_db(config.database_url)
SessionLocal = session_factory(engine)
storage = UploadStorage(config.upload_root, config.upload_url_prefix)
storage.ensure_dirs()
analyzer = PhotoAnalyzer(config.ai)

app = FastAPI(title="Photo Gallery API")
app.mount(storage.url_prefix, StaticFiles(directory=storage.root), name="uploads")


class Principal(BaseModel):
    user_id: int
    role: Role


class PruneRequest(BaseModel):
    dry_run: bool = True
    min_age_seconds: float = 3600.0


def get_session() -> Session:
    with SessionLocal() as session:
        yield session


def current_principal(
    x_user_id: Optional[int] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Principal:
    """Identity asserted by the upstream authenticator."""
    if x_user_id is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    try:
        role = Role((x_user_role or Role.USER.value).upper())
    except ValueError:
        raise HTTPException(status_code=403, detail="Unknown role") from None
    return Principal(user_id=x_user_id, role=role)


def require_admin(principal: Principal = Depends(current_principal)) -> Principal:
    if principal.role != Role.ADMIN:
        raise HTTPException(status_code=403, detail="Admin role required")
    return principal


@app.exception_handler(GalleryError)
async def gallery_error_handler(request: Request, exc: GalleryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.get("/health")
def health() -> dict:
    return {"status": "ok"}


@app.post("/photos/upload")
def upload_photo(
    file: UploadFile = File(...),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    story: Optional[str] = Form(None),
    visibility: Optional[str] = Form(None),
    camera: Optional[str] = Form(None),
    lens: Optional[str] = Form(None),
    location: Optional[str] = Form(None),
    taken_at: Optional[str] = Form(None, alias="takenAt"),
    iso: Optional[str] = Form(None),
    aperture: Optional[str] = Form(None),
    shutter: Optional[str] = Form(None),
    focal_length: Optional[str] = Form(None, alias="focalLength"),
    exif: Optional[str] = Form(None),
    principal: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    try:
        overrides = PhotoOverrides(
            title=title,
            description=description,
            story=story,
            visibility=visibility,
            camera=camera,
            lens=lens,
            location=location,
            taken_at=taken_at,
            iso=iso,
            aperture=aperture,
            shutter=shutter,
            focal_length=focal_length,
            exif=exif,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    ensure_user(session, principal.user_id, principal.role)
    photo = create_photo(
        session,
        storage,
        file.file.read(),
        file.filename or "upload.jpg",
        overrides,
        principal.user_id,
    )
    return {"photo": photo.to_json()}


@app.post("/photos/extract-metadata")
def extract_upload_metadata(
    file: UploadFile = File(...), _: Principal = Depends(require_admin)
) -> dict:
    return extract_metadata(file.file.read()).model_dump(mode="json")


@app.get("/photos")
def list_all_photos(
    visibility: Optional[Visibility] = None, session: Session = Depends(get_session)
) -> dict:
    return {"photos": [photo.to_json() for photo in list_photos(session, visibility)]}


@app.get("/photos/activity")
def photo_activity(session: Session = Depends(get_session)) -> dict:
    return upload_activity(session)


@app.get("/photos/fix-thumbs")
def fix_thumbs(session: Session = Depends(get_session)) -> dict:
    return regenerate_all_thumbnails(session, storage).model_dump()


@app.get("/photos/fix-metadata")
def fix_photo_metadata(
    _: Principal = Depends(require_admin), session: Session = Depends(get_session)
) -> dict:
    return fix_metadata(session, storage).model_dump()


@app.post("/photos/prune-orphans")
def prune_orphans(
    req: PruneRequest,
    _: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    report = prune_orphan_files(
        session, storage, dry_run=req.dry_run, min_age_seconds=req.min_age_seconds
    )
    return report.model_dump()


@app.get("/photos/{photo_id}")
def read_photo(photo_id: int, session: Session = Depends(get_session)) -> dict:
    return {"photo": get_photo(session, photo_id).to_json()}


@app.patch("/photos/{photo_id}")
def patch_photo(
    photo_id: int,
    req: PhotoUpdate,
    _: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    return {"photo": update_photo(session, photo_id, req).to_json()}


@app.delete("/photos/{photo_id}")
def remove_photo(
    photo_id: int,
    _: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    return {"photo": delete_photo(session, photo_id).to_json()}


@app.post("/ai/photos/{photo_id}/analyze")
def analyze_photo(
    photo_id: int,
    _: Principal = Depends(require_admin),
    session: Session = Depends(get_session),
) -> dict:
    result = analyze_existing_photo(session, storage, analyzer, photo_id)
    return result.model_dump(by_alias=True)


@app.post("/ai/analyze-upload")
def analyze_uploaded_file(
    file: UploadFile = File(...), _: Principal = Depends(require_admin)
) -> dict:
    return analyze_upload(analyzer, file.file.read()).model_dump(by_alias=True)
