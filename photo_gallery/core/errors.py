"""Error taxonomy shared by the pipeline and the HTTP layer."""

from __future__ import annotations


class GalleryError(RuntimeError):
    """Base class for errors surfaced to callers."""

    status_code = 500


class InvalidRequestError(GalleryError):
    """Bad or missing request data; nothing was changed."""

    status_code = 400


class ImageProcessingError(InvalidRequestError):
    """The uploaded bytes could not be decoded or re-encoded."""


class AiServiceError(InvalidRequestError):
    """The AI provider call failed or returned an unusable reply."""


class PhotoNotFoundError(GalleryError):
    status_code = 404

    def __init__(self, photo_id: int):
        super().__init__(f"Photo #{photo_id} not found")
        self.photo_id = photo_id


class StorageError(GalleryError):
    """Reading or writing an upload file failed."""
