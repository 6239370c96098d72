"""
Image storage for complaint attachments.

Only the resulting URLs are kept on the complaint. ``upload_all`` is
all-or-nothing: if one upload fails the images already stored for that batch
are deleted again before the error propagates.
"""

import logging
import os
import uuid
from dataclasses import dataclass
from typing import Dict, List, Protocol, Sequence, Tuple, runtime_checkable

import cloudinary
import cloudinary.uploader

from errors import TrackerError, ValidationError

logger = logging.getLogger(__name__)

ALLOWED_FORMATS = ("jpg", "jpeg", "png")
UPLOAD_FOLDER = "hostel-complaints"


class ImageUploadError(TrackerError):
    kind = "image_upload_failed"
    status_code = 502


@dataclass
class StoredImage:
    url: str
    public_id: str


@runtime_checkable
class ImageStorage(Protocol):
    def upload(self, data: bytes, filename: str) -> StoredImage: ...
    def delete(self, public_id: str) -> None: ...


def check_format(filename: str) -> None:
    extension = os.path.splitext(filename or "")[1].lstrip(".").lower()
    if extension not in ALLOWED_FORMATS:
        raise ValidationError(
            f"Unsupported image format: {filename!r} (allowed: {', '.join(ALLOWED_FORMATS)})",
            {"field": "images"},
        )


class CloudinaryImageStorage:
    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = UPLOAD_FOLDER):
        cloudinary.config(cloud_name=cloud_name, api_key=api_key, api_secret=api_secret, secure=True)
        self.folder = folder

    def upload(self, data: bytes, filename: str) -> StoredImage:
        result = cloudinary.uploader.upload(
            data,
            folder=self.folder,
            allowed_formats=list(ALLOWED_FORMATS),
            transformation=[{"width": 800, "height": 600, "crop": "limit"}],
        )
        return StoredImage(url=result["secure_url"], public_id=result["public_id"])

    def delete(self, public_id: str) -> None:
        cloudinary.uploader.destroy(public_id)


class InMemoryImageStorage:
    """Keeps uploads in a dict; used when Cloudinary is not configured."""

    def __init__(self, base_url: str = "memory://hostel-complaints"):
        self.base_url = base_url
        self.images: Dict[str, bytes] = {}

    def upload(self, data: bytes, filename: str) -> StoredImage:
        public_id = f"{UPLOAD_FOLDER}/{uuid.uuid4().hex}"
        self.images[public_id] = data
        return StoredImage(url=f"{self.base_url}/{public_id}", public_id=public_id)

    def delete(self, public_id: str) -> None:
        self.images.pop(public_id, None)


def upload_all(storage: ImageStorage, files: Sequence[Tuple[str, bytes]]) -> List[StoredImage]:
    for filename, _ in files:
        check_format(filename)

    stored: List[StoredImage] = []
    try:
        for filename, data in files:
            stored.append(storage.upload(data, filename))
    except Exception as exc:
        logger.error("Image upload failed after %d of %d files: %s", len(stored), len(files), exc)
        discard(storage, stored)
        raise ImageUploadError("Image upload failed") from exc
    return stored


def discard(storage: ImageStorage, images: Sequence[StoredImage]) -> None:
    for image in images:
        try:
            storage.delete(image.public_id)
        except Exception:
            logger.exception("Could not delete uploaded image %s", image.public_id)
