"""
Remote media host adapter (Cloudinary).

Uploaded images are pushed to the host, which hands back a public URL and an
opaque ``public_id``; both are stored on the owning document. Deleting a
listing or replacing a profile picture releases the old ``public_id``.
"""
import logging
from typing import List, Optional

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile

import config
from errors import ValidationError

logger = logging.getLogger(__name__)

PRODUCT_FOLDER = "marketplace/products"
PROFILE_FOLDER = "marketplace/profiles"

PRODUCT_TRANSFORMATION = [
    {"width": 800, "height": 600, "crop": "limit"},
    {"quality": "auto"},
    {"fetch_format": "auto"},
]
PROFILE_TRANSFORMATION = [
    {"width": 400, "height": 400, "crop": "fill", "gravity": "face"},
    {"quality": "auto"},
    {"fetch_format": "auto"},
]


class MediaHost:
    def __init__(self):
        cloudinary.config(
            cloud_name=config.CLOUDINARY_CLOUD_NAME,
            api_key=config.CLOUDINARY_API_KEY,
            api_secret=config.CLOUDINARY_API_SECRET,
        )

    def upload(self, content: bytes, folder: str, transformation=None) -> dict:
        result = cloudinary.uploader.upload(
            content,
            folder=folder,
            allowed_formats=["jpg", "jpeg", "png", "webp"],
            transformation=transformation,
        )
        return {"url": result["secure_url"], "public_id": result["public_id"]}

    def delete(self, public_id: str):
        return cloudinary.uploader.destroy(public_id)


_host: Optional[MediaHost] = None


def get_media_host() -> MediaHost:
    global _host
    if _host is None:
        _host = MediaHost()
    return _host


async def read_image(upload: UploadFile, max_bytes: int) -> bytes:
    if not (upload.content_type or "").startswith("image/"):
        raise ValidationError("Only image files are allowed!", [{"field": upload.filename or "file", "message": "Only image files are allowed"}])
    content = await upload.read()
    if len(content) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ValidationError(f"Image exceeds the {limit_mb}MB limit", [{"field": upload.filename or "file", "message": f"File too large (max {limit_mb}MB)"}])
    return content


async def upload_product_images(host: MediaHost, files: List[UploadFile]) -> List[dict]:
    files = [f for f in files or [] if f is not None and f.filename]
    if len(files) > config.PRODUCT_IMAGE_MAX_FILES:
        raise ValidationError(f"At most {config.PRODUCT_IMAGE_MAX_FILES} images can be uploaded at once")
    contents = [await read_image(f, config.PRODUCT_IMAGE_MAX_BYTES) for f in files]
    return [host.upload(c, PRODUCT_FOLDER, PRODUCT_TRANSFORMATION) for c in contents]


async def upload_profile_image(host: MediaHost, upload: UploadFile) -> dict:
    content = await read_image(upload, config.PROFILE_IMAGE_MAX_BYTES)
    return host.upload(content, PROFILE_FOLDER, PROFILE_TRANSFORMATION)


def release_images(host: MediaHost, public_ids: List[str]) -> List[str]:
    """Delete images one by one; returns the ids that could not be released."""
    failed = []
    for public_id in public_ids:
        try:
            host.delete(public_id)
        except Exception:
            logger.exception("Failed to release image %s", public_id)
            failed.append(public_id)
    return failed
