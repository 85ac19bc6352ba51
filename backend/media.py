"""Image storage backends for product uploads.

The backend is picked once when the application starts: Cloudinary when
all of its credentials are configured, the local upload folder otherwise.
Both expose the same ``store``/``delete`` pair so route handlers never need
to know which one is active.
"""

import os
import secrets
import time
from typing import NamedTuple, Optional

import cloudinary
import cloudinary.uploader
from flask import current_app
from werkzeug.utils import secure_filename

from .errors import BadUpload, UploadFailed

ALLOWED_IMAGE_EXTENSIONS = {"jpg", "jpeg", "png", "gif"}
CLOUDINARY_FOLDER = "dream-house-products"
MAX_IMAGE_DIMENSION = 1000
UPLOAD_URL_PREFIX = "/uploads"


class StoredImage(NamedTuple):
    url: str
    key: Optional[str] = None


def image_extension(filename: str) -> str:
    return os.path.splitext(filename)[1].lower().lstrip(".")


def validate_image(image_file) -> str:
    original_filename = secure_filename(getattr(image_file, "filename", "") or "")
    if not original_filename:
        raise BadUpload("format", "Please choose a valid file name.")

    if image_extension(original_filename) not in ALLOWED_IMAGE_EXTENSIONS:
        raise BadUpload(
            "format", "Unsupported image format. Upload JPG, JPEG, PNG, or GIF files."
        )

    return original_filename


class MediaStorage:
    name = "base"

    def store(self, image_file) -> StoredImage:
        raise NotImplementedError

    def delete(self, key: Optional[str]) -> None:
        raise NotImplementedError

    def release(self, key: Optional[str]) -> None:
        """Delete a stored asset, logging instead of raising on failure."""
        if not key:
            return
        try:
            self.delete(key)
        except Exception as exc:
            current_app.logger.warning(
                "Unable to delete stored image %s from %s: %s", key, self.name, exc
            )


class CloudinaryStorage(MediaStorage):
    name = "cloudinary"

    def __init__(self, cloud_name: str, api_key: str, api_secret: str, folder: str = CLOUDINARY_FOLDER):
        self.folder = folder
        cloudinary.config(
            cloud_name=cloud_name,
            api_key=api_key,
            api_secret=api_secret,
            secure=True,
        )

    def store(self, image_file) -> StoredImage:
        validate_image(image_file)
        try:
            result = cloudinary.uploader.upload(
                image_file.stream,
                folder=self.folder,
                resource_type="image",
                allowed_formats=sorted(ALLOWED_IMAGE_EXTENSIONS),
                transformation=[
                    {
                        "width": MAX_IMAGE_DIMENSION,
                        "height": MAX_IMAGE_DIMENSION,
                        "crop": "limit",
                    }
                ],
            )
        except Exception as exc:
            current_app.logger.error("Cloudinary upload failed: %s", exc)
            raise UploadFailed(str(exc)) from exc

        url = result.get("secure_url") or result.get("url")
        public_id = result.get("public_id")
        if not url or not public_id:
            raise UploadFailed("Cloudinary response did not include a URL and public id.")

        return StoredImage(url=url, key=public_id)

    def delete(self, key: Optional[str]) -> None:
        if not key:
            return
        result = cloudinary.uploader.destroy(key)
        outcome = (result or {}).get("result")
        if outcome not in ("ok", "not found"):
            raise RuntimeError(f"Cloudinary refused to delete {key}: {outcome}")


class LocalDiskStorage(MediaStorage):
    name = "local"

    def __init__(self, upload_folder: str, url_prefix: str = UPLOAD_URL_PREFIX):
        self.upload_folder = upload_folder
        self.url_prefix = url_prefix.rstrip("/")
        os.makedirs(self.upload_folder, exist_ok=True)

    def generate_filename(self, original_filename: str) -> str:
        extension = os.path.splitext(original_filename)[1].lower()
        unique_suffix = f"{int(time.time() * 1000)}-{secrets.randbelow(10**9)}"
        return f"{unique_suffix}{extension}"

    def store(self, image_file) -> StoredImage:
        original_filename = validate_image(image_file)
        unique_filename = self.generate_filename(original_filename)
        destination = os.path.join(self.upload_folder, unique_filename)

        try:
            image_file.save(destination)
        except OSError as exc:
            current_app.logger.error("Could not write upload %s: %s", destination, exc)
            raise UploadFailed(str(exc)) from exc

        return StoredImage(url=f"{self.url_prefix}/{unique_filename}")

    def delete(self, key: Optional[str]) -> None:
        # Local uploads carry no deletion key; files are left in place.
        return None


def cloudinary_configured(config) -> bool:
    return all(
        config.get(name)
        for name in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET")
    )


def build_media_storage(config) -> MediaStorage:
    if cloudinary_configured(config):
        return CloudinaryStorage(
            config["CLOUDINARY_CLOUD_NAME"],
            config["CLOUDINARY_API_KEY"],
            config["CLOUDINARY_API_SECRET"],
        )
    return LocalDiskStorage(config["UPLOAD_FOLDER"])
