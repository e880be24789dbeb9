"""Profile image upload validation and storage."""

import logging
import os
import uuid
from pathlib import Path

from fastapi import UploadFile

from userauth.config import get_settings
from userauth.errors import InvalidInput

logger = logging.getLogger("userauth")

ALLOWED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp"}
ALLOWED_MIME_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}
PROFILE_IMAGE_DIR = "profile_images"


class ProfileImageStorage:
    """Stores uploaded profile images under ``UPLOAD_DIR/profile_images``."""

    def __init__(self, upload_dir: str | None = None, max_size_mb: int | None = None) -> None:
        settings = get_settings()
        self.root = Path(upload_dir or settings.UPLOAD_DIR) / PROFILE_IMAGE_DIR
        self.max_size_mb = max_size_mb or settings.MAX_IMAGE_SIZE_MB

    def validate_upload_metadata(self, filename: str, content_type: str | None) -> str | None:
        """Validate upload file metadata (extension + MIME). Returns error message or None if valid."""
        ext = Path(filename).suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            return f"Unsupported image type '{ext}'. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        if content_type and content_type not in ALLOWED_MIME_TYPES:
            return f"Invalid content type '{content_type}'. Must be an image."
        return None

    def path_for(self, stored_filename: str) -> Path:
        return self.root / stored_filename

    async def store(self, upload: UploadFile) -> str:
        """Validate and stream an upload to disk. Returns the stored filename.

        Raises InvalidInput for a bad type or an oversized file; nothing is
        left on disk in either case.
        """
        error = self.validate_upload_metadata(upload.filename or "", upload.content_type)
        if error:
            raise InvalidInput(error)

        max_bytes = self.max_size_mb * 1024 * 1024
        ext = Path(upload.filename or "image.bin").suffix.lower()
        stored_filename = f"{uuid.uuid4()}{ext}"
        self.root.mkdir(parents=True, exist_ok=True)

        file_path = self.path_for(stored_filename)
        file_size = 0
        chunk_size = 1024 * 64  # 64KB chunks

        try:
            with open(file_path, "wb") as f:
                while True:
                    chunk = await upload.read(chunk_size)
                    if not chunk:
                        break
                    file_size += len(chunk)
                    if file_size > max_bytes:
                        raise InvalidInput(f"Image too large. Maximum: {self.max_size_mb}MB")
                    f.write(chunk)
        except Exception:
            if file_path.exists():
                os.remove(file_path)
            raise

        return stored_filename

    def delete(self, stored_filename: str | None) -> None:
        """Remove a stored image if it exists."""
        if not stored_filename:
            return
        file_path = self.path_for(stored_filename)
        try:
            if file_path.exists():
                os.remove(file_path)
        except OSError as e:
            logger.warning("Could not remove profile image %s: %s", file_path, e)


_profile_image_storage: ProfileImageStorage | None = None


def get_profile_image_storage() -> ProfileImageStorage:
    """Get singleton profile image storage instance."""
    global _profile_image_storage
    if _profile_image_storage is None:
        _profile_image_storage = ProfileImageStorage()
    return _profile_image_storage
