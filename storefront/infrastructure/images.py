import mimetypes
import uuid
from pathlib import Path
from typing import Optional

MAX_IMAGE_BYTES = 5 * 1024 * 1024

class ImageRejected(ValueError):
    pass

class ImageStore:
    """Product images uploaded through the admin panel, served under ``url_prefix``."""

    def __init__(self, root: str, url_prefix: str = "/uploads"):
        self.root = Path(root)
        self.url_prefix = url_prefix.rstrip("/")

    @staticmethod
    def is_local(image_url: Optional[str]) -> bool:
        """True for paths this service hosts, False for remote URLs and embedded data."""
        if not image_url:
            return False
        return not image_url.startswith(("http://", "https://", "data:"))

    def save(self, data: bytes, content_type: Optional[str], filename: Optional[str] = None) -> str:
        if not content_type or not content_type.startswith("image/"):
            raise ImageRejected("Please select an image file")
        if len(data) > MAX_IMAGE_BYTES:
            raise ImageRejected("File size must be less than 5MB")

        suffix = Path(filename).suffix.lower() if filename else ""
        if not suffix:
            suffix = mimetypes.guess_extension(content_type) or ""
        name = f"{uuid.uuid4().hex}{suffix}"

        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / name).write_bytes(data)
        return f"{self.url_prefix}/{name}"

    def remove(self, image_url: str) -> bool:
        """Delete the stored file behind ``image_url``; False if there was none."""
        # Only the final path segment is trusted
        name = Path(image_url.split("?", 1)[0]).name
        if not name:
            return False
        target = self.root / name
        if not target.is_file():
            return False
        target.unlink()
        return True
